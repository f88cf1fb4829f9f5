"""
Audit Models for Expense Recorder

Every committed mutation and every sync decision (push, pull, remote
document applied or discarded) produces one AuditEvent. Events are logged
through structlog and kept in a bounded in-memory history.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Ledger
    RECEIPT_ADDED = "receipt_added"
    RECEIPT_UPDATED = "receipt_updated"
    RECEIPT_DELETED = "receipt_deleted"

    # Taxonomy
    TAXONOMY_CHANGED = "taxonomy_changed"

    # Both ledger and taxonomy
    MUTATION_REJECTED = "mutation_rejected"
    DATA_IMPORTED = "data_imported"
    DATA_RESET = "data_reset"

    # Local persistence
    LOCAL_STATE_RECOVERED = "local_state_recovered"
    LOCAL_WRITE_FAILED = "local_write_failed"

    # Remote sync
    SYNC_STARTED = "sync_started"
    SYNC_STOPPED = "sync_stopped"
    PUSH_COMPLETED = "push_completed"
    PUSH_FAILED = "push_failed"
    PULL_COMPLETED = "pull_completed"
    PULL_FAILED = "pull_failed"
    REMOTE_APPLIED = "remote_applied"
    REMOTE_DISCARDED = "remote_discarded"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """A single audit event."""

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'receipt', 'category', 'snapshot')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Receipt id, taxonomy name or user id the event is about"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user intent?"
    )

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.receipt_changed(AuditEventType.RECEIPT_ADDED, receipt_id, shop)
        event = AuditEventBuilder.push_completed(user_id, manual=True, receipt_count=12)
    """

    @staticmethod
    def receipt_changed(
        event_type: AuditEventType,
        receipt_id: str,
        shop: Optional[str] = None,
    ) -> AuditEvent:
        verb = event_type.value.split("_")[-1]
        return AuditEvent(
            event_type=event_type,
            entity_type="receipt",
            entity_id=receipt_id,
            description=f"Receipt {verb}: {shop or receipt_id}",
            details={"shop": shop} if shop else {},
            is_user_action=True,
        )

    @staticmethod
    def taxonomy_changed(
        operation: str,
        name: str,
        affected_items: int,
        message: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TAXONOMY_CHANGED,
            entity_type="taxonomy",
            entity_id=name,
            description=message or f"{operation}: {name}",
            details={
                "operation": operation,
                "affected_items": affected_items,
            },
            is_user_action=True,
        )

    @staticmethod
    def mutation_rejected(
        operation: str,
        target: str,
        reason: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_id=target,
            description=f"{operation} rejected: {reason}",
            details={"operation": operation},
            is_user_action=True,
        )

    @staticmethod
    def data_imported(source: str, receipt_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATA_IMPORTED,
            entity_type="snapshot",
            description=f"Imported {receipt_count} receipts from {source}",
            details={"source": source, "receipt_count": receipt_count},
            is_user_action=True,
        )

    @staticmethod
    def data_reset() -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATA_RESET,
            severity=AuditSeverity.WARNING,
            entity_type="snapshot",
            description="All local data reset to defaults",
            is_user_action=True,
        )

    @staticmethod
    def local_state_recovered(blob: str, reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOCAL_STATE_RECOVERED,
            severity=AuditSeverity.WARNING,
            entity_type="local_blob",
            entity_id=blob,
            description=f"Local {blob} unreadable, defaults used",
            error_message=reason,
        )

    @staticmethod
    def local_write_failed(error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOCAL_WRITE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="local_blob",
            description="Write-through to local storage failed",
            error_message=error_message,
        )

    @staticmethod
    def sync_lifecycle(started: bool, user_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_STARTED if started else AuditEventType.SYNC_STOPPED,
            entity_type="user",
            entity_id=user_id,
            description=f"Sync {'started' if started else 'stopped'} for user",
        )

    @staticmethod
    def push_completed(user_id: str, manual: bool, receipt_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PUSH_COMPLETED,
            entity_type="user",
            entity_id=user_id,
            description=f"{'Manual' if manual else 'Debounced'} push of {receipt_count} receipts",
            details={"manual": manual, "receipt_count": receipt_count},
            is_user_action=manual,
        )

    @staticmethod
    def push_failed(user_id: str, manual: bool, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PUSH_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="user",
            entity_id=user_id,
            description=f"{'Manual' if manual else 'Debounced'} push failed",
            details={"manual": manual},
            error_message=error_message,
            is_user_action=manual,
        )

    @staticmethod
    def pull_completed(user_id: str, found: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PULL_COMPLETED,
            entity_type="user",
            entity_id=user_id,
            description="Pulled remote document" if found else "No remote document to pull",
            details={"found": found},
            is_user_action=True,
        )

    @staticmethod
    def pull_failed(user_id: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PULL_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="user",
            entity_id=user_id,
            description="Pull failed",
            error_message=error_message,
            is_user_action=True,
        )

    @staticmethod
    def remote_applied(user_id: str, fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REMOTE_APPLIED,
            entity_type="user",
            entity_id=user_id,
            description=f"Applied remote document ({', '.join(fields)})",
            details={"fields": fields},
        )

    @staticmethod
    def remote_discarded(user_id: str, reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REMOTE_DISCARDED,
            severity=AuditSeverity.DEBUG,
            entity_type="user",
            entity_id=user_id,
            description=f"Remote notification discarded: {reason}",
            details={"reason": reason},
        )
