"""
Data Models Package

This package contains all Pydantic models used in Expense Recorder.
Everything stored locally or exchanged remotely must conform to these schemas.
"""

from expense_recorder.models.receipt import (
    DEFAULT_CATEGORIES,
    DEFAULT_LABELS,
    DEFAULT_PAYMENT_MODES,
    RESERVED_CATEGORY,
    CategoryData,
    Item,
    MutationResult,
    MutationStatus,
    Receipt,
    default_category_data,
)
from expense_recorder.models.snapshot import (
    BACKUP_FORMAT_VERSION,
    BackupFile,
    SyncSnapshot,
)
from expense_recorder.models.query import SpendingQuery, SpendingSummary
from expense_recorder.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger and taxonomy
    "DEFAULT_CATEGORIES",
    "DEFAULT_LABELS",
    "DEFAULT_PAYMENT_MODES",
    "RESERVED_CATEGORY",
    "CategoryData",
    "Item",
    "MutationResult",
    "MutationStatus",
    "Receipt",
    "default_category_data",
    # Snapshots
    "BACKUP_FORMAT_VERSION",
    "BackupFile",
    "SyncSnapshot",
    # Queries
    "SpendingQuery",
    "SpendingSummary",
    # Audit
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
