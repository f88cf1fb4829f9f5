"""
Audit Logger

Every committed mutation and every sync decision is logged as a typed
AuditEvent through structlog. The most recent events are also kept in
memory so a caller can show "what happened" without reading log files.

Logging never raises into the caller.
"""

import logging
from collections import deque
from typing import Optional

import structlog

from expense_recorder.models.audit import AuditEvent, AuditEventType


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure stdlib logging and structlog once per process.

    JSON lines by default; the console renderer is easier to read while
    debugging.
    """
    logging.basicConfig(format="%(message)s", level=getattr(logging, log_level.upper()))

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class AuditLogger:
    """
    Central audit logging service.

    Logs events to the structured local log and remembers the last
    `history_size` of them.
    """

    def __init__(self, history_size: int = 500):
        self._history: deque[AuditEvent] = deque(maxlen=history_size)
        self._logger = structlog.get_logger("expense_recorder.audit")

    def log(self, event: AuditEvent) -> None:
        """Log an audit event locally and add it to the history."""
        self._history.append(event)

        try:
            log_dict = event.to_log_dict()
            if event.severity.value == "error":
                self._logger.error("audit_event", **log_dict)
            elif event.severity.value == "warning":
                self._logger.warning("audit_event", **log_dict)
            elif event.severity.value == "debug":
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            # Log failure but don't raise
            logging.getLogger(__name__).error(
                "audit_log_failed event=%s error=%s", event.event_type, e,
            )

    def recent_events(
        self,
        limit: int = 100,
        event_type: Optional[AuditEventType] = None,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        events = [
            e for e in reversed(self._history)
            if event_type is None or e.event_type == event_type
        ]
        return events[:limit]

    def clear(self) -> None:
        self._history.clear()
