"""Audit logging package."""

from expense_recorder.audit.logger import AuditLogger, configure_logging

__all__ = ["AuditLogger", "configure_logging"]
