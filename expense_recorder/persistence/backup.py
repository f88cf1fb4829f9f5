"""
Backup Manager

Full-snapshot export/import independent of remote sync:
- export to a JSON file {receipts, categoryData, exportedAt, version}
- import from such a file (validated before anything is touched)
- restore from the local auto-backup blob
- reset to defaults

Imports always end up with the reserved category present.
"""

import json
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from expense_recorder.models.snapshot import BackupFile, utc_now_iso
from expense_recorder.persistence.interface import PersistenceError
from expense_recorder.persistence.local import parse_category_data, parse_receipts
from expense_recorder.session import ExpenseSession


DEFAULT_BACKUP_FILENAME = "expense-recorder-backup.json"

logger = structlog.get_logger(__name__)


class BackupImportError(ValueError):
    """The payload is not a usable backup. Nothing was changed."""
    pass


class BackupManager:
    """Export, import and restore whole snapshots for a session."""

    def __init__(self, session: ExpenseSession):
        self._session = session

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_snapshot(self) -> BackupFile:
        return BackupFile(
            receipts=self._session.receipts,
            category_data=self._session.category_data,
            exported_at=utc_now_iso(),
        )

    def export_to_file(self, path: str | Path) -> Path:
        """
        Write the current snapshot as indented JSON.

        If `path` is a directory the default file name is used inside it.

        Raises:
            PersistenceError: If the file cannot be written
        """
        target = Path(path).expanduser()
        if target.is_dir():
            target = target / DEFAULT_BACKUP_FILENAME
        payload = self.export_snapshot().to_document()
        try:
            target.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Failed to write backup {target}: {e}")
        logger.info("backup_exported", path=str(target), receipts=len(payload["receipts"]))
        return target

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def import_payload(self, payload: Any, source: str = "import") -> BackupFile:
        """
        Validate a decoded backup and replace the session state with it.

        Raises:
            BackupImportError: If `receipts` is not a list or `categoryData`
                lacks its required shape. Session state is unchanged.
        """
        if not isinstance(payload, dict):
            raise BackupImportError("Invalid file")
        if "receipts" not in payload or "categoryData" not in payload:
            raise BackupImportError("Missing required keys")
        try:
            receipts = parse_receipts(payload["receipts"])
            category_data = parse_category_data(payload["categoryData"])
        except (ValueError, ValidationError) as e:
            raise BackupImportError(f"Invalid backup: {e}")

        category_data = category_data.with_reserved_category()
        self._session.import_state(receipts, category_data, source=source)
        # The ledger drops item-less and repeated receipts; report what it kept
        return BackupFile(
            receipts=self._session.receipts,
            category_data=self._session.category_data,
            exported_at=payload.get("exportedAt"),
            version=payload.get("version") or 1,
        )

    def import_from_file(self, path: str | Path) -> BackupFile:
        """
        Raises:
            BackupImportError: If the file is unreadable or not a valid backup
        """
        target = Path(path).expanduser()
        try:
            payload = json.loads(target.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise BackupImportError(f"Cannot read backup {target}: {e}")
        return self.import_payload(payload, source=str(target))

    def restore_from_local_backup(self) -> bool:
        """
        Import the auto-backup blob.

        Returns:
            False when there is no usable local backup
        """
        payload = self._session.persistence.read_backup()
        if payload is None:
            return False
        try:
            self.import_payload(payload, source="local_backup")
        except BackupImportError as e:
            logger.warning("local_backup_invalid", error=str(e))
            return False
        return True

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    @property
    def auto_backup(self) -> bool:
        return self._session.persistence.auto_backup

    def set_auto_backup(self, enabled: bool) -> None:
        self._session.persistence.set_auto_backup(enabled)

    def reset_all(self) -> None:
        self._session.reset()
