"""
Persistence Adapter

Write-through snapshot of the ledger and taxonomy in a local key-value
store: receipts and taxonomy are two independent blobs, plus a combined
timestamped backup blob while auto-backup is on.

Boot-time load never fails. Each blob that is missing, unparsable or
missing required fields falls back to its default on its own (empty
ledger, built-in taxonomy).
"""

import json
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog
from pydantic import TypeAdapter, ValidationError

from expense_recorder.models.receipt import (
    CategoryData,
    Receipt,
    default_category_data,
)
from expense_recorder.models.snapshot import BACKUP_FORMAT_VERSION, utc_now_iso
from expense_recorder.persistence.interface import KeyValueStore, PersistenceError


RECEIPTS_KEY = "expenseRecorder.receipts"
CATEGORY_DATA_KEY = "expenseRecorder.categoryData"
BACKUP_KEY = "expenseRecorder.backup"
AUTO_BACKUP_KEY = "expenseRecorder.autoBackup"

_RECEIPT_LIST = TypeAdapter(list[Receipt])

logger = structlog.get_logger(__name__)


@dataclass
class LoadedState:
    """What the session boots from."""
    receipts: list[Receipt]
    category_data: CategoryData
    had_local_data: bool
    recovered: dict[str, str] = field(default_factory=dict)  # blob -> reason


def parse_receipts(raw: Any) -> list[Receipt]:
    """Validate a decoded receipts blob. Raises ValueError on bad shape."""
    if not isinstance(raw, list):
        raise ValueError("receipts must be a list")
    return _RECEIPT_LIST.validate_python(raw)


def parse_category_data(raw: Any) -> CategoryData:
    """Validate a decoded taxonomy blob. `categories` and `labels` are required."""
    if not isinstance(raw, dict):
        raise ValueError("categoryData must be an object")
    if not isinstance(raw.get("categories"), dict):
        raise ValueError("categoryData.categories must be an object")
    if not isinstance(raw.get("labels"), list):
        raise ValueError("categoryData.labels must be a list")
    return CategoryData.model_validate(raw)


def dump_receipts(receipts: list[Receipt]) -> list[dict]:
    return [r.model_dump(mode="json", by_alias=True, exclude_none=True) for r in receipts]


def dump_category_data(category_data: CategoryData) -> dict:
    return category_data.model_dump(mode="json", by_alias=True)


class PersistenceAdapter:
    """Serializes the stores' current state on demand; holds no copy of it."""

    def __init__(self, store: KeyValueStore, auto_backup_default: bool = True):
        self._store = store
        self._auto_backup_default = auto_backup_default

    # ------------------------------------------------------------------
    # Boot
    # ------------------------------------------------------------------

    def load(self) -> LoadedState:
        recovered: dict[str, str] = {}

        receipts: list[Receipt] = []
        raw_receipts = self._read_json(RECEIPTS_KEY, recovered)
        if raw_receipts is not None:
            try:
                receipts = parse_receipts(raw_receipts)
            except (ValueError, ValidationError) as e:
                recovered[RECEIPTS_KEY] = str(e)

        category_data: Optional[CategoryData] = None
        raw_categories = self._read_json(CATEGORY_DATA_KEY, recovered)
        if raw_categories is not None:
            try:
                category_data = parse_category_data(raw_categories)
            except (ValueError, ValidationError) as e:
                recovered[CATEGORY_DATA_KEY] = str(e)

        for blob, reason in recovered.items():
            logger.warning("local_blob_recovered", blob=blob, reason=reason)

        return LoadedState(
            receipts=receipts,
            category_data=category_data or default_category_data(),
            had_local_data=bool(receipts),
            recovered=recovered,
        )

    def _read_json(self, key: str, recovered: dict[str, str]) -> Any:
        try:
            raw = self._store.get(key)
        except PersistenceError as e:
            recovered[key] = str(e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            recovered[key] = f"Invalid JSON: {e}"
            return None

    # ------------------------------------------------------------------
    # Write-through
    # ------------------------------------------------------------------

    def save(self, receipts: list[Receipt], category_data: CategoryData) -> None:
        """
        Persist both blobs (and the backup blob when enabled).

        Raises:
            PersistenceError: If any write fails
        """
        receipts_doc = dump_receipts(receipts)
        category_doc = dump_category_data(category_data)

        self._store.set(RECEIPTS_KEY, json.dumps(receipts_doc))
        self._store.set(CATEGORY_DATA_KEY, json.dumps(category_doc))

        if self.auto_backup:
            self._store.set(BACKUP_KEY, json.dumps({
                "receipts": receipts_doc,
                "categoryData": category_doc,
                "updatedAt": utc_now_iso(),
                "version": BACKUP_FORMAT_VERSION,
            }))

    def clear(self) -> None:
        """Remove the receipts and taxonomy blobs. The backup blob is kept."""
        self._store.delete(RECEIPTS_KEY)
        self._store.delete(CATEGORY_DATA_KEY)

    # ------------------------------------------------------------------
    # Auto-backup
    # ------------------------------------------------------------------

    @property
    def auto_backup(self) -> bool:
        try:
            raw = self._store.get(AUTO_BACKUP_KEY)
            return bool(json.loads(raw)) if raw is not None else self._auto_backup_default
        except (PersistenceError, json.JSONDecodeError):
            return self._auto_backup_default

    def set_auto_backup(self, enabled: bool) -> None:
        self._store.set(AUTO_BACKUP_KEY, json.dumps(bool(enabled)))

    def read_backup(self) -> Optional[dict]:
        """Decoded auto-backup blob, or None if absent or unreadable."""
        recovered: dict[str, str] = {}
        raw = self._read_json(BACKUP_KEY, recovered)
        if recovered:
            logger.warning("local_backup_unreadable", reason=recovered[BACKUP_KEY])
        return raw if isinstance(raw, dict) else None
