"""
Snapshot Models

A snapshot is the whole {receipts, categoryData} pair. It is the only unit
exchanged with the remote store and with backup files; there are no deltas.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from expense_recorder.models.receipt import CategoryData, Receipt


BACKUP_FORMAT_VERSION = 1


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncSnapshot(BaseModel):
    """
    Remote sync document.

    On inbound documents a None field means the field was absent and the
    matching local store must be left alone.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    receipts: Optional[list[Receipt]] = None
    category_data: Optional[CategoryData] = Field(
        default=None,
        alias="categoryData",
    )
    updated_at: Optional[str] = Field(
        default=None,
        alias="updatedAt",
    )

    @property
    def is_empty(self) -> bool:
        return self.receipts is None and self.category_data is None

    def to_document(self) -> dict[str, Any]:
        """JSON-ready dict in the remote document shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class BackupFile(BaseModel):
    """Backup file interchange format."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    receipts: list[Receipt]
    category_data: CategoryData = Field(alias="categoryData")
    exported_at: Optional[str] = Field(
        default=None,
        alias="exportedAt",
    )
    version: int = Field(default=BACKUP_FORMAT_VERSION, ge=1)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
