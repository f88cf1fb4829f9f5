"""
Spending Query Models

A SpendingQuery describes the dashboard's filters and grouping; the
executor projects the current ledger through it on every call.
"""

from typing import Optional

from pydantic import BaseModel, Field


class SpendingQuery(BaseModel):
    """Filters and grouping for a spending projection. Empty lists mean "no filter"."""

    date_from: Optional[str] = Field(
        default=None,
        description="Inclusive ISO date lower bound"
    )
    date_to: Optional[str] = Field(
        default=None,
        description="Inclusive ISO date upper bound"
    )
    categories: list[str] = Field(default_factory=list)
    sub_categories: list[str] = Field(default_factory=list)
    labels: list[str] = Field(
        default_factory=list,
        description="Item matches when it carries any of these labels"
    )
    payment_modes: list[str] = Field(
        default_factory=list,
        description="Receipt-level filter; receipts without a mode never match"
    )
    search: Optional[str] = Field(
        default=None,
        description="Case-insensitive text matched against shop, item name and notes"
    )
    group_by: Optional[str] = Field(
        default=None,
        pattern="^(category|sub_category|label|month)$"
    )
    include_gst: bool = False


class SpendingSummary(BaseModel):
    """Result of projecting the ledger through a SpendingQuery."""

    total: float = 0.0
    item_count: int = Field(default=0, ge=0)
    receipt_count: int = Field(default=0, ge=0)
    breakdown: dict[str, float] = Field(
        default_factory=dict,
        description="group key -> total, empty when the query has no group_by"
    )
    query_description: str = ""

    @property
    def data_found(self) -> bool:
        return self.item_count > 0
