"""
Core Data Models for Expense Recorder

These models define the schemas for everything stored locally, exchanged
with the remote document store and written to backup files.

DESIGN DECISION: Field aliases are camelCase (subCategory, paymentMode,
categoryData, ...) so the JSON documents keep the shape already stored on
users' devices and in their remote documents. Python code uses snake_case
names; always dump with by_alias=True.

Unknown fields are ignored and missing optional fields are defaulted.
There is no migration engine beyond that.
"""

from enum import Enum
from typing import Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


RESERVED_CATEGORY = "Uncategorized"

DEFAULT_CATEGORIES: dict[str, list[str]] = {
    RESERVED_CATEGORY: [],
    "Food": ["Groceries", "Dining Out"],
    "Transportation": ["Gas", "Public Transit"],
    "Entertainment": ["Movies", "Games"],
}
DEFAULT_LABELS = ["Organic", "Discount", "Gift", "Bulk"]
DEFAULT_PAYMENT_MODES = ["Cash", "Card", "UPI"]


def unique_ordered(values) -> list[str]:
    """Drop duplicates while keeping first-seen order."""
    seen: set[str] = set()
    result = []
    for value in values or []:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


# =============================================================================
# LEDGER MODELS
# =============================================================================

class Item(BaseModel):
    """
    A single line item on a receipt.

    `category` must name an existing taxonomy category when the receipt is
    created. Later renames and deletes rewrite it, so it is never checked
    again afterwards.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    name: str = Field(
        default="",
        description="Item name as written on the receipt"
    )
    price: float = Field(
        default=0.0,
        ge=0,
        description="Price before GST"
    )
    category: str = Field(
        default=RESERVED_CATEGORY,
        description="Taxonomy category name"
    )
    sub_category: str = Field(
        default="",
        alias="subCategory",
        description="Sub-category name within the category"
    )
    labels: list[str] = Field(
        default_factory=list,
        description="Set-like ordered list of labels"
    )
    notes: Optional[str] = None
    gst: Optional[float] = Field(
        default=None,
        ge=0,
        le=100,
        validation_alias=AliasChoices("gst", "gstRate"),
        serialization_alias="gst",
        description="Item GST rate in percent; overrides the receipt rate"
    )

    @field_validator('labels', mode='before')
    @classmethod
    def dedupe_labels(cls, v):
        if v is None:
            return []
        return unique_ordered(v)


class Receipt(BaseModel):
    """
    A purchase receipt: one shop, one date, a bag of line items.

    An empty `id` means "not assigned yet"; the ledger assigns one on add.
    A receipt without items may exist while a caller edits it, but the
    ledger never stores one.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    id: str = Field(
        default="",
        description="Opaque unique receipt id"
    )
    date: str = Field(
        default="",
        description="Purchase date (ISO YYYY-MM-DD)"
    )
    shop: str = Field(
        default="",
        description="Shop name"
    )
    items: list[Item] = Field(default_factory=list)
    payment_mode: Optional[str] = Field(
        default=None,
        alias="paymentMode",
        description="Payment mode name from the taxonomy"
    )
    gst: Optional[float] = Field(
        default=None,
        ge=0,
        le=100,
        validation_alias=AliasChoices("gst", "gstRate"),
        serialization_alias="gst",
        description="Receipt-level GST rate in percent"
    )

    def effective_gst(self, item: Item) -> float:
        """Item rate, else receipt rate, else zero."""
        if item.gst is not None:
            return item.gst
        if self.gst is not None:
            return self.gst
        return 0.0

    def item_amount(self, item: Item, include_gst: bool = False) -> float:
        if not include_gst:
            return item.price
        return item.price * (1 + self.effective_gst(item) / 100)

    def total(self, include_gst: bool = False) -> float:
        return sum(self.item_amount(item, include_gst) for item in self.items)

    @property
    def month(self) -> str:
        """YYYY-MM bucket, empty when the date is missing."""
        return self.date[:7]


# =============================================================================
# TAXONOMY MODEL
# =============================================================================

class CategoryData(BaseModel):
    """
    The classification vocabulary: categories with their sub-categories,
    labels and payment modes.

    All names are case-sensitive and unique within their own namespace.
    Whether the reserved category is present is enforced by the taxonomy
    store, not here, so that a partial document can still be parsed.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
    )

    categories: dict[str, list[str]] = Field(
        ...,
        description="category -> ordered unique sub-category names"
    )
    labels: list[str] = Field(default_factory=list)
    payment_modes: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PAYMENT_MODES),
        alias="paymentModes",
    )

    @field_validator('categories', mode='before')
    @classmethod
    def dedupe_sub_categories(cls, v):
        if not isinstance(v, dict):
            return v
        return {name: unique_ordered(subs) for name, subs in v.items()}

    @field_validator('labels', 'payment_modes', mode='before')
    @classmethod
    def dedupe_names(cls, v):
        if v is None:
            return []
        return unique_ordered(v)

    def with_reserved_category(self) -> "CategoryData":
        """Copy with the reserved category guaranteed (inserted first if missing)."""
        if RESERVED_CATEGORY in self.categories:
            return self.model_copy(deep=True)
        categories = {RESERVED_CATEGORY: []}
        categories.update({k: list(v) for k, v in self.categories.items()})
        return CategoryData(
            categories=categories,
            labels=list(self.labels),
            payment_modes=list(self.payment_modes),
        )


def default_category_data() -> CategoryData:
    """Fresh copy of the built-in taxonomy."""
    return CategoryData(
        categories={k: list(v) for k, v in DEFAULT_CATEGORIES.items()},
        labels=list(DEFAULT_LABELS),
        payment_modes=list(DEFAULT_PAYMENT_MODES),
    )


# =============================================================================
# MUTATION RESULTS
# =============================================================================

class MutationStatus(str, Enum):
    """Outcome of a store mutation."""
    APPLIED = "applied"      # State changed
    NOOP = "noop"            # Nothing to do (e.g. adding an existing label)
    REJECTED = "rejected"    # Integrity rule violated, state unchanged
    NOT_FOUND = "not_found"  # Target does not exist, state unchanged


class MutationResult(BaseModel):
    """
    Returned by every store mutation instead of raising.

    `message` is written for display to the user.
    """

    status: MutationStatus
    message: Optional[str] = None
    affected_items: int = Field(
        default=0,
        ge=0,
        description="Number of ledger items rewritten by the operation"
    )
    receipt_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (MutationStatus.APPLIED, MutationStatus.NOOP)

    @property
    def changed(self) -> bool:
        return self.status == MutationStatus.APPLIED

    @classmethod
    def applied(cls, message: Optional[str] = None, **kwargs) -> "MutationResult":
        return cls(status=MutationStatus.APPLIED, message=message, **kwargs)

    @classmethod
    def noop(cls, message: Optional[str] = None, **kwargs) -> "MutationResult":
        return cls(status=MutationStatus.NOOP, message=message, **kwargs)

    @classmethod
    def rejected(cls, message: str, **kwargs) -> "MutationResult":
        return cls(status=MutationStatus.REJECTED, message=message, **kwargs)

    @classmethod
    def not_found(cls, message: str, **kwargs) -> "MutationResult":
        return cls(status=MutationStatus.NOT_FOUND, message=message, **kwargs)
