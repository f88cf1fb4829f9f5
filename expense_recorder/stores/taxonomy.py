"""
Taxonomy Store

Owns the category -> sub-category mapping, the label set and the payment
mode set, and keeps ledger items consistent with them.

DESIGN DECISION: Every structural edit (rename, delete, merge) first builds
the new taxonomy and a rewritten copy of the ledger, then commits both in
one step. Nothing is visible in between, so no item ever references a name
the taxonomy no longer has.

Validation failures never raise. They come back as a MutationResult with
status REJECTED or NOT_FOUND and a message meant for the user; the store is
left untouched.
"""

from typing import Optional

from expense_recorder.models.receipt import (
    RESERVED_CATEGORY,
    CategoryData,
    MutationResult,
    Receipt,
    default_category_data,
    unique_ordered,
)
from expense_recorder.stores.ledger import LedgerStore


class TaxonomyStore:
    """Mutable classification vocabulary with referential integrity."""

    def __init__(
        self,
        ledger: LedgerStore,
        category_data: Optional[CategoryData] = None,
    ):
        self._ledger = ledger
        self._categories: dict[str, list[str]] = {}
        self._labels: list[str] = []
        self._payment_modes: list[str] = []
        self.replace(category_data or default_category_data())

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def data(self) -> CategoryData:
        return CategoryData(
            categories={k: list(v) for k, v in self._categories.items()},
            labels=list(self._labels),
            payment_modes=list(self._payment_modes),
        )

    @property
    def categories(self) -> dict[str, list[str]]:
        return {k: list(v) for k, v in self._categories.items()}

    @property
    def labels(self) -> list[str]:
        return list(self._labels)

    @property
    def payment_modes(self) -> list[str]:
        return list(self._payment_modes)

    def has_category(self, name: str) -> bool:
        return name in self._categories

    def category_usage(self, name: str) -> int:
        return self._ledger.count_items(lambda i: i.category == name)

    def sub_category_usage(self, category: str, sub: str) -> int:
        return self._ledger.count_items(
            lambda i: i.category == category and i.sub_category == sub
        )

    def label_usage(self, label: str) -> int:
        return self._ledger.count_items(lambda i: label in i.labels)

    # ------------------------------------------------------------------
    # Additions
    # ------------------------------------------------------------------

    def add_category(self, name: str) -> MutationResult:
        name = (name or "").strip()
        if not name:
            return MutationResult.rejected("Name cannot be empty")
        if name in self._categories:
            return MutationResult.noop(f"Category already exists: {name}")
        self._categories[name] = []
        return MutationResult.applied(f"Category added: {name}")

    def add_sub_category(self, category: str, sub: str) -> MutationResult:
        sub = (sub or "").strip()
        if not sub:
            return MutationResult.rejected("Name cannot be empty")
        if category not in self._categories:
            return MutationResult.noop(f"Category does not exist: {category}")
        if sub in self._categories[category]:
            return MutationResult.noop(f"Sub-category already exists: {sub}")
        self._categories[category].append(sub)
        return MutationResult.applied(f"Sub-category added: {category} / {sub}")

    def add_label(self, label: str) -> MutationResult:
        label = (label or "").strip()
        if not label:
            return MutationResult.rejected("Name cannot be empty")
        if label in self._labels:
            return MutationResult.noop(f"Label already exists: {label}")
        self._labels.append(label)
        return MutationResult.applied(f"Label added: {label}")

    def add_payment_mode(self, mode: str) -> MutationResult:
        mode = (mode or "").strip()
        if not mode:
            return MutationResult.rejected("Name cannot be empty")
        if mode in self._payment_modes:
            return MutationResult.noop(f"Payment mode already exists: {mode}")
        self._payment_modes.append(mode)
        return MutationResult.applied(f"Payment mode added: {mode}")

    # ------------------------------------------------------------------
    # Renames
    # ------------------------------------------------------------------

    def rename_category(self, old: str, new: str) -> MutationResult:
        new = (new or "").strip()
        problem = _check_new_name(old, new, self._categories, "Category")
        if problem:
            return MutationResult.rejected(problem)
        if old not in self._categories:
            return MutationResult.not_found(f"Category does not exist: {old}")
        if old == RESERVED_CATEGORY:
            return MutationResult.rejected(f"{RESERVED_CATEGORY} cannot be renamed")

        categories = {
            (new if name == old else name): subs
            for name, subs in self._categories.items()
        }
        receipts, rewritten = self._ledger.rewrite_items(
            lambda i: i.category == old,
            lambda i: i.model_copy(update={"category": new}),
        )

        self._commit(receipts, categories=categories)
        return MutationResult.applied(
            f"Category renamed: {old} -> {new}",
            affected_items=rewritten,
        )

    def rename_sub_category(self, category: str, old: str, new: str) -> MutationResult:
        new = (new or "").strip()
        if category not in self._categories:
            return MutationResult.not_found(f"Category does not exist: {category}")
        subs = self._categories[category]
        problem = _check_new_name(old, new, subs, "Sub-category")
        if problem:
            return MutationResult.rejected(problem)
        if old not in subs:
            return MutationResult.not_found(f"Sub-category does not exist: {category} / {old}")

        categories = self.categories
        categories[category] = [new if s == old else s for s in subs]
        receipts, rewritten = self._ledger.rewrite_items(
            lambda i: i.category == category and i.sub_category == old,
            lambda i: i.model_copy(update={"sub_category": new}),
        )

        self._commit(receipts, categories=categories)
        return MutationResult.applied(
            f"Sub-category renamed: {category} / {old} -> {new}",
            affected_items=rewritten,
        )

    def rename_label(self, old: str, new: str) -> MutationResult:
        new = (new or "").strip()
        problem = _check_new_name(old, new, self._labels, "Label")
        if problem:
            return MutationResult.rejected(problem)
        if old not in self._labels:
            return MutationResult.not_found(f"Label does not exist: {old}")

        labels = [new if label == old else label for label in self._labels]
        receipts, rewritten = self._ledger.rewrite_items(
            lambda i: old in i.labels,
            lambda i: i.model_copy(update={
                "labels": unique_ordered(new if label == old else label for label in i.labels)
            }),
        )

        self._commit(receipts, labels=labels)
        return MutationResult.applied(
            f"Label renamed: {old} -> {new}",
            affected_items=rewritten,
        )

    def rename_payment_mode(self, old: str, new: str) -> MutationResult:
        new = (new or "").strip()
        problem = _check_new_name(old, new, self._payment_modes, "Payment mode")
        if problem:
            return MutationResult.rejected(problem)
        if old not in self._payment_modes:
            return MutationResult.not_found(f"Payment mode does not exist: {old}")

        modes = [new if mode == old else mode for mode in self._payment_modes]
        receipts, rewritten = self._ledger.rewrite_receipts(
            lambda r: r.payment_mode == old,
            lambda r: r.model_copy(update={"payment_mode": new}),
        )

        self._commit(receipts, payment_modes=modes)
        return MutationResult.applied(
            f"Payment mode renamed: {old} -> {new}",
            affected_items=rewritten,
        )

    # ------------------------------------------------------------------
    # Deletes
    # ------------------------------------------------------------------

    def delete_category(self, name: str, reassign_to: Optional[str] = None) -> MutationResult:
        """
        Delete a category, moving its items and sub-categories elsewhere.

        Items in use go to `reassign_to`, or to the reserved category when
        no target is given. The deleted category's sub-categories are merged
        into the target's list.
        """
        if name == RESERVED_CATEGORY:
            return MutationResult.rejected(f"{RESERVED_CATEGORY} cannot be deleted")
        if name not in self._categories:
            return MutationResult.not_found(f"Category does not exist: {name}")
        if reassign_to == name:
            return MutationResult.rejected("Cannot reassign a category to itself")

        usage = self.category_usage(name)
        target = reassign_to or (RESERVED_CATEGORY if usage > 0 else None)
        if usage > 0 and target not in self._categories:
            return MutationResult.rejected(
                f"Category {name} is used by {usage} items; "
                f"reassignment target does not exist: {target}"
            )

        categories = self.categories
        moved_subs = categories.pop(name)
        if target in categories:
            categories[target] = unique_ordered(categories[target] + moved_subs)

        receipts, rewritten = self._ledger.rewrite_items(
            lambda i: i.category == name,
            lambda i: i.model_copy(update={"category": target}),
        )

        self._commit(receipts, categories=categories)
        message = f"Category deleted: {name}"
        if rewritten:
            message += f" ({rewritten} items moved to {target})"
        return MutationResult.applied(message, affected_items=rewritten)

    def delete_sub_category(
        self,
        category: str,
        sub: str,
        reassign_to: Optional[str] = None,
    ) -> MutationResult:
        """
        Delete a sub-category.

        Unlike categories there is no implicit fallback: a sub-category in
        use can only go when `reassign_to` names another sub-category of the
        same category.
        """
        if category not in self._categories:
            return MutationResult.not_found(f"Category does not exist: {category}")
        subs = self._categories[category]
        if sub not in subs:
            return MutationResult.not_found(f"Sub-category does not exist: {category} / {sub}")

        usage = self.sub_category_usage(category, sub)
        if usage > 0 and (not reassign_to or reassign_to == sub or reassign_to not in subs):
            return MutationResult.rejected(
                f"Sub-category {sub} is used by {usage} items; "
                f"choose another {category} sub-category to move them to"
            )

        categories = self.categories
        categories[category] = [s for s in subs if s != sub]
        receipts, rewritten = self._ledger.rewrite_items(
            lambda i: i.category == category and i.sub_category == sub,
            lambda i: i.model_copy(update={"sub_category": reassign_to}),
        )

        self._commit(receipts, categories=categories)
        return MutationResult.applied(
            f"Sub-category deleted: {category} / {sub}",
            affected_items=rewritten,
        )

    def delete_label(self, label: str) -> MutationResult:
        """Remove a label everywhere. Labels never block deletion."""
        receipts, rewritten = self._ledger.rewrite_items(
            lambda i: label in i.labels,
            lambda i: i.model_copy(update={
                "labels": [x for x in i.labels if x != label]
            }),
        )
        if label not in self._labels and not rewritten:
            return MutationResult.noop(f"Label does not exist: {label}")

        labels = [x for x in self._labels if x != label]
        self._commit(receipts, labels=labels)
        return MutationResult.applied(f"Label deleted: {label}", affected_items=rewritten)

    def delete_payment_mode(self, mode: str) -> MutationResult:
        """Remove a payment mode and clear it from the receipts using it."""
        receipts, rewritten = self._ledger.rewrite_receipts(
            lambda r: r.payment_mode == mode,
            lambda r: r.model_copy(update={"payment_mode": None}),
        )
        if mode not in self._payment_modes and not rewritten:
            return MutationResult.noop(f"Payment mode does not exist: {mode}")

        modes = [x for x in self._payment_modes if x != mode]
        self._commit(receipts, payment_modes=modes)
        return MutationResult.applied(f"Payment mode deleted: {mode}", affected_items=rewritten)

    # ------------------------------------------------------------------
    # Wholesale replacement
    # ------------------------------------------------------------------

    def replace(self, category_data: CategoryData) -> None:
        """Replace everything (sync, import, reset). The reserved category is forced in."""
        data = category_data.with_reserved_category()
        self._categories = {k: list(v) for k, v in data.categories.items()}
        self._labels = list(data.labels)
        self._payment_modes = list(data.payment_modes)

    def _commit(
        self,
        receipts: list[Receipt],
        categories: Optional[dict[str, list[str]]] = None,
        labels: Optional[list[str]] = None,
        payment_modes: Optional[list[str]] = None,
    ) -> None:
        if categories is not None:
            self._categories = categories
        if labels is not None:
            self._labels = labels
        if payment_modes is not None:
            self._payment_modes = payment_modes
        self._ledger.commit(receipts)


def _check_new_name(old: str, new: str, existing, kind: str) -> Optional[str]:
    if not new:
        return "Name cannot be empty"
    if new == old:
        return "No changes to save"
    if new in existing:
        return f"{kind} already exists"
    return None


