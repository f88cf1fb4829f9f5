"""
Ledger Store

Owns the ordered collection of receipts.

Invariants kept by every mutation:
- receipt ids are unique
- every stored receipt has a shop and at least one item

The store is purely in-memory. Persistence and change notification are
the session's job; cascading taxonomy edits go through rewrite_items()
and commit() so the taxonomy store can prepare a new receipt list and
swap it in together with its own change.
"""

from collections.abc import Callable, Collection, Iterable, Iterator
from typing import Optional
from uuid import uuid4

from expense_recorder.models.receipt import Item, MutationResult, Receipt


def new_receipt_id() -> str:
    return uuid4().hex


class LedgerStore:
    """Ordered, id-unique receipt collection."""

    def __init__(self, receipts: Optional[Iterable[Receipt]] = None):
        self._receipts: list[Receipt] = []
        if receipts:
            self.replace(receipts)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def receipts(self) -> list[Receipt]:
        """Deep copies, in ledger order."""
        return [r.model_copy(deep=True) for r in self._receipts]

    @property
    def is_empty(self) -> bool:
        return not self._receipts

    def __len__(self) -> int:
        return len(self._receipts)

    def get(self, receipt_id: str) -> Optional[Receipt]:
        for receipt in self._receipts:
            if receipt.id == receipt_id:
                return receipt.model_copy(deep=True)
        return None

    def all_items(self) -> Iterator[tuple[Receipt, Item]]:
        """(receipt, item) pairs over the live data; callers must not mutate them."""
        for receipt in self._receipts:
            for item in receipt.items:
                yield receipt, item

    def count_items(self, predicate: Callable[[Item], bool]) -> int:
        return sum(1 for _, item in self.all_items() if predicate(item))

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    def add_receipt(
        self,
        receipt: Receipt,
        known_categories: Optional[Collection[str]] = None,
    ) -> MutationResult:
        """
        Add a receipt.

        Args:
            receipt: Receipt to add. An empty id gets a fresh one.
            known_categories: When given, every item category must be in it.

        Returns:
            MutationResult with the stored receipt id on success.
        """
        problem = self._check_receipt(receipt)
        if problem:
            return MutationResult.rejected(problem)

        if known_categories is not None:
            unknown = unique_missing(
                (item.category for item in receipt.items), known_categories
            )
            if unknown:
                return MutationResult.rejected(
                    f"Unknown category: {', '.join(unknown)}"
                )

        stored = receipt.model_copy(deep=True)
        if not stored.id:
            stored.id = new_receipt_id()
        elif self._index_of(stored.id) is not None:
            return MutationResult.rejected(f"Receipt id already exists: {stored.id}")

        self._receipts.append(stored)
        return MutationResult.applied(
            f"Receipt added: {stored.shop}",
            receipt_id=stored.id,
        )

    def update_receipt(self, receipt: Receipt) -> MutationResult:
        """Replace the receipt with the same id, keeping its position."""
        index = self._index_of(receipt.id) if receipt.id else None
        if index is None:
            return MutationResult.not_found(f"Receipt not found: {receipt.id or '<no id>'}")

        problem = self._check_receipt(receipt)
        if problem:
            return MutationResult.rejected(problem, receipt_id=receipt.id)

        self._receipts[index] = receipt.model_copy(deep=True)
        return MutationResult.applied(
            f"Receipt updated: {receipt.shop}",
            receipt_id=receipt.id,
        )

    def delete_receipt(self, receipt_id: str) -> MutationResult:
        index = self._index_of(receipt_id)
        if index is None:
            return MutationResult.not_found(f"Receipt not found: {receipt_id}")
        removed = self._receipts.pop(index)
        return MutationResult.applied(
            f"Receipt deleted: {removed.shop}",
            receipt_id=receipt_id,
        )

    # ------------------------------------------------------------------
    # Bulk operations (taxonomy cascades, sync, import)
    # ------------------------------------------------------------------

    def rewrite_items(
        self,
        predicate: Callable[[Item], bool],
        rewrite: Callable[[Item], Item],
    ) -> tuple[list[Receipt], int]:
        """
        Build a rewritten copy of the ledger without committing it.

        Returns:
            (new_receipts, number_of_items_rewritten)
        """
        rewritten = 0
        new_receipts = []
        for receipt in self._receipts:
            items = []
            for item in receipt.items:
                if predicate(item):
                    items.append(rewrite(item))
                    rewritten += 1
                else:
                    items.append(item)
            new_receipts.append(receipt.model_copy(update={"items": items}))
        return new_receipts, rewritten

    def rewrite_receipts(
        self,
        predicate: Callable[[Receipt], bool],
        rewrite: Callable[[Receipt], Receipt],
    ) -> tuple[list[Receipt], int]:
        """Receipt-level counterpart of rewrite_items (payment modes)."""
        rewritten = 0
        new_receipts = []
        for receipt in self._receipts:
            if predicate(receipt):
                new_receipts.append(rewrite(receipt))
                rewritten += 1
            else:
                new_receipts.append(receipt)
        return new_receipts, rewritten

    def commit(self, receipts: list[Receipt]) -> None:
        """Swap in a list prepared by rewrite_items/rewrite_receipts."""
        self._receipts = receipts

    def replace(self, receipts: Iterable[Receipt]) -> int:
        """
        Replace the whole ledger with already-validated data.

        Receipts without items and repeated ids are dropped (first wins).

        Returns:
            Number of receipts dropped.
        """
        kept: list[Receipt] = []
        seen: set[str] = set()
        dropped = 0
        for receipt in receipts:
            stored = receipt.model_copy(deep=True)
            if not stored.items:
                dropped += 1
                continue
            if not stored.id:
                stored.id = new_receipt_id()
            if stored.id in seen:
                dropped += 1
                continue
            seen.add(stored.id)
            kept.append(stored)
        self._receipts = kept
        return dropped

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _index_of(self, receipt_id: str) -> Optional[int]:
        for index, receipt in enumerate(self._receipts):
            if receipt.id == receipt_id:
                return index
        return None

    @staticmethod
    def _check_receipt(receipt: Receipt) -> Optional[str]:
        if not receipt.shop.strip():
            return "Shop name is required"
        if not receipt.items:
            return "A receipt needs at least one item"
        return None


def unique_missing(names: Iterable[str], known: Collection[str]) -> list[str]:
    missing = []
    for name in names:
        if name not in known and name not in missing:
            missing.append(name)
    return missing
