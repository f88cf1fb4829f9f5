"""
Spending Projection

DESIGN DECISION: Aggregates are never stored. Every call projects the
session's current receipts through the query, so the dashboard can never
show totals that disagree with the ledger.

Filters apply at two levels:
- receipt level: date range, payment mode
- item level: category, sub-category, labels, search

A receipt counts when at least one of its items matches. A search hit on
the shop name matches every item of that receipt.
"""

from collections.abc import Iterator

from expense_recorder.models.query import SpendingQuery, SpendingSummary
from expense_recorder.models.receipt import Item, Receipt
from expense_recorder.session import ExpenseSession


class SpendingQueryExecutor:
    """Read-only projections over an ExpenseSession."""

    def __init__(self, session: ExpenseSession):
        self._session = session

    def summarize(self, query: SpendingQuery) -> SpendingSummary:
        total = 0.0
        item_count = 0
        receipt_ids: set[str] = set()
        breakdown: dict[str, float] = {}

        for receipt, item in self._matching_items(query):
            amount = receipt.item_amount(item, include_gst=query.include_gst)
            total += amount
            item_count += 1
            receipt_ids.add(receipt.id)

            if query.group_by:
                for key in self._group_keys(receipt, item, query.group_by):
                    breakdown[key] = breakdown.get(key, 0.0) + amount

        if query.group_by == "month":
            breakdown = dict(sorted(breakdown.items()))

        return SpendingSummary(
            total=total,
            item_count=item_count,
            receipt_count=len(receipt_ids),
            breakdown=breakdown,
            query_description=self._describe(query),
        )

    def filter_receipts(self, query: SpendingQuery) -> list[Receipt]:
        """Receipts with at least one matching item, in ledger order."""
        matched: list[Receipt] = []
        for receipt in self._session.receipts:
            if not self._receipt_matches(receipt, query):
                continue
            if any(self._item_matches(receipt, item, query) for item in receipt.items):
                matched.append(receipt)
        return matched

    def receipt_total(self, receipt_id: str, include_gst: bool = False) -> float:
        receipt = self._session.ledger.get(receipt_id)
        if receipt is None:
            return 0.0
        return receipt.total(include_gst=include_gst)

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _matching_items(self, query: SpendingQuery) -> Iterator[tuple[Receipt, Item]]:
        for receipt in self._session.receipts:
            if not self._receipt_matches(receipt, query):
                continue
            for item in receipt.items:
                if self._item_matches(receipt, item, query):
                    yield receipt, item

    @staticmethod
    def _receipt_matches(receipt: Receipt, query: SpendingQuery) -> bool:
        # ISO dates compare correctly as strings
        if query.date_from and receipt.date < query.date_from:
            return False
        if query.date_to and receipt.date > query.date_to:
            return False
        if query.payment_modes and receipt.payment_mode not in query.payment_modes:
            return False
        return True

    @staticmethod
    def _item_matches(receipt: Receipt, item: Item, query: SpendingQuery) -> bool:
        if query.categories and item.category not in query.categories:
            return False
        if query.sub_categories and item.sub_category not in query.sub_categories:
            return False
        if query.labels and not set(item.labels) & set(query.labels):
            return False
        if query.search:
            needle = query.search.strip().lower()
            haystack = [receipt.shop, item.name, item.notes or ""]
            if needle and not any(needle in text.lower() for text in haystack):
                return False
        return True

    @staticmethod
    def _group_keys(receipt: Receipt, item: Item, group_by: str) -> list[str]:
        if group_by == "category":
            return [item.category]
        elif group_by == "sub_category":
            return [item.sub_category]
        elif group_by == "label":
            return list(item.labels)
        elif group_by == "month":
            return [receipt.month]
        return []

    # ------------------------------------------------------------------
    # Description
    # ------------------------------------------------------------------

    def _describe(self, query: SpendingQuery) -> str:
        desc_parts = ["Spending"]
        if query.categories:
            desc_parts.append(f"in {', '.join(query.categories)}")
        if query.sub_categories:
            desc_parts.append(f"sub-categories {', '.join(query.sub_categories)}")
        if query.labels:
            desc_parts.append(f"labelled {', '.join(query.labels)}")
        if query.payment_modes:
            desc_parts.append(f"paid by {', '.join(query.payment_modes)}")
        if query.search:
            desc_parts.append(f"matching '{query.search}'")
        if query.date_from or query.date_to:
            desc_parts.append(self._date_range_str(query.date_from, query.date_to))
        if query.group_by:
            desc_parts.append(f"grouped by {query.group_by}")
        if query.include_gst:
            desc_parts.append("including GST")
        return " ".join(desc_parts)

    @staticmethod
    def _date_range_str(date_from, date_to) -> str:
        if date_from and date_to:
            return f"from {date_from} to {date_to}"
        elif date_from:
            return f"since {date_from}"
        else:
            return f"until {date_to}"
