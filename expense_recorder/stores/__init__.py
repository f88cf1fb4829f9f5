"""In-memory ledger and taxonomy stores."""

from expense_recorder.stores.ledger import LedgerStore
from expense_recorder.stores.taxonomy import TaxonomyStore

__all__ = ["LedgerStore", "TaxonomyStore"]
