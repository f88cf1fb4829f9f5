"""
Shared fixtures.

Everything runs against in-memory backends; no test touches the network.
"""

import pytest

from expense_recorder.models.receipt import Item, Receipt
from expense_recorder.persistence.interface import InMemoryKeyValueStore
from expense_recorder.persistence.local import PersistenceAdapter
from expense_recorder.session import ExpenseSession


def make_receipt(
    shop: str = "Fresh Mart",
    date: str = "2024-03-15",
    items=None,
    **kwargs,
) -> Receipt:
    if items is None:
        items = [Item(name="Milk", price=50.0, category="Food", sub_category="Groceries")]
    return Receipt(shop=shop, date=date, items=items, **kwargs)


@pytest.fixture
def kv_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def persistence(kv_store):
    return PersistenceAdapter(kv_store)


@pytest.fixture
def session(persistence):
    return ExpenseSession(persistence)


@pytest.fixture
def receipt_factory():
    return make_receipt
