"""
Local Persistence Package

Key-value backends, the write-through adapter and the backup manager.
"""

from expense_recorder.persistence.interface import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
    PersistenceError,
)
from expense_recorder.persistence.local import (
    AUTO_BACKUP_KEY,
    BACKUP_KEY,
    CATEGORY_DATA_KEY,
    RECEIPTS_KEY,
    LoadedState,
    PersistenceAdapter,
)

__all__ = [
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "PersistenceError",
    "AUTO_BACKUP_KEY",
    "BACKUP_KEY",
    "CATEGORY_DATA_KEY",
    "RECEIPTS_KEY",
    "LoadedState",
    "PersistenceAdapter",
]
