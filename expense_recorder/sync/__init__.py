"""Remote synchronization package."""

from expense_recorder.sync.debounce import DebouncedTask
from expense_recorder.sync.engine import RemoteSyncEngine, SyncState, SyncStatus

__all__ = [
    "DebouncedTask",
    "RemoteSyncEngine",
    "SyncState",
    "SyncStatus",
]
