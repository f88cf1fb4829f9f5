"""
Remote Document Store Package

Abstract interface plus the Google Sheets backend and an in-memory backend.
"""

from expense_recorder.services.remote.interface import (
    ChangeCallback,
    RemoteConnectionError,
    RemoteDocument,
    RemoteDocumentNotFound,
    RemoteDocumentStore,
    RemotePayloadError,
    RemotePermissionError,
    RemoteStoreError,
    Subscription,
)
from expense_recorder.services.remote.memory import InMemoryDocumentStore
from expense_recorder.services.remote.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
)

__all__ = [
    # Interface
    "ChangeCallback",
    "RemoteDocument",
    "RemoteDocumentStore",
    "Subscription",
    # Exceptions
    "RemoteConnectionError",
    "RemoteDocumentNotFound",
    "RemotePayloadError",
    "RemotePermissionError",
    "RemoteStoreError",
    # Implementations
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "InMemoryDocumentStore",
]
