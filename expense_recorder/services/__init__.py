"""Services package."""

from expense_recorder.services.remote import (
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryDocumentStore,
    RemoteConnectionError,
    RemoteDocumentNotFound,
    RemoteDocumentStore,
    RemotePayloadError,
    RemotePermissionError,
    RemoteStoreError,
)

__all__ = [
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "InMemoryDocumentStore",
    "RemoteConnectionError",
    "RemoteDocumentNotFound",
    "RemoteDocumentStore",
    "RemotePayloadError",
    "RemotePermissionError",
    "RemoteStoreError",
]
