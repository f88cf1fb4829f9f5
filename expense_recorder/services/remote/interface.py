"""
Abstract Remote Document Store

DESIGN DECISION: The remote side is one JSON document per user,
{receipts, categoryData, updatedAt}. Reads and writes are whole-document
operations: merge (top-level fields in the payload overwrite, others are
kept) or replace. There are no field-level patches and no history.

Change notifications are delivered through watch(). The first delivery is
the document as it is when the watch starts (None if it does not exist),
then one delivery per change, including changes made by this process.
Callbacks run on the event loop that called watch().
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, Optional


RemoteDocument = dict[str, Any]
ChangeCallback = Callable[[Optional[RemoteDocument]], None]


class RemoteStoreError(Exception):
    """Base exception for remote store operations."""
    pass


class RemoteConnectionError(RemoteStoreError):
    """Could not reach the remote backend."""
    pass


class RemotePermissionError(RemoteStoreError):
    """The backend refused access."""
    pass


class RemoteDocumentNotFound(RemoteStoreError):
    """The container for user documents does not exist."""
    pass


class RemotePayloadError(RemoteStoreError):
    """A remote document does not have the expected shape."""
    pass


class Subscription:
    """Handle returned by watch(); cancel() stops deliveries."""

    def __init__(self, cancel: Callable[[], None]):
        self._cancel = cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if self._active:
            self._active = False
            self._cancel()


class RemoteDocumentStore(ABC):
    """
    Abstract interface for the per-user remote document.

    Any backend (Google Sheets, a document database, in-memory) must
    implement these methods.
    """

    @abstractmethod
    async def get_document(self, user_id: str) -> Optional[RemoteDocument]:
        """
        Read the user's document.

        Returns:
            The document, or None if the user has none yet

        Raises:
            RemoteStoreError: If the read fails
        """
        pass

    @abstractmethod
    async def set_document(
        self,
        user_id: str,
        document: RemoteDocument,
        merge: bool = True,
    ) -> None:
        """
        Write the user's document.

        Args:
            user_id: Document key
            document: Top-level fields to write
            merge: Keep remote fields missing from `document` (True) or
                replace the document wholesale (False)

        Raises:
            RemoteStoreError: If the write fails
        """
        pass

    @abstractmethod
    def watch(self, user_id: str, callback: ChangeCallback) -> Subscription:
        """
        Subscribe to changes of the user's document.

        Must be called from a running event loop.
        """
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None
