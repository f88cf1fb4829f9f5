"""
In-Memory Remote Document Store

Behaves like a real-time document database: watchers get the current
document right after subscribing and again after every write, delivered
asynchronously on the event loop. Used for tests and offline demos.
"""

import asyncio
import copy
from typing import Optional

from expense_recorder.services.remote.interface import (
    ChangeCallback,
    RemoteDocument,
    RemoteDocumentStore,
    Subscription,
)


class InMemoryDocumentStore(RemoteDocumentStore):
    """Per-user documents held in a dict."""

    def __init__(self, documents: Optional[dict[str, RemoteDocument]] = None):
        self._documents: dict[str, RemoteDocument] = copy.deepcopy(documents or {})
        self._watchers: dict[str, list[ChangeCallback]] = {}

    async def get_document(self, user_id: str) -> Optional[RemoteDocument]:
        document = self._documents.get(user_id)
        return copy.deepcopy(document) if document is not None else None

    async def set_document(
        self,
        user_id: str,
        document: RemoteDocument,
        merge: bool = True,
    ) -> None:
        if merge and user_id in self._documents:
            stored = {**self._documents[user_id], **copy.deepcopy(document)}
        else:
            stored = copy.deepcopy(document)
        self._documents[user_id] = stored
        self._notify(user_id)

    def watch(self, user_id: str, callback: ChangeCallback) -> Subscription:
        loop = asyncio.get_running_loop()
        self._watchers.setdefault(user_id, []).append(callback)
        loop.call_soon(self._deliver, user_id, callback)

        def cancel() -> None:
            watchers = self._watchers.get(user_id, [])
            if callback in watchers:
                watchers.remove(callback)

        return Subscription(cancel)

    def _notify(self, user_id: str) -> None:
        loop = asyncio.get_running_loop()
        for callback in list(self._watchers.get(user_id, [])):
            loop.call_soon(self._deliver, user_id, callback)

    def _deliver(self, user_id: str, callback: ChangeCallback) -> None:
        # Skip deliveries queued before the subscription was cancelled.
        if callback not in self._watchers.get(user_id, []):
            return
        document = self._documents.get(user_id)
        callback(copy.deepcopy(document) if document is not None else None)

    def document(self, user_id: str) -> Optional[RemoteDocument]:
        """Synchronous peek, for inspection."""
        return copy.deepcopy(self._documents.get(user_id))
