"""
Remote Sync Engine

Keeps the session and the user's remote document eventually consistent.

DESIGN DECISION: Local-first. Every intent is committed and persisted
locally before anything is sent. The remote document is a whole snapshot:

    local change  -> debounce -> push full snapshot (merge)
    remote change -> apply fields present -> local write-through

Feedback loops are broken in two places. A delivery whose updatedAt matches
our last successful push is our own echo and is skipped. While a remote
document is being applied (and for a short settle period afterwards) the
local change feed does not schedule pushes.

TRADEOFFS:
- The settle period is a heuristic. A local edit made inside it is not
  pushed until the next edit
- Echoes are matched on the last push only. A stale echo of an older push
  that arrives after a newer one is applied like any remote change
- No retry queue: a failed background push is logged and dropped; the next
  local change schedules a fresh one
"""

import asyncio
from enum import Enum
from typing import Optional

import structlog
from pydantic import BaseModel

from expense_recorder.audit import AuditLogger
from expense_recorder.config import SyncSettings, get_settings
from expense_recorder.models.audit import AuditEventBuilder
from expense_recorder.models.snapshot import SyncSnapshot, utc_now_iso
from expense_recorder.persistence.local import parse_category_data, parse_receipts
from expense_recorder.services.remote.interface import (
    RemoteDocument,
    RemoteDocumentStore,
    RemotePayloadError,
    RemoteStoreError,
    Subscription,
)
from expense_recorder.session import ExpenseSession
from expense_recorder.sync.debounce import DebouncedTask


logger = structlog.get_logger(__name__)


def parse_inbound_document(document: RemoteDocument) -> SyncSnapshot:
    """
    Validate a remote document with the same rules as the local blobs.

    Absent (or null) fields stay None. A present taxonomy must carry both
    `categories` and `labels`.

    Raises:
        ValueError: If a present field is malformed
    """
    receipts = document.get("receipts")
    category_data = document.get("categoryData")
    return SyncSnapshot(
        receipts=parse_receipts(receipts) if receipts is not None else None,
        category_data=(
            parse_category_data(category_data) if category_data is not None else None
        ),
        updated_at=document.get("updatedAt"),
    )


class SyncState(str, Enum):
    IDLE = "idle"
    LOADING_LOCAL = "loading_local"
    ACTIVE = "active"


class SyncStatus(BaseModel):
    """Point-in-time view of the engine for status indicators."""
    state: SyncState
    user_id: Optional[str] = None
    pushing: bool = False
    pulling: bool = False
    last_push_time: Optional[str] = None
    last_pull_time: Optional[str] = None
    pending_push: bool = False
    applying_remote: bool = False


class RemoteSyncEngine:
    """
    Debounced bidirectional sync between one session and one remote document.

    All methods must be called from the event loop the engine was started on.
    """

    def __init__(
        self,
        session: ExpenseSession,
        remote: RemoteDocumentStore,
        settings: Optional[SyncSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._session = session
        self._remote = remote
        self._settings = settings or get_settings().sync
        self._audit_logger = audit_logger or session.audit_logger

        self._state = SyncState.IDLE
        self._user_id: Optional[str] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._debounce = DebouncedTask(
            self._settings.push_debounce_seconds, self._debounced_push,
        )
        self._push_lock: Optional[asyncio.Lock] = None
        self._unsubscribe_local = None
        self._remote_subscription: Optional[Subscription] = None

        self._discard_first_remote = False
        self._applying_remote = False
        self._settle_handle: Optional[asyncio.TimerHandle] = None

        self._pushing = False
        self._pulling = False
        self._last_push_time: Optional[str] = None
        self._last_pull_time: Optional[str] = None
        self._last_pushed_at: Optional[str] = None

        session.set_sync_status_provider(lambda: self.status)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def applying_remote(self) -> bool:
        return self._applying_remote

    @property
    def status(self) -> SyncStatus:
        return SyncStatus(
            state=self._state,
            user_id=self._user_id,
            pushing=self._pushing,
            pulling=self._pulling,
            last_push_time=self._last_push_time,
            last_pull_time=self._last_pull_time,
            pending_push=self._debounce.pending,
            applying_remote=self._applying_remote,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, user_id: Optional[str]) -> None:
        """
        Begin syncing the session with `user_id`'s remote document.

        Without a user id this is a no-op. Starting for another user stops
        the current sync first.
        """
        if not user_id:
            logger.info("sync_start_skipped", reason="no user")
            return
        if self._state != SyncState.IDLE:
            if user_id == self._user_id:
                return
            await self.stop()

        self._state = SyncState.LOADING_LOCAL
        self._user_id = user_id
        self._loop = asyncio.get_running_loop()
        self._push_lock = asyncio.Lock()

        # The session booted from local storage; if that held receipts, the
        # first remote delivery must not clobber them.
        self._discard_first_remote = self._session.loaded_with_data

        self._unsubscribe_local = self._session.subscribe(self._on_local_change)
        self._remote_subscription = self._remote.watch(user_id, self._on_remote_change)
        self._state = SyncState.ACTIVE

        logger.info(
            "sync_started",
            user_id=user_id,
            discard_first_remote=self._discard_first_remote,
        )
        self._audit_logger.log(AuditEventBuilder.sync_lifecycle(True, user_id))

        if not self._session.ledger.is_empty:
            self._debounce.schedule()

    async def stop(self, flush_pending: bool = True) -> None:
        """
        Stop syncing.

        Waits for a push already on the wire. A push still waiting out its
        debounce is sent right away when `flush_pending`, dropped otherwise.
        """
        if self._state == SyncState.IDLE:
            return

        await self._debounce.wait_in_flight()
        if flush_pending:
            await self._debounce.flush()
        else:
            self._debounce.cancel()
        # A manual push may still hold the lock
        async with self._push_lock:
            pass

        if self._unsubscribe_local is not None:
            self._unsubscribe_local()
            self._unsubscribe_local = None
        if self._remote_subscription is not None:
            self._remote_subscription.cancel()
            self._remote_subscription = None
        if self._settle_handle is not None:
            self._settle_handle.cancel()
            self._settle_handle = None

        user_id = self._user_id
        self._applying_remote = False
        self._discard_first_remote = False
        self._last_pushed_at = None
        self._state = SyncState.IDLE
        self._user_id = None

        logger.info("sync_stopped", user_id=user_id)
        self._audit_logger.log(AuditEventBuilder.sync_lifecycle(False, user_id or ""))

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _on_local_change(self) -> None:
        if self._state != SyncState.ACTIVE or self._applying_remote:
            return
        self._debounce.schedule()

    async def _debounced_push(self) -> None:
        try:
            await self._push(manual=False, merge=True)
        except RemoteStoreError as e:
            # The next local change schedules another push
            logger.warning("debounced_push_dropped", user_id=self._user_id, error=str(e))

    async def _push(self, manual: bool, merge: bool) -> None:
        user_id = self._user_id
        async with self._push_lock:
            self._pushing = True
            try:
                snapshot = self._session.snapshot()
                await self._remote.set_document(user_id, snapshot.to_document(), merge=merge)
            except RemoteStoreError as e:
                logger.error("push_failed", user_id=user_id, manual=manual, error=str(e))
                self._audit_logger.log(AuditEventBuilder.push_failed(user_id, manual, str(e)))
                raise
            finally:
                self._pushing = False
            self._last_pushed_at = snapshot.updated_at

        self._last_push_time = utc_now_iso()
        logger.info(
            "push_completed",
            user_id=user_id,
            manual=manual,
            receipt_count=len(snapshot.receipts or []),
        )
        self._audit_logger.log(AuditEventBuilder.push_completed(
            user_id, manual, len(snapshot.receipts or []),
        ))

    async def push_now(self) -> bool:
        """
        Replace the remote document with local state immediately.

        Returns:
            False when there is no active user, True once written

        Raises:
            RemoteStoreError: If the write fails
        """
        if self._state != SyncState.ACTIVE:
            return False
        self._debounce.cancel()
        await self._push(manual=True, merge=False)
        return True

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _on_remote_change(self, document: Optional[RemoteDocument]) -> None:
        if self._state != SyncState.ACTIVE:
            return

        if self._discard_first_remote:
            self._discard_first_remote = False
            logger.info("remote_discarded", user_id=self._user_id, reason="local data at boot")
            self._audit_logger.log(AuditEventBuilder.remote_discarded(
                self._user_id, "first delivery ignored, local data present at boot",
            ))
            return

        if document is None:
            logger.debug("remote_document_missing", user_id=self._user_id)
            return

        try:
            snapshot = parse_inbound_document(document)
        except ValueError as e:
            logger.warning("remote_payload_invalid", user_id=self._user_id, error=str(e))
            self._audit_logger.log(AuditEventBuilder.remote_discarded(
                self._user_id, f"invalid payload: {e}",
            ))
            return

        if snapshot.updated_at and snapshot.updated_at == self._last_pushed_at:
            logger.debug("remote_echo_skipped", user_id=self._user_id)
            return
        if snapshot.is_empty:
            logger.debug("remote_document_empty", user_id=self._user_id)
            return

        self._apply_remote(snapshot)

    def _apply_remote(self, snapshot: SyncSnapshot) -> list[str]:
        if self._settle_handle is not None:
            self._settle_handle.cancel()
            self._settle_handle = None

        self._applying_remote = True
        try:
            applied = self._session.apply_snapshot(snapshot)
        finally:
            self._settle_handle = self._loop.call_later(
                self._settings.remote_settle_seconds, self._settle,
            )

        if applied:
            logger.info("remote_applied", user_id=self._user_id, fields=applied)
            self._audit_logger.log(AuditEventBuilder.remote_applied(self._user_id, applied))
        return applied

    def _settle(self) -> None:
        self._settle_handle = None
        self._applying_remote = False

    async def pull_now(self) -> bool:
        """
        Overwrite local state with the remote document.

        Returns:
            True if a document was found and applied

        Raises:
            RemoteStoreError: If the read fails or the document is malformed.
                Local state is untouched in that case.
        """
        if self._state != SyncState.ACTIVE:
            return False

        user_id = self._user_id
        self._pulling = True
        try:
            document = await self._remote.get_document(user_id)
            if document is None:
                snapshot = None
            else:
                try:
                    snapshot = parse_inbound_document(document)
                except ValueError as e:
                    raise RemotePayloadError(f"Remote document is malformed: {e}")
        except RemoteStoreError as e:
            logger.error("pull_failed", user_id=user_id, error=str(e))
            self._audit_logger.log(AuditEventBuilder.pull_failed(user_id, str(e)))
            raise
        finally:
            self._pulling = False

        self._last_pull_time = utc_now_iso()
        self._audit_logger.log(AuditEventBuilder.pull_completed(user_id, snapshot is not None))
        if snapshot is None:
            logger.info("pull_completed", user_id=user_id, found=False)
            return False

        self._apply_remote(snapshot)
        logger.info("pull_completed", user_id=user_id, found=True)
        return True
