"""
Tests for the remote sync engine

Timings are shrunk through SyncSettings so the debounce and settle windows
take tens of milliseconds. Each test drives its own event loop with
asyncio.run.
"""

import asyncio

import pytest

from expense_recorder.config import SyncSettings
from expense_recorder.models.audit import AuditEventType
from expense_recorder.models.receipt import Item, Receipt, default_category_data
from expense_recorder.persistence import InMemoryKeyValueStore, PersistenceAdapter
from expense_recorder.services.remote import (
    InMemoryDocumentStore,
    RemoteConnectionError,
    RemotePayloadError,
    RemotePermissionError,
)
from expense_recorder.session import ExpenseSession
from expense_recorder.sync import DebouncedTask, RemoteSyncEngine, SyncState


USER = "user-1"
DEBOUNCE = 0.05
SETTLE = 0.02


def _settings() -> SyncSettings:
    return SyncSettings(
        push_debounce_seconds=DEBOUNCE,
        remote_settle_seconds=SETTLE,
    )


def _receipt(shop: str, receipt_id: str = "") -> Receipt:
    return Receipt(
        id=receipt_id,
        shop=shop,
        date="2024-03-15",
        items=[Item(name="Milk", price=50, category="Food", sub_category="Groceries")],
    )


def _remote_document(*shops: str) -> dict:
    return {
        "receipts": [
            _receipt(shop, receipt_id=f"remote-{n}").model_dump(mode="json", by_alias=True)
            for n, shop in enumerate(shops)
        ],
        "categoryData": default_category_data().model_dump(mode="json", by_alias=True),
        "updatedAt": "2024-03-15T10:00:00+00:00",
    }


class RecordingDocumentStore(InMemoryDocumentStore):
    """Counts writes and remembers their arguments."""

    def __init__(self, documents=None):
        super().__init__(documents)
        self.writes: list[tuple[dict, bool]] = []

    async def set_document(self, user_id, document, merge=True):
        self.writes.append((document, merge))
        await super().set_document(user_id, document, merge=merge)


class FailingDocumentStore(RecordingDocumentStore):
    """Every remote call fails."""

    def __init__(self, error):
        super().__init__()
        self.error = error

    async def get_document(self, user_id):
        raise self.error

    async def set_document(self, user_id, document, merge=True):
        self.writes.append((document, merge))
        raise self.error


class BlockingDocumentStore(RecordingDocumentStore):
    """Writes hang until `release` is set."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def set_document(self, user_id, document, merge=True):
        self.started.set()
        await self.release.wait()
        await super().set_document(user_id, document, merge=merge)


class LateEchoDocumentStore(RecordingDocumentStore):
    """
    Delivers write notifications `delay` seconds late, carrying the document
    as it was when written, the way a polling backend does.
    """

    def __init__(self, delay, documents=None):
        super().__init__(documents)
        self.delay = delay

    def _notify(self, user_id):
        loop = asyncio.get_running_loop()
        document = self.document(user_id)
        for callback in list(self._watchers.get(user_id, [])):
            loop.call_later(self.delay, self._deliver_written, user_id, callback, document)

    def _deliver_written(self, user_id, callback, document):
        if callback in self._watchers.get(user_id, []):
            callback(document)


def _session(receipts=None) -> ExpenseSession:
    store = InMemoryKeyValueStore()
    if receipts:
        PersistenceAdapter(store).save(receipts, default_category_data())
    return ExpenseSession(PersistenceAdapter(store))


def _engine(session, remote) -> RemoteSyncEngine:
    return RemoteSyncEngine(session, remote, settings=_settings())


class TestDebouncedTask:
    """Tests for the single-slot debounce."""

    def test_reschedule_runs_once(self):
        calls = []

        async def callback():
            calls.append(asyncio.get_running_loop().time())

        async def scenario():
            task = DebouncedTask(DEBOUNCE, callback)
            for _ in range(5):
                task.schedule()
                await asyncio.sleep(DEBOUNCE / 5)
            assert task.pending
            await asyncio.sleep(DEBOUNCE * 3)
            assert not task.pending

        asyncio.run(scenario())
        assert len(calls) == 1

    def test_cancel_reports_pending(self):
        async def callback():
            pass

        async def scenario():
            task = DebouncedTask(10, callback)
            assert not task.cancel()
            task.schedule()
            assert task.cancel()
            assert not task.pending

        asyncio.run(scenario())

    def test_flush_runs_now(self):
        calls = []

        async def callback():
            calls.append(True)

        async def scenario():
            task = DebouncedTask(10, callback)
            task.schedule()
            assert await task.flush()
            assert not await task.flush()

        asyncio.run(scenario())
        assert calls == [True]


class TestLifecycle:
    """Tests for start/stop and the no-user case."""

    def test_no_user_is_noop(self):
        session = _session()
        remote = RecordingDocumentStore()
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(None)
            assert engine.state == SyncState.IDLE
            assert not await engine.push_now()
            assert not await engine.pull_now()
            session.add_label("Weekly")
            await asyncio.sleep(DEBOUNCE * 2)

        asyncio.run(scenario())
        assert remote.writes == []

    def test_start_and_stop(self):
        session = _session()
        engine = _engine(session, RecordingDocumentStore())

        async def scenario():
            await engine.start(USER)
            assert engine.state == SyncState.ACTIVE
            assert session.sync_status.user_id == USER
            await engine.stop()
            assert engine.state == SyncState.IDLE
            assert engine.status.user_id is None

        asyncio.run(scenario())
        events = session.audit_logger.recent_events()
        types = [e.event_type for e in events]
        assert AuditEventType.SYNC_STARTED in types
        assert AuditEventType.SYNC_STOPPED in types

    def test_stop_flushes_pending_push(self):
        session = _session()
        remote = RecordingDocumentStore()
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(USER)
            await asyncio.sleep(0)
            session.add_receipt(_receipt("Fresh Mart"))
            assert engine.status.pending_push
            await engine.stop()

        asyncio.run(scenario())
        assert len(remote.writes) == 1
        assert remote.document(USER)["receipts"][0]["shop"] == "Fresh Mart"

    def test_stop_without_flush_drops_pending_push(self):
        session = _session()
        remote = RecordingDocumentStore()
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(USER)
            await asyncio.sleep(0)
            session.add_receipt(_receipt("Fresh Mart"))
            await engine.stop(flush_pending=False)
            await asyncio.sleep(DEBOUNCE * 2)

        asyncio.run(scenario())
        assert remote.writes == []

    def test_no_push_after_stop(self):
        session = _session()
        remote = RecordingDocumentStore()
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(USER)
            await engine.stop()
            session.add_label("Weekly")
            await asyncio.sleep(DEBOUNCE * 2)

        asyncio.run(scenario())
        assert remote.writes == []


    def test_stop_waits_for_push_in_flight(self):
        session = _session()
        remote = BlockingDocumentStore()
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(USER)
            await asyncio.sleep(0)
            session.add_receipt(_receipt("Fresh Mart"))
            await asyncio.wait_for(remote.started.wait(), timeout=1)
            stopping = asyncio.create_task(engine.stop())
            await asyncio.sleep(DEBOUNCE)
            assert not stopping.done()
            assert remote.document(USER) is None
            remote.release.set()
            await stopping
            assert engine.state == SyncState.IDLE

        asyncio.run(scenario())
        assert remote.document(USER)["receipts"][0]["shop"] == "Fresh Mart"

    def test_stop_waits_for_manual_push(self):
        session = _session()
        remote = BlockingDocumentStore()
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(USER)
            await asyncio.sleep(0)
            pushing = asyncio.create_task(engine.push_now())
            await asyncio.wait_for(remote.started.wait(), timeout=1)
            stopping = asyncio.create_task(engine.stop())
            await asyncio.sleep(DEBOUNCE)
            assert not stopping.done()
            remote.release.set()
            assert await pushing
            await stopping

        asyncio.run(scenario())
        assert len(remote.writes) == 1
        assert remote.document(USER) is not None


class TestOutbound:
    """Tests for debounced pushes."""

    def test_burst_coalesces_into_one_push(self):
        session = _session()
        remote = RecordingDocumentStore()
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(USER)
            await asyncio.sleep(0)
            for n in range(5):
                session.add_receipt(_receipt(f"Shop {n}"))
                await asyncio.sleep(DEBOUNCE / 5)
            assert remote.writes == []
            await asyncio.sleep(DEBOUNCE * 3)
            await engine.stop()

        asyncio.run(scenario())
        assert len(remote.writes) == 1
        document, merge = remote.writes[0]
        assert merge is True
        assert [r["shop"] for r in document["receipts"]] == [f"Shop {n}" for n in range(5)]
        assert "categoryData" in document
        assert "updatedAt" in document

    def test_echo_does_not_trigger_another_push(self):
        session = _session()
        remote = RecordingDocumentStore()
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(USER)
            await asyncio.sleep(0)
            session.add_label("Weekly")
            # push, echo delivery, settle, and a full debounce window after that
            await asyncio.sleep(DEBOUNCE * 4 + SETTLE)
            await engine.stop()

        asyncio.run(scenario())
        assert len(remote.writes) == 1
        assert engine.status.last_push_time is not None

    def test_late_echo_keeps_newer_edits(self):
        session = _session()
        remote = LateEchoDocumentStore(delay=0.1)
        engine = RemoteSyncEngine(session, remote, settings=SyncSettings(
            push_debounce_seconds=0.1,
            remote_settle_seconds=SETTLE,
        ))

        async def scenario():
            await engine.start(USER)
            await asyncio.sleep(0)
            session.add_receipt(_receipt("A"))
            # First push lands at 0.1s and its echo arrives at 0.2s
            await asyncio.sleep(0.13)
            assert len(remote.writes) == 1
            session.add_receipt(_receipt("B"))
            await asyncio.sleep(0.3)
            await engine.stop()

        asyncio.run(scenario())
        assert [r.shop for r in session.receipts] == ["A", "B"]
        assert [r["shop"] for r in remote.document(USER)["receipts"]] == ["A", "B"]
        assert len(remote.writes) == 2

    def test_local_changes_ignored_while_applying_remote(self):
        session = _session()
        remote = RecordingDocumentStore()
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(USER)
            await asyncio.sleep(0)
            await remote.set_document(USER, _remote_document("Remote Shop"))
            await asyncio.sleep(0)
            assert engine.applying_remote
            session.add_label("During settle")
            assert not engine.status.pending_push
            await asyncio.sleep(SETTLE * 2)
            assert not engine.applying_remote
            await engine.stop()

        asyncio.run(scenario())

    def test_background_push_failure_is_dropped(self):
        session = _session()
        remote = FailingDocumentStore(RemoteConnectionError("offline"))
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(USER)
            session.add_label("Weekly")
            await asyncio.sleep(DEBOUNCE * 3)
            assert not engine.status.pushing
            await engine.stop()

        asyncio.run(scenario())
        assert len(remote.writes) == 1
        assert engine.status.last_push_time is None
        failures = session.audit_logger.recent_events(event_type=AuditEventType.PUSH_FAILED)
        assert len(failures) == 1

    def test_start_with_local_data_schedules_push(self):
        session = _session([_receipt("Local Shop", receipt_id="local-1")])
        remote = RecordingDocumentStore()
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(USER)
            assert engine.status.pending_push
            await asyncio.sleep(DEBOUNCE * 3)
            await engine.stop()

        asyncio.run(scenario())
        assert remote.document(USER)["receipts"][0]["id"] == "local-1"


class TestInbound:
    """Tests for applying remote notifications."""

    def test_first_notification_applied_when_local_empty(self):
        session = _session()
        remote = RecordingDocumentStore({USER: _remote_document("Remote Shop")})
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(USER)
            await asyncio.sleep(SETTLE * 2)
            await engine.stop()

        asyncio.run(scenario())
        assert [r.shop for r in session.receipts] == ["Remote Shop"]
        assert remote.writes == []

    def test_first_notification_discarded_with_local_data(self):
        session = _session([_receipt("Local Shop", receipt_id="local-1")])
        remote = RecordingDocumentStore({USER: _remote_document("Remote Shop")})
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(USER)
            await asyncio.sleep(0)
            assert [r.shop for r in session.receipts] == ["Local Shop"]
            await engine.stop(flush_pending=False)

        asyncio.run(scenario())
        discarded = session.audit_logger.recent_events(
            event_type=AuditEventType.REMOTE_DISCARDED,
        )
        assert len(discarded) == 1

    def test_later_notifications_applied_per_field(self):
        session = _session([_receipt("Local Shop", receipt_id="local-1")])
        remote = RecordingDocumentStore({USER: _remote_document("Remote Shop")})
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(USER)
            await asyncio.sleep(0)
            # Another device writes only the taxonomy
            categories = default_category_data()
            categories.categories["Pets"] = ["Vet"]
            await remote.set_document(
                USER,
                {"categoryData": categories.model_dump(mode="json", by_alias=True)},
                merge=False,
            )
            await asyncio.sleep(0)
            await engine.stop(flush_pending=False)

        asyncio.run(scenario())
        assert [r.shop for r in session.receipts] == ["Local Shop"]
        assert "Pets" in session.category_data.categories

    def test_missing_document_changes_nothing(self):
        session = _session()
        session.add_category("Pets")
        engine = _engine(session, RecordingDocumentStore())

        async def scenario():
            await engine.start(USER)
            await asyncio.sleep(0)
            await engine.stop(flush_pending=False)

        asyncio.run(scenario())
        assert "Pets" in session.category_data.categories

    def test_document_without_known_fields_ignored(self):
        session = _session()
        remote = RecordingDocumentStore({USER: {"legacy": True, "updatedAt": "t0"}})
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(USER)
            await asyncio.sleep(0)
            assert not engine.applying_remote
            await engine.stop(flush_pending=False)

        asyncio.run(scenario())
        applied = session.audit_logger.recent_events(event_type=AuditEventType.REMOTE_APPLIED)
        assert applied == []

    def test_invalid_payload_dropped(self):
        session = _session()
        remote = RecordingDocumentStore({USER: {"receipts": "not a list"}})
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(USER)
            await asyncio.sleep(0)
            await engine.stop()

        asyncio.run(scenario())
        assert session.receipts == []
        discarded = session.audit_logger.recent_events(
            event_type=AuditEventType.REMOTE_DISCARDED,
        )
        assert "invalid payload" in discarded[0].details["reason"]


    def test_taxonomy_without_labels_rejected(self):
        session = _session()
        session.add_label("Weekly")
        remote = RecordingDocumentStore()
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(USER)
            await asyncio.sleep(0)
            await remote.set_document(
                USER,
                {
                    "categoryData": {"categories": {"Pets": ["Vet"]}},
                    "updatedAt": "2024-03-15T10:00:00+00:00",
                },
                merge=False,
            )
            await asyncio.sleep(0)
            await engine.stop(flush_pending=False)

        asyncio.run(scenario())
        assert "Weekly" in session.category_data.labels
        assert "Pets" not in session.category_data.categories
        discarded = session.audit_logger.recent_events(
            event_type=AuditEventType.REMOTE_DISCARDED,
        )
        assert "labels" in discarded[0].details["reason"]


class TestManualOverride:
    """Tests for push_now and pull_now."""

    def test_push_now_replaces_and_cancels_pending(self):
        session = _session()
        remote = RecordingDocumentStore({USER: {"legacy": True, "receipts": []}})
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(USER)
            await asyncio.sleep(SETTLE * 2)
            session.add_receipt(_receipt("Fresh Mart"))
            assert engine.status.pending_push
            assert await engine.push_now()
            assert not engine.status.pending_push
            await asyncio.sleep(DEBOUNCE * 3)
            await engine.stop()

        asyncio.run(scenario())
        assert len(remote.writes) == 1
        document, merge = remote.writes[0]
        assert merge is False
        assert "legacy" not in remote.document(USER)

    def test_push_now_propagates_errors(self):
        session = _session()
        engine = _engine(session, FailingDocumentStore(RemotePermissionError("denied")))

        async def scenario():
            await engine.start(USER)
            with pytest.raises(RemotePermissionError):
                await engine.push_now()
            assert not engine.status.pushing
            await engine.stop()

        asyncio.run(scenario())

    def test_pull_now_overwrites_local(self):
        session = _session([_receipt("Local Shop", receipt_id="local-1")])
        remote = RecordingDocumentStore({USER: _remote_document("Remote A", "Remote B")})
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(USER)
            await asyncio.sleep(0)
            assert await engine.pull_now()
            assert engine.applying_remote
            await engine.stop(flush_pending=False)

        asyncio.run(scenario())
        assert [r.shop for r in session.receipts] == ["Remote A", "Remote B"]
        assert engine.status.last_pull_time is not None

    def test_pull_now_without_document(self):
        session = _session()
        engine = _engine(session, RecordingDocumentStore())

        async def scenario():
            await engine.start(USER)
            found = await engine.pull_now()
            await engine.stop()
            return found

        assert asyncio.run(scenario()) is False

    def test_pull_now_failure_keeps_local_state(self):
        session = _session([_receipt("Local Shop", receipt_id="local-1")])
        engine = _engine(session, FailingDocumentStore(RemoteConnectionError("offline")))

        async def scenario():
            await engine.start(USER)
            with pytest.raises(RemoteConnectionError):
                await engine.pull_now()
            assert not engine.status.pulling
            await engine.stop(flush_pending=False)

        asyncio.run(scenario())
        assert [r.shop for r in session.receipts] == ["Local Shop"]
        failures = session.audit_logger.recent_events(event_type=AuditEventType.PULL_FAILED)
        assert len(failures) == 1

    def test_pull_now_rejects_partial_taxonomy(self):
        session = _session()
        session.add_label("Weekly")
        remote = RecordingDocumentStore({USER: {"categoryData": {"categories": {}}}})
        engine = _engine(session, remote)

        async def scenario():
            await engine.start(USER)
            await asyncio.sleep(0)
            with pytest.raises(RemotePayloadError):
                await engine.pull_now()
            await engine.stop(flush_pending=False)

        asyncio.run(scenario())
        assert "Weekly" in session.category_data.labels
