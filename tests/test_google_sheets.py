"""
Tests for the Google Sheets document store

The worksheet is an in-memory fake; no Google API is contacted.
"""

import asyncio
import json
from unittest.mock import MagicMock

import gspread
import pytest
import requests
from tenacity import wait_none

from expense_recorder.config import GoogleSheetsSettings, SyncSettings
from expense_recorder.services.remote import (
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    RemoteConnectionError,
    RemotePayloadError,
    RemotePermissionError,
)
from expense_recorder.services.remote.google_sheets import (
    DOCUMENT_COLUMNS,
    _translate_api_error,
    split_chunks,
)


USER = "user-1"


class FakeWorksheet:
    """The subset of gspread.Worksheet the store uses."""

    def __init__(self):
        self.rows: list[list[str]] = [list(DOCUMENT_COLUMNS)]
        self.col_count = 7

    def col_values(self, col):
        return [row[col - 1] if len(row) >= col else "" for row in self.rows]

    def row_values(self, row):
        values = list(self.rows[row - 1])
        while values and values[-1] == "":
            values.pop()
        return values

    def append_row(self, values, value_input_option=None):
        self.rows.append(list(values))

    def update(self, range_name, values, value_input_option=None):
        row_index = int(range_name.split(":")[0][1:])
        self.rows[row_index - 1] = list(values[0])

    def add_cols(self, count):
        self.col_count += count


class FlakyWorksheet(FakeWorksheet):
    """A worksheet whose row lookup drops the connection on chosen calls."""

    def __init__(self, failing_calls):
        super().__init__()
        self.failing_calls = set(failing_calls)
        self.lookups = 0

    def col_values(self, col):
        self.lookups += 1
        if self.lookups in self.failing_calls:
            raise requests.exceptions.ConnectionError("connection reset")
        return super().col_values(col)


def _api_error(status: int) -> gspread.exceptions.APIError:
    response = MagicMock()
    response.status_code = status
    response.json.return_value = {
        "error": {"code": status, "message": "boom", "status": "ERROR"},
    }
    return gspread.exceptions.APIError(response)


@pytest.fixture
def worksheet():
    return FakeWorksheet()


@pytest.fixture
def no_retry_wait(monkeypatch):
    for method in (
        GoogleSheetsDocumentStore._read_document_sync,
        GoogleSheetsDocumentStore._write_document_sync,
    ):
        monkeypatch.setattr(method.retry, "wait", wait_none())


def _store_for(worksheet):
    client = MagicMock(spec=GoogleSheetsClient)
    client.get_documents_sheet.return_value = worksheet
    return GoogleSheetsDocumentStore(
        client=client,
        sync_settings=SyncSettings(poll_interval_seconds=0.01),
    )


@pytest.fixture
def store(worksheet):
    return _store_for(worksheet)


class TestDocumentRows:
    """Tests for reading and writing chunked rows."""

    def test_missing_document(self, store):
        assert asyncio.run(store.get_document(USER)) is None

    def test_write_appends_row(self, store, worksheet):
        document = {"receipts": [], "updatedAt": "2024-01-01T00:00:00+00:00"}
        asyncio.run(store.set_document(USER, document))
        row = worksheet.rows[1]
        assert row[:3] == [USER, "2024-01-01T00:00:00+00:00", "1"]
        assert json.loads(row[3]) == document
        assert asyncio.run(store.get_document(USER)) == document

    def test_merge_keeps_other_fields(self, store, worksheet):
        asyncio.run(store.set_document(USER, {"receipts": [], "legacy": 1}))
        asyncio.run(store.set_document(USER, {"receipts": [{"id": "r1"}]}))
        assert len(worksheet.rows) == 2
        assert asyncio.run(store.get_document(USER)) == {
            "receipts": [{"id": "r1"}],
            "legacy": 1,
        }

    def test_replace_drops_other_fields(self, store):
        asyncio.run(store.set_document(USER, {"receipts": [], "legacy": 1}))
        asyncio.run(store.set_document(USER, {"receipts": []}, merge=False))
        assert asyncio.run(store.get_document(USER)) == {"receipts": []}

    def test_large_document_spans_cells(self, store, worksheet):
        document = {"notes": "x" * 100_000}
        asyncio.run(store.set_document(USER, document))
        assert worksheet.rows[1][2] == "3"
        assert asyncio.run(store.get_document(USER)) == document

        # Shrinking clears the chunks left behind
        asyncio.run(store.set_document(USER, {"notes": "short"}, merge=False))
        assert worksheet.rows[1][4:] == ["", ""]
        assert asyncio.run(store.get_document(USER)) == {"notes": "short"}

    def test_wide_row_adds_columns(self, store, worksheet):
        asyncio.run(store.set_document(USER, {"notes": "x" * 250_000}))
        assert worksheet.col_count >= 3 + 6

    def test_corrupt_row(self, store, worksheet):
        worksheet.rows.append([USER, "", "1", "{not json"])
        with pytest.raises(RemotePayloadError):
            asyncio.run(store.get_document(USER))

    def test_split_chunks(self):
        assert split_chunks("abcdefg", size=3) == ["abc", "def", "g"]
        assert split_chunks("", size=3) == [""]


class TestErrors:
    """Tests for mapping gspread errors."""

    def test_permission_denied(self, store):
        store._client.get_documents_sheet.side_effect = _api_error(403)
        with pytest.raises(RemotePermissionError):
            asyncio.run(store.get_document(USER))

    def test_server_error_is_connection_error(self):
        assert isinstance(_translate_api_error(_api_error(500)), RemoteConnectionError)

    def test_dropped_connection_is_retried(self, no_retry_wait):
        worksheet = FlakyWorksheet(failing_calls=[1])
        store = _store_for(worksheet)
        assert asyncio.run(store.get_document(USER)) is None
        assert worksheet.lookups == 2

    def test_persistent_connection_failure(self, no_retry_wait):
        worksheet = FlakyWorksheet(failing_calls=range(1, 10))
        store = _store_for(worksheet)
        with pytest.raises(RemoteConnectionError):
            asyncio.run(store.get_document(USER))
        assert worksheet.lookups == 3

    def test_write_timeout_is_connection_error(self, no_retry_wait):
        worksheet = FakeWorksheet()
        worksheet.append_row = MagicMock(side_effect=requests.exceptions.Timeout("slow"))
        store = _store_for(worksheet)
        with pytest.raises(RemoteConnectionError):
            asyncio.run(store.set_document(USER, {"receipts": []}))
        assert worksheet.append_row.call_count == 3


class TestWatch:
    """Tests for the polling watcher."""

    def test_delivers_current_then_changes(self, store):
        deliveries = []

        async def scenario():
            subscription = store.watch(USER, deliveries.append)
            await asyncio.sleep(0.05)
            await store.set_document(USER, {"receipts": [], "updatedAt": "t1"})
            await asyncio.sleep(0.05)
            subscription.cancel()
            await asyncio.sleep(0.02)
            await store.set_document(USER, {"receipts": [], "updatedAt": "t2"})
            await asyncio.sleep(0.05)

        asyncio.run(scenario())
        assert deliveries == [None, {"receipts": [], "updatedAt": "t1"}]

    def test_keeps_polling_after_connection_loss(self, no_retry_wait):
        worksheet = FlakyWorksheet(failing_calls=[2, 3, 4])
        store = _store_for(worksheet)
        deliveries = []

        async def scenario():
            subscription = store.watch(USER, deliveries.append)
            await asyncio.sleep(0.05)
            await store.set_document(USER, {"receipts": [], "updatedAt": "t1"})
            await asyncio.sleep(0.05)
            subscription.cancel()

        asyncio.run(scenario())
        assert worksheet.lookups > 4
        assert deliveries == [None, {"receipts": [], "updatedAt": "t1"}]


class TestGoogleSheetsClient:
    """Tests for worksheet setup."""

    def test_creates_documents_sheet(self):
        with pytest.warns(UserWarning):
            settings = GoogleSheetsSettings(
                credentials_path="/nonexistent/creds.json",
                spreadsheet_id="sheet-id",
            )
        client = GoogleSheetsClient(settings)
        spreadsheet = MagicMock()
        spreadsheet.worksheet.side_effect = gspread.WorksheetNotFound("SyncDocuments")
        client._spreadsheet = spreadsheet

        sheet = client.get_documents_sheet()

        spreadsheet.add_worksheet.assert_called_once()
        sheet.append_row.assert_called_once_with(DOCUMENT_COLUMNS)
        assert client.get_documents_sheet() is sheet
