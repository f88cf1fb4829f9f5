"""
Google Sheets Remote Document Store

DESIGN DECISION: Each user's sync document is one row of a worksheet:

    user_id | updated_at | chunk_count | chunk_0 | chunk_1 | ...

The document is serialized as JSON and split into chunks below the Sheets
per-cell character limit. Merge writes read the current document, overlay
the top-level fields and write the row back.

TRADEOFFS:
- No push notifications: watch() polls the row and reports a change when
  updated_at (or the whole document, if it has none) differs
- No transactions: a concurrent writer can interleave between the read and
  write of a merge. Single-user data, so we accept it

gspread is synchronous; calls run in worker threads so the event loop
keeps serving timers and notifications.
"""

import asyncio
import json
from typing import Optional

import gspread
import requests
import structlog
from google.auth.exceptions import TransportError
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from expense_recorder.config import GoogleSheetsSettings, SyncSettings, get_settings
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


DOCUMENT_COLUMNS = ["user_id", "updated_at", "chunk_count"]
FIRST_CHUNK_COLUMN = len(DOCUMENT_COLUMNS) + 1

# Sheets rejects cells over 50,000 characters
CELL_CHUNK_SIZE = 45_000

logger = structlog.get_logger(__name__)

_retry_transient = retry(
    retry=retry_if_exception_type(RemoteConnectionError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


def _column_letter(index: int) -> str:
    """1-based column index to A1 letters."""
    letters = ""
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(65 + remainder) + letters
    return letters


def split_chunks(text: str, size: int = CELL_CHUNK_SIZE) -> list[str]:
    return [text[i:i + size] for i in range(0, len(text), size)] or [""]


def _translate_api_error(e: gspread.exceptions.APIError) -> RemoteStoreError:
    status = getattr(getattr(e, "response", None), "status_code", None)
    if status in (401, 403):
        return RemotePermissionError(f"Google Sheets refused access: {e}")
    if status == 404:
        return RemoteDocumentNotFound(f"Google Sheets resource not found: {e}")
    return RemoteConnectionError(f"Google Sheets API error: {e}")


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for connecting.
    """

    def __init__(
        self,
        settings: Optional[GoogleSheetsSettings] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheet: Optional[gspread.Worksheet] = None
        self._settings = settings or get_settings().google_sheets
        self._timeout = timeout_seconds

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                client = gspread.authorize(credentials)
                if self._timeout:
                    client.set_timeout(self._timeout)
                self._client = client
            except FileNotFoundError:
                raise RemoteConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise RemoteConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise RemoteDocumentNotFound(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_documents_sheet(self) -> gspread.Worksheet:
        """Get or create the worksheet holding sync documents."""
        if self._worksheet is None:
            spreadsheet = self.get_spreadsheet()
            try:
                sheet = spreadsheet.worksheet(self._settings.documents_sheet_name)
            except gspread.WorksheetNotFound:
                sheet = spreadsheet.add_worksheet(
                    title=self._settings.documents_sheet_name,
                    rows=100,
                    cols=len(DOCUMENT_COLUMNS) + 4,
                )
                sheet.append_row(DOCUMENT_COLUMNS)
            self._worksheet = sheet
        return self._worksheet


class GoogleSheetsDocumentStore(RemoteDocumentStore):
    """Sync documents stored as chunked JSON rows."""

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        sync_settings: Optional[SyncSettings] = None,
    ):
        sync_settings = sync_settings or get_settings().sync
        self._client = client or GoogleSheetsClient(
            timeout_seconds=sync_settings.remote_timeout_seconds,
        )
        self._poll_interval = sync_settings.poll_interval_seconds

    # ------------------------------------------------------------------
    # Row helpers (blocking)
    # ------------------------------------------------------------------

    def _find_row(self, sheet: gspread.Worksheet, user_id: str) -> Optional[int]:
        for index, value in enumerate(sheet.col_values(1), start=1):
            if index > 1 and value == user_id:
                return index
        return None

    def _decode_row(self, row: list[str]) -> Optional[RemoteDocument]:
        try:
            count = int(row[2]) if len(row) > 2 and row[2] else 0
        except ValueError:
            raise RemotePayloadError(f"Corrupt chunk count: {row[2]!r}")
        if count == 0:
            return None
        text = "".join(row[FIRST_CHUNK_COLUMN - 1:FIRST_CHUNK_COLUMN - 1 + count])
        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise RemotePayloadError(f"Remote document is not valid JSON: {e}")
        if not isinstance(document, dict):
            raise RemotePayloadError("Remote document is not an object")
        return document

    @_retry_transient
    def _read_document_sync(self, user_id: str) -> Optional[RemoteDocument]:
        try:
            sheet = self._client.get_documents_sheet()
            row_index = self._find_row(sheet, user_id)
            if row_index is None:
                return None
            return self._decode_row(sheet.row_values(row_index))
        except gspread.exceptions.APIError as e:
            raise _translate_api_error(e)
        except (requests.exceptions.RequestException, TransportError) as e:
            raise RemoteConnectionError(f"Google Sheets unreachable: {e}")

    @_retry_transient
    def _write_document_sync(
        self,
        user_id: str,
        document: RemoteDocument,
        merge: bool,
    ) -> None:
        try:
            sheet = self._client.get_documents_sheet()
            row_index = self._find_row(sheet, user_id)

            previous_width = 0
            if row_index is not None:
                existing_row = sheet.row_values(row_index)
                previous_width = len(existing_row)
                if merge:
                    existing = self._decode_row(existing_row) or {}
                    document = {**existing, **document}

            chunks = split_chunks(json.dumps(document, separators=(",", ":")))
            row = [user_id, str(document.get("updatedAt", "")), str(len(chunks)), *chunks]
            # Blank out chunks left over from a longer previous document
            row += [""] * max(0, previous_width - len(row))

            if sheet.col_count < len(row):
                sheet.add_cols(len(row) - sheet.col_count)

            if row_index is None:
                sheet.append_row(row, value_input_option="RAW")
            else:
                sheet.update(
                    range_name=f"A{row_index}:{_column_letter(len(row))}{row_index}",
                    values=[row],
                    value_input_option="RAW",
                )
        except gspread.exceptions.APIError as e:
            raise _translate_api_error(e)
        except (requests.exceptions.RequestException, TransportError) as e:
            raise RemoteConnectionError(f"Google Sheets unreachable: {e}")

    # ------------------------------------------------------------------
    # RemoteDocumentStore
    # ------------------------------------------------------------------

    async def get_document(self, user_id: str) -> Optional[RemoteDocument]:
        return await asyncio.to_thread(self._read_document_sync, user_id)

    async def set_document(
        self,
        user_id: str,
        document: RemoteDocument,
        merge: bool = True,
    ) -> None:
        await asyncio.to_thread(self._write_document_sync, user_id, document, merge)

    def watch(self, user_id: str, callback: ChangeCallback) -> Subscription:
        task = asyncio.get_running_loop().create_task(self._poll(user_id, callback))
        return Subscription(task.cancel)

    async def _poll(self, user_id: str, callback: ChangeCallback) -> None:
        first = True
        last_marker: Optional[str] = None
        while True:
            try:
                document = await self.get_document(user_id)
            except RemoteStoreError as e:
                logger.warning("remote_poll_failed", user_id=user_id, error=str(e))
            else:
                marker = self._change_marker(document)
                if first or marker != last_marker:
                    first = False
                    last_marker = marker
                    callback(document)
            await asyncio.sleep(self._poll_interval)

    @staticmethod
    def _change_marker(document: Optional[RemoteDocument]) -> Optional[str]:
        if document is None:
            return None
        if document.get("updatedAt"):
            return str(document["updatedAt"])
        return json.dumps(document, sort_keys=True)
