"""
Application Wiring

Builds the session and its collaborators from settings. Callers (UI,
scripts, tests) get everything through AppComponents; nothing here is a
module-level singleton.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from expense_recorder.audit import AuditLogger, configure_logging
from expense_recorder.config import get_settings, load_google_sheets_settings
from expense_recorder.persistence.backup import BackupManager
from expense_recorder.persistence.interface import JsonFileKeyValueStore, KeyValueStore
from expense_recorder.persistence.local import PersistenceAdapter
from expense_recorder.queries import SpendingQueryExecutor
from expense_recorder.services.remote import (
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    RemoteDocumentStore,
)
from expense_recorder.session import ExpenseSession
from expense_recorder.sync import RemoteSyncEngine


logger = structlog.get_logger(__name__)


@dataclass
class AppComponents:
    session: ExpenseSession
    backup: BackupManager
    queries: SpendingQueryExecutor
    sync_engine: Optional[RemoteSyncEngine] = None

    @property
    def sync_status(self):
        return self.sync_engine.status if self.sync_engine else None


def create_session(
    store: Optional[KeyValueStore] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> ExpenseSession:
    """
    Boot a session from local storage.

    Args:
        store: Key-value backend. Defaults to JSON files in the configured
            data directory.
        audit_logger: Shared audit logger. A new one is created if omitted.
    """
    settings = get_settings()
    storage = settings.storage
    if store is None:
        store = JsonFileKeyValueStore(storage.data_path)
    if audit_logger is None:
        audit_logger = AuditLogger(history_size=settings.app.audit_history_size)

    persistence = PersistenceAdapter(store, auto_backup_default=storage.auto_backup_default)
    return ExpenseSession(persistence, audit_logger=audit_logger)


def _default_remote() -> Optional[RemoteDocumentStore]:
    sheets_settings = load_google_sheets_settings()
    if sheets_settings is None:
        logger.warning("remote_not_configured", detail="running local-only")
        return None
    sync_settings = get_settings().sync
    client = GoogleSheetsClient(
        sheets_settings,
        timeout_seconds=sync_settings.remote_timeout_seconds,
    )
    return GoogleSheetsDocumentStore(client, sync_settings)


def create_app_components(
    use_remote: bool = True,
    store: Optional[KeyValueStore] = None,
    remote: Optional[RemoteDocumentStore] = None,
    setup_logging: bool = True,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_remote: Whether to build a sync engine. Set to False for a
            local-only session.
        store: Local key-value backend override.
        remote: Remote document store override. Defaults to Google Sheets
            when it is configured.
        setup_logging: Configure structlog from AppSettings.

    The sync engine is created but not started; call
    `await components.sync_engine.start(user_id)` once a user signs in.
    """
    settings = get_settings()
    app_settings = settings.app
    if setup_logging:
        configure_logging(app_settings.log_level, json_logs=app_settings.log_json)

    audit_logger = AuditLogger(history_size=app_settings.audit_history_size)
    session = create_session(store, audit_logger=audit_logger)

    sync_engine = None
    sync_settings = settings.sync
    if use_remote and sync_settings.enabled:
        remote = remote or _default_remote()
        if remote is not None:
            sync_engine = RemoteSyncEngine(
                session, remote, settings=sync_settings, audit_logger=audit_logger,
            )

    return AppComponents(
        session=session,
        backup=BackupManager(session),
        queries=SpendingQueryExecutor(session),
        sync_engine=sync_engine,
    )
