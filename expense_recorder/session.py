"""
Expense Session

The session owns the ledger and taxonomy stores for the lifetime of the
application and is handed to every consumer (sync engine, backup manager,
queries, UI). There is no module-level state.

Every intent runs the same path:

    store mutation -> write-through to local storage -> audit -> change listeners

Listeners are notified once per committed mutation, after both stores
have the final state, so a cascade (e.g. category rename) is observed as
one change.
"""

from collections.abc import Callable
from typing import Any, Optional

import structlog

from expense_recorder.audit import AuditLogger
from expense_recorder.models.audit import AuditEventBuilder, AuditEventType
from expense_recorder.models.receipt import (
    CategoryData,
    MutationResult,
    Receipt,
    default_category_data,
)
from expense_recorder.models.snapshot import SyncSnapshot, utc_now_iso
from expense_recorder.persistence.interface import PersistenceError
from expense_recorder.persistence.local import PersistenceAdapter
from expense_recorder.stores.ledger import LedgerStore
from expense_recorder.stores.taxonomy import TaxonomyStore


ChangeListener = Callable[[], None]

logger = structlog.get_logger(__name__)


class ExpenseSession:
    """
    Process-wide application state, passed explicitly to its consumers.

    Built from the last local snapshot; on a fresh install that is an empty
    ledger and the built-in taxonomy.
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._persistence = persistence
        self._audit_logger = audit_logger or AuditLogger()
        self._listeners: list[ChangeListener] = []
        self._sync_status_provider: Optional[Callable[[], Any]] = None

        state = persistence.load()
        self.ledger = LedgerStore(state.receipts)
        self.taxonomy = TaxonomyStore(self.ledger, state.category_data)
        self._loaded_with_data = state.had_local_data

        for blob, reason in state.recovered.items():
            self._audit_logger.log(AuditEventBuilder.local_state_recovered(blob, reason))

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def persistence(self) -> PersistenceAdapter:
        return self._persistence

    @property
    def audit_logger(self) -> AuditLogger:
        return self._audit_logger

    @property
    def receipts(self) -> list[Receipt]:
        return self.ledger.receipts

    @property
    def category_data(self) -> CategoryData:
        return self.taxonomy.data

    @property
    def loaded_with_data(self) -> bool:
        """Whether local durable state held receipts when the session booted."""
        return self._loaded_with_data

    @property
    def sync_status(self) -> Optional[Any]:
        """SyncStatus of the attached sync engine, None when running local-only."""
        if self._sync_status_provider is None:
            return None
        return self._sync_status_provider()

    def set_sync_status_provider(self, provider: Callable[[], Any]) -> None:
        self._sync_status_provider = provider

    def snapshot(self) -> SyncSnapshot:
        return SyncSnapshot(
            receipts=self.ledger.receipts,
            category_data=self.taxonomy.data,
            updated_at=utc_now_iso(),
        )

    # ------------------------------------------------------------------
    # Change feed
    # ------------------------------------------------------------------

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener. Returns the unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _commit(self) -> None:
        try:
            self._persistence.save(self.ledger.receipts, self.taxonomy.data)
        except PersistenceError as e:
            # Memory stays authoritative; the next commit retries the write.
            logger.error("write_through_failed", error=str(e))
            self._audit_logger.log(AuditEventBuilder.local_write_failed(str(e)))

        for listener in list(self._listeners):
            listener()

    def _finish(self, operation: str, target: str, result: MutationResult) -> MutationResult:
        if result.changed:
            self._commit()
            self._audit_logger.log(AuditEventBuilder.taxonomy_changed(
                operation, target, result.affected_items, result.message,
            ))
        elif not result.ok:
            self._audit_logger.log(AuditEventBuilder.mutation_rejected(
                operation, target, result.message or result.status.value,
            ))
        return result

    def _finish_receipt(
        self,
        event_type: AuditEventType,
        result: MutationResult,
        shop: Optional[str] = None,
    ) -> MutationResult:
        if result.changed:
            self._commit()
            self._audit_logger.log(AuditEventBuilder.receipt_changed(
                event_type, result.receipt_id or "", shop,
            ))
        else:
            self._audit_logger.log(AuditEventBuilder.mutation_rejected(
                event_type.value, result.receipt_id or "", result.message or result.status.value,
            ))
        return result

    # ------------------------------------------------------------------
    # Ledger intents
    # ------------------------------------------------------------------

    def add_receipt(self, receipt: Receipt) -> MutationResult:
        result = self.ledger.add_receipt(receipt, known_categories=self.taxonomy.categories)
        return self._finish_receipt(AuditEventType.RECEIPT_ADDED, result, receipt.shop)

    def update_receipt(self, receipt: Receipt) -> MutationResult:
        result = self.ledger.update_receipt(receipt)
        return self._finish_receipt(AuditEventType.RECEIPT_UPDATED, result, receipt.shop)

    def delete_receipt(self, receipt_id: str) -> MutationResult:
        result = self.ledger.delete_receipt(receipt_id)
        return self._finish_receipt(AuditEventType.RECEIPT_DELETED, result)

    # ------------------------------------------------------------------
    # Taxonomy intents
    # ------------------------------------------------------------------

    def add_category(self, name: str) -> MutationResult:
        return self._finish("add_category", name, self.taxonomy.add_category(name))

    def add_sub_category(self, category: str, sub: str) -> MutationResult:
        return self._finish(
            "add_sub_category", f"{category}/{sub}",
            self.taxonomy.add_sub_category(category, sub),
        )

    def add_label(self, label: str) -> MutationResult:
        return self._finish("add_label", label, self.taxonomy.add_label(label))

    def add_payment_mode(self, mode: str) -> MutationResult:
        return self._finish("add_payment_mode", mode, self.taxonomy.add_payment_mode(mode))

    def rename_category(self, old: str, new: str) -> MutationResult:
        return self._finish("rename_category", old, self.taxonomy.rename_category(old, new))

    def rename_sub_category(self, category: str, old: str, new: str) -> MutationResult:
        return self._finish(
            "rename_sub_category", f"{category}/{old}",
            self.taxonomy.rename_sub_category(category, old, new),
        )

    def rename_label(self, old: str, new: str) -> MutationResult:
        return self._finish("rename_label", old, self.taxonomy.rename_label(old, new))

    def rename_payment_mode(self, old: str, new: str) -> MutationResult:
        return self._finish(
            "rename_payment_mode", old, self.taxonomy.rename_payment_mode(old, new),
        )

    def delete_category(self, name: str, reassign_to: Optional[str] = None) -> MutationResult:
        return self._finish(
            "delete_category", name, self.taxonomy.delete_category(name, reassign_to),
        )

    def delete_sub_category(
        self,
        category: str,
        sub: str,
        reassign_to: Optional[str] = None,
    ) -> MutationResult:
        return self._finish(
            "delete_sub_category", f"{category}/{sub}",
            self.taxonomy.delete_sub_category(category, sub, reassign_to),
        )

    def delete_label(self, label: str) -> MutationResult:
        return self._finish("delete_label", label, self.taxonomy.delete_label(label))

    def delete_payment_mode(self, mode: str) -> MutationResult:
        return self._finish("delete_payment_mode", mode, self.taxonomy.delete_payment_mode(mode))

    # ------------------------------------------------------------------
    # Wholesale replacement (sync, import, reset)
    # ------------------------------------------------------------------

    def apply_snapshot(self, snapshot: SyncSnapshot) -> list[str]:
        """
        Overwrite local state with already-validated data, skipping intent
        validation. Fields absent from the snapshot are left untouched.

        Returns:
            Names of the fields applied (empty when nothing was applied).
        """
        applied = []
        if snapshot.receipts is not None:
            self.ledger.replace(snapshot.receipts)
            applied.append("receipts")
        if snapshot.category_data is not None:
            self.taxonomy.replace(snapshot.category_data)
            applied.append("categoryData")
        if applied:
            self._commit()
        return applied

    def import_state(
        self,
        receipts: list[Receipt],
        category_data: CategoryData,
        source: str = "import",
    ) -> None:
        self.ledger.replace(receipts)
        self.taxonomy.replace(category_data)
        self._commit()
        self._audit_logger.log(AuditEventBuilder.data_imported(source, len(self.ledger)))

    def reset(self) -> None:
        """Forget local data and go back to the built-in taxonomy."""
        try:
            self._persistence.clear()
        except PersistenceError as e:
            logger.error("local_clear_failed", error=str(e))
        self.ledger.replace([])
        self.taxonomy.replace(default_category_data())
        self._commit()
        self._audit_logger.log(AuditEventBuilder.data_reset())
