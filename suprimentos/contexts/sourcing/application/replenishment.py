from __future__ import annotations

import logging
from typing import Callable, List, Sequence, Tuple

from suprimentos.contexts.sourcing.application.store import QuotationStore
from suprimentos.contexts.sourcing.domain.models import InventoryItem, Quotation, to_iso, utc_now
from suprimentos.contexts.sourcing.domain.status import ORDER_DELIVERED
from suprimentos.contexts.sourcing.domain.stock import inventory_fingerprint, promote_replenished
from suprimentos.contexts.sourcing.infrastructure.document_store import DocumentStore, DocumentStoreError
from suprimentos.core import EventBus, OrdersDelivered, RemoteSyncFailed, get_event_bus


logger = logging.getLogger("suprimentos.sourcing.replenishment")


class StockReplenishmentWatcher:
    """Marca como entregues as cotacoes confirmadas cujo estoque voltou ao minimo.

    So reage a mudancas de estoque (comparando a impressao digital do snapshot).
    """

    def __init__(
        self,
        store: QuotationStore,
        document_store: DocumentStore,
        event_bus: EventBus | None = None,
        clock: Callable | None = None,
    ) -> None:
        self.store = store
        self.document_store = document_store
        self.event_bus = event_bus or get_event_bus()
        self.clock = clock or utc_now
        self._fingerprint: str | None = None

    def on_inventory_changed(self, inventory: Sequence[InventoryItem]) -> Tuple[str, ...]:
        if not inventory:
            return ()
        fingerprint = inventory_fingerprint(inventory)
        if fingerprint == self._fingerprint:
            return ()
        self._fingerprint = fingerprint
        return self.run(inventory)

    def run(self, inventory: Sequence[InventoryItem]) -> Tuple[str, ...]:
        if not inventory:
            logger.info("replenishment_skipped_empty_inventory")
            return ()
        now = self.clock()
        promoted: List[Tuple[str, ...]] = []

        def promote(current: Tuple[Quotation, ...]) -> Tuple[Quotation, ...]:
            updated, ids = promote_replenished(current, inventory, now=now)
            promoted.append(ids)
            return updated

        self.store.apply(promote)
        delivered_ids = promoted[-1] if promoted else ()
        if not delivered_ids:
            return ()

        logger.info("quotations_auto_delivered", extra={"quotation_ids": list(delivered_ids)})
        for quotation_id in delivered_ids:
            quotation = self.store.get(quotation_id)
            if quotation is not None:
                self._sync(quotation)
        self.event_bus.publish(OrdersDelivered(quotation_ids=delivered_ids))
        return delivered_ids

    def _sync(self, quotation: Quotation) -> None:
        try:
            self.document_store.sync_quotation(
                quotation.remote_id or quotation.id,
                {"status": quotation.status, "deliveredAt": to_iso(quotation.delivered_at)},
            )
            if quotation.order_id:
                self.document_store.update_order_status(
                    quotation.order_id,
                    ORDER_DELIVERED,
                    {"deliveredAt": to_iso(quotation.delivered_at)},
                )
        except DocumentStoreError as exc:
            logger.warning(
                "replenishment_remote_sync_failed",
                extra={"quotation_id": quotation.id, "details": str(exc)},
            )
            self.event_bus.publish(RemoteSyncFailed(quotation_id=quotation.id, operation="deliver", reason=str(exc)))
