from __future__ import annotations

import logging
from dataclasses import replace
from threading import Lock
from typing import Any, Callable, Dict, Iterable, List, Sequence

from suprimentos.contexts.sourcing.application.listener import SOURCE_PUSH, ReconciliationListener
from suprimentos.contexts.sourcing.application.notifications import NotificationCenter
from suprimentos.contexts.sourcing.application.replenishment import StockReplenishmentWatcher
from suprimentos.contexts.sourcing.application.send_service import QuotationSendService
from suprimentos.contexts.sourcing.application.store import QuotationStore
from suprimentos.contexts.sourcing.domain.mapping import inventory_item_from_record, supplier_from_record
from suprimentos.contexts.sourcing.domain.models import InventoryItem, Quotation, Supplier, to_iso, utc_now
from suprimentos.contexts.sourcing.domain.orders import (
    QUOTATION_TABS,
    deterministic_order_id,
    get_active_orders,
    order_from_quotation,
    tab_counts,
    tab_quotations,
)
from suprimentos.contexts.sourcing.domain.status import (
    AWAITING,
    CONFIRMED,
    DELIVERED,
    ORDER_CONFIRMED,
    ORDER_DELIVERED,
    ORDER_PENDING_CONFIRMATION,
    QUOTED,
)
from suprimentos.contexts.sourcing.domain.stock import alerts_by_supplier, dashboard_stats
from suprimentos.contexts.sourcing.infrastructure.document_store import DocumentStore, DocumentStoreError
from suprimentos.contexts.sourcing.infrastructure.email_transport import EmailTransport, EmailTransportError
from suprimentos.contexts.sourcing.infrastructure.local_cache import JsonListCache
from suprimentos.core import (
    EventBus,
    OrderApproved,
    OrderCreated,
    QuotationDeleted,
    QuotationResent,
    ReceiptConfirmed,
    RemoteSyncFailed,
    get_event_bus,
)
from suprimentos.domain.contracts import ReplyInput, SendQuotationInput, ServiceOutput
from suprimentos.errors import IntegrationError, NotFoundError, PersistenceError, ValidationError
from suprimentos.ui_strings import TAB_LABELS, success_message, warning_message


logger = logging.getLogger("suprimentos.sourcing.service")


class SourcingService:
    """Fachada da aplicacao: consultas, acoes do usuario e entrada de dados remotos."""

    def __init__(
        self,
        store: QuotationStore,
        document_store: DocumentStore,
        email_transport: EmailTransport,
        send_service: QuotationSendService,
        listener: ReconciliationListener,
        watcher: StockReplenishmentWatcher,
        notifications: NotificationCenter,
        inventory_cache: JsonListCache,
        supplier_cache: JsonListCache,
        event_bus: EventBus | None = None,
        clock: Callable | None = None,
    ) -> None:
        self.store = store
        self.document_store = document_store
        self.email_transport = email_transport
        self.send_service = send_service
        self.listener = listener
        self.watcher = watcher
        self.notifications = notifications
        self.inventory_cache = inventory_cache
        self.supplier_cache = supplier_cache
        self.event_bus = event_bus or get_event_bus()
        self.clock = clock or utc_now
        self._order_lock = Lock()

    def _require(self, quotation_id: str) -> Quotation:
        quotation = self.store.get(str(quotation_id or "").strip())
        if quotation is None:
            raise NotFoundError("quotation_not_found")
        return quotation

    def _update(self, quotation_id: str, **changes: Any) -> Quotation:
        self.store.apply(
            lambda current: tuple(replace(entry, **changes) if entry.id == quotation_id else entry for entry in current)
        )
        return self._require(quotation_id)

    def _sync_best_effort(self, quotation: Quotation, operation: str, fields: Dict[str, Any] | None = None) -> bool:
        try:
            self.document_store.sync_quotation(quotation.remote_id or quotation.id, fields or quotation.to_document())
        except DocumentStoreError as exc:
            logger.warning(
                "quotation_remote_sync_failed",
                extra={"quotation_id": quotation.id, "operation": operation, "details": str(exc)},
            )
            self.event_bus.publish(RemoteSyncFailed(quotation_id=quotation.id, operation=operation, reason=str(exc)))
            return False
        return True

    # consultas

    def list_quotations(self, tab: str | None = None) -> ServiceOutput:
        quotations = self.store.list()
        selected = (tab or "history").strip().lower()
        if selected not in QUOTATION_TABS:
            raise ValidationError("tab_invalid")
        return ServiceOutput(
            {
                "tab": selected,
                "tab_label": TAB_LABELS.get(selected, selected),
                "counts": tab_counts(quotations),
                "quotations": [quotation.to_document() for quotation in tab_quotations(quotations, selected)],
                "send_status": self.store.send_status,
            }
        )

    def get_quotation(self, quotation_id: str) -> ServiceOutput:
        return ServiceOutput({"quotation": self._require(quotation_id).to_document()})

    def active_orders(self) -> ServiceOutput:
        orders = get_active_orders(self.store.list(), self.listener.remote_orders)
        return ServiceOutput({"orders": [order.to_document() for order in orders], "count": len(orders)})

    def inventory(self) -> List[InventoryItem]:
        items = (inventory_item_from_record(record) for record in self.inventory_cache.load())
        return [item for item in items if item is not None]

    def suppliers(self) -> List[Supplier]:
        suppliers = (supplier_from_record(record) for record in self.supplier_cache.load())
        return [supplier for supplier in suppliers if supplier is not None]

    def alerts(self) -> ServiceOutput:
        alerts = alerts_by_supplier(self.inventory(), self.suppliers(), self.store.list())
        return ServiceOutput({"alerts": [alert.to_dict() for alert in alerts]})

    def stats(self) -> ServiceOutput:
        return ServiceOutput(dashboard_stats(self.inventory(), self.suppliers(), self.store.list()))

    # envio e acoes sobre cotacoes

    def send_quotation(self, data: SendQuotationInput) -> ServiceOutput:
        return self.send_service.send_quotation(data)

    def resend_quotation(self, quotation_id: str) -> ServiceOutput:
        quotation = self._require(quotation_id)
        if not quotation.is_pre_quoted:
            raise ValidationError("quotation_not_resendable", http_status=409)
        try:
            self.email_transport.send_email(quotation.supplier_email, quotation.subject, quotation.body)
        except EmailTransportError as exc:
            logger.warning("quotation_resend_failed", extra={"quotation_id": quotation.id, "details": str(exc)})
            code = "email_not_connected" if exc.not_connected else "email_send_failed"
            raise IntegrationError(code, details=str(exc)) from exc

        updated = self._update(
            quotation.id,
            resend_count=quotation.resend_count + 1,
            email_sent_at=self.clock(),
            email_error=None,
        )
        self._sync_best_effort(updated, "resend")
        self.event_bus.publish(QuotationResent(quotation_id=updated.id, supplier_name=updated.supplier_name))
        return ServiceOutput(
            {
                "quotation": updated.to_document(),
                "message": success_message("quotation_resent", supplier_name=updated.supplier_name),
            }
        )

    def delete_quotation(self, quotation_id: str) -> ServiceOutput:
        quotation = self._require(quotation_id)
        if not quotation.is_pre_quoted:
            raise ValidationError("quotation_not_deletable", http_status=409)
        self.store.apply(lambda current: tuple(entry for entry in current if entry.id != quotation.id))

        warning = None
        try:
            self.document_store.delete_quotation(quotation.remote_id or quotation.id)
        except DocumentStoreError as exc:
            warning = warning_message("remote_delete_failed")
            logger.warning("quotation_remote_delete_failed", extra={"quotation_id": quotation.id, "details": str(exc)})
        self.event_bus.publish(QuotationDeleted(quotation_id=quotation.id, remote_deleted=warning is None))
        return ServiceOutput({"deleted": quotation.id, "warning": warning, "message": success_message("quotation_deleted")})

    # pedidos

    def confirm_quotation(self, quotation_id: str, manual: bool = True) -> ServiceOutput:
        with self._order_lock:
            quotation = self._require(quotation_id)
            if quotation.has_order:
                return ServiceOutput({"quotation": quotation.to_document(), "order_id": quotation.order_id, "created": False})
            if not (quotation.status == QUOTED or (quotation.status == AWAITING and quotation.has_quote_data)):
                raise ValidationError("quotation_not_confirmable", http_status=409)

            now = self.clock()
            existing = next(
                (
                    order
                    for order in self.listener.remote_orders
                    if order.quotation_id and order.quotation_id in {quotation.id, quotation.remote_id}
                ),
                None,
            )
            created = existing is None
            if existing is not None:
                order_id = existing.id
            else:
                order = replace(
                    order_from_quotation(quotation),
                    id=deterministic_order_id(quotation),
                    status=ORDER_CONFIRMED,
                    confirmed_at=now,
                )
                order_id = order.id
                try:
                    self.document_store.upsert_order(order_id, order.to_document())
                except DocumentStoreError as exc:
                    logger.error("order_create_failed", extra={"quotation_id": quotation.id, "details": str(exc)})
                    raise PersistenceError(details=str(exc)) from exc

            updated = self._update(
                quotation.id,
                status=CONFIRMED,
                order_id=order_id,
                confirmed_at=now,
                confirmed_manually=bool(manual),
            )

        self._sync_best_effort(updated, "confirm")
        logger.info("quotation_confirmed", extra={"quotation_id": updated.id, "order_id": order_id, "created": created})
        if created:
            self.event_bus.publish(
                OrderCreated(
                    order_id=order_id,
                    quotation_id=updated.id,
                    supplier_name=updated.supplier_name,
                    manual=bool(manual),
                )
            )
        return ServiceOutput(
            {
                "quotation": updated.to_document(),
                "order_id": order_id,
                "created": created,
                "message": success_message("order_created", order_id=order_id, supplier_name=updated.supplier_name),
            },
            201 if created else 200,
        )

    def approve_order(self, order_id: str) -> ServiceOutput:
        orders = get_active_orders(self.store.list(), self.listener.remote_orders)
        order = next((entry for entry in orders if order_id in {entry.id, entry.remote_id}), None)
        if order is None:
            raise NotFoundError("order_not_found")
        if order.status != ORDER_PENDING_CONFIRMATION:
            raise ValidationError("order_not_approvable", http_status=409)

        if order.source == "quotation" and order.quotation_id:
            result = self.confirm_quotation(order.quotation_id, manual=True)
            self.event_bus.publish(OrderApproved(order_id=result.payload["order_id"], quotation_id=order.quotation_id))
            return ServiceOutput({**result.payload, "message": success_message("order_approved", order_id=result.payload["order_id"])})

        try:
            self.document_store.update_order_status(order.id, ORDER_CONFIRMED, {"confirmedAt": to_iso(self.clock())})
        except DocumentStoreError as exc:
            logger.error("order_approve_failed", extra={"order_id": order.id, "details": str(exc)})
            raise PersistenceError(details=str(exc)) from exc

        linked = self.store.get(order.quotation_id) if order.quotation_id else None
        if linked is not None and linked.status not in (CONFIRMED, DELIVERED):
            linked = self._update(linked.id, status=CONFIRMED, order_id=order.id, confirmed_at=self.clock())
            self._sync_best_effort(linked, "approve")
        self.event_bus.publish(OrderApproved(order_id=order.id, quotation_id=order.quotation_id))
        return ServiceOutput(
            {
                "order_id": order.id,
                "quotation": linked.to_document() if linked is not None else None,
                "message": success_message("order_approved", order_id=order.id),
            }
        )

    def confirm_receipt(self, quotation_id: str) -> ServiceOutput:
        quotation = self._require(quotation_id)
        if quotation.status != CONFIRMED:
            raise ValidationError("receipt_not_allowed", http_status=409)
        updated = self._update(quotation.id, status=DELIVERED, delivered_at=self.clock())
        self._sync_best_effort(
            updated,
            "receipt",
            {"status": updated.status, "deliveredAt": to_iso(updated.delivered_at)},
        )
        if updated.order_id:
            try:
                self.document_store.update_order_status(
                    updated.order_id, ORDER_DELIVERED, {"deliveredAt": to_iso(updated.delivered_at)}
                )
            except DocumentStoreError as exc:
                logger.warning("order_receipt_sync_failed", extra={"order_id": updated.order_id, "details": str(exc)})
                self.event_bus.publish(RemoteSyncFailed(quotation_id=updated.id, operation="receipt", reason=str(exc)))
        self.event_bus.publish(ReceiptConfirmed(quotation_id=updated.id, supplier_name=updated.supplier_name))
        return ServiceOutput(
            {
                "quotation": updated.to_document(),
                "message": success_message("receipt_confirmed", supplier_name=updated.supplier_name),
            }
        )

    # estoque e fornecedores

    def update_inventory(self, records: Iterable[Dict[str, Any]]) -> ServiceOutput:
        valid = [record for record in records if isinstance(record, dict) and inventory_item_from_record(record)]
        self.inventory_cache.save(valid)
        delivered = self.watcher.on_inventory_changed(self.inventory())
        return ServiceOutput({"items": len(valid), "delivered": list(delivered)})

    def update_suppliers(self, records: Iterable[Dict[str, Any]]) -> ServiceOutput:
        valid = [record for record in records if isinstance(record, dict) and supplier_from_record(record)]
        self.supplier_cache.save(valid)
        return ServiceOutput({"suppliers": len(valid)})

    # entrada remota

    def handle_remote_snapshot(self, documents: Sequence[Dict[str, Any]]) -> ServiceOutput:
        result = self.listener.handle_snapshot(documents, SOURCE_PUSH)
        return ServiceOutput(
            {
                "bootstrapped": result.bootstrapped,
                "updated": list(result.updated_ids),
                "newly_quoted": list(result.newly_quoted),
                "newly_auto_confirmed": list(result.newly_auto_confirmed),
                "count": len(result.quotations),
            }
        )

    def poll(self) -> ServiceOutput:
        try:
            result = self.listener.poll_once()
        except DocumentStoreError as exc:
            raise IntegrationError(details=str(exc)) from exc
        return ServiceOutput({"updated": list(result.updated_ids), "bootstrapped": result.bootstrapped})

    def ingest_reply(self, data: ReplyInput) -> ServiceOutput:
        quotation = self._require(data.quotation_id)
        if not str(data.reply_body or "").strip():
            raise ValidationError("payload_invalid")
        fields = {
            "replyFrom": data.reply_from or quotation.supplier_email,
            "replyBody": data.reply_body,
            "replyReceivedAt": data.received_at or to_iso(self.clock()),
            "status": "reply_received",
        }
        try:
            self.document_store.sync_quotation(quotation.remote_id or quotation.id, fields)
        except DocumentStoreError as exc:
            raise PersistenceError(details=str(exc)) from exc
        if not self.listener.is_active:
            self.listener.poll_once()
        return ServiceOutput({"quotation": self._require(quotation.id).to_document()}, 202)

    # conta de email

    def email_status(self) -> ServiceOutput:
        return ServiceOutput({"connected": self.email_transport.is_connected()})

    def connect_email(self, token: str | None) -> ServiceOutput:
        token = str(token or "").strip()
        if not token:
            raise ValidationError("token_required")
        self.email_transport.connect(token)
        if not self.email_transport.validate_token():
            self.email_transport.disconnect()
            raise IntegrationError("email_not_authorized")
        return ServiceOutput({"connected": True, "message": success_message("email_connected")})

    def disconnect_email(self) -> ServiceOutput:
        self.email_transport.disconnect()
        return ServiceOutput({"connected": False, "message": success_message("email_disconnected")})

    def list_notifications(self, limit: int | None = None) -> ServiceOutput:
        return ServiceOutput({"notifications": [item.to_dict() for item in self.notifications.list(limit)]})
