from __future__ import annotations

import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Any, Deque, Dict, List

from suprimentos.contexts.sourcing.domain.models import to_iso, utc_now
from suprimentos.core import (
    EmailDispatchFailed,
    EventBus,
    OrderApproved,
    OrderCreated,
    OrdersDelivered,
    QuotationDeleted,
    QuotationResent,
    QuotationSendRolledBack,
    QuotationSent,
    QuotationsAutoConfirmed,
    QuotationsQuoted,
    ReceiptConfirmed,
    RemoteSyncFailed,
)
from suprimentos.observability import observe_notification
from suprimentos.ui_strings import error_message, notification_message, success_message, warning_message


LEVEL_SUCCESS = "success"
LEVEL_INFO = "info"
LEVEL_WARNING = "warning"
LEVEL_ERROR = "error"


@dataclass(frozen=True)
class Notification:
    kind: str
    level: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "level": self.level,
            "message": self.message,
            "details": dict(self.details),
            "createdAt": to_iso(self.created_at),
        }


class NotificationCenter:
    """Converte eventos de dominio em mensagens para o usuario (historico limitado)."""

    def __init__(self, limit: int = 100) -> None:
        self._lock = Lock()
        self._items: Deque[Notification] = deque(maxlen=max(1, int(limit)))

    def attach(self, event_bus: EventBus) -> "NotificationCenter":
        event_bus.subscribe(QuotationSent, self._on_sent)
        event_bus.subscribe(QuotationResent, self._on_resent)
        event_bus.subscribe(EmailDispatchFailed, self._on_email_failed)
        event_bus.subscribe(QuotationSendRolledBack, self._on_rolled_back)
        event_bus.subscribe(QuotationDeleted, self._on_deleted)
        event_bus.subscribe(QuotationsQuoted, self._on_quoted)
        event_bus.subscribe(QuotationsAutoConfirmed, self._on_auto_confirmed)
        event_bus.subscribe(OrderCreated, self._on_order_created)
        event_bus.subscribe(OrderApproved, self._on_order_approved)
        event_bus.subscribe(ReceiptConfirmed, self._on_receipt)
        event_bus.subscribe(OrdersDelivered, self._on_delivered)
        event_bus.subscribe(RemoteSyncFailed, self._on_remote_sync_failed)
        return self

    def push(self, kind: str, level: str, message: str, **details: Any) -> Notification:
        notification = Notification(kind=kind, level=level, message=message, details=details)
        with self._lock:
            self._items.appendleft(notification)
        observe_notification(kind)
        return notification

    def list(self, limit: int | None = None) -> List[Notification]:
        with self._lock:
            items = list(self._items)
        return items[:limit] if limit else items

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def _on_sent(self, event: QuotationSent) -> None:
        if not event.email_delivered:
            return
        self.push(
            "quotation_sent",
            LEVEL_SUCCESS,
            success_message("quotation_sent", supplier_name=event.supplier_name),
            quotation_id=event.quotation_id,
        )

    def _on_resent(self, event: QuotationResent) -> None:
        self.push(
            "quotation_resent",
            LEVEL_SUCCESS,
            success_message("quotation_resent", supplier_name=event.supplier_name),
            quotation_id=event.quotation_id,
        )

    def _on_email_failed(self, event: EmailDispatchFailed) -> None:
        self.push(
            "email_send_failed",
            LEVEL_WARNING,
            warning_message("email_send_failed", supplier_email=event.supplier_email),
            quotation_id=event.quotation_id,
            reason=event.reason,
        )

    def _on_rolled_back(self, event: QuotationSendRolledBack) -> None:
        self.push(
            "persistence_failed",
            LEVEL_ERROR,
            error_message("persistence_failed"),
            quotation_id=event.quotation_id,
            reason=event.reason,
        )

    def _on_deleted(self, event: QuotationDeleted) -> None:
        if event.remote_deleted:
            self.push("quotation_deleted", LEVEL_SUCCESS, success_message("quotation_deleted"), quotation_id=event.quotation_id)
            return
        self.push(
            "remote_delete_failed",
            LEVEL_WARNING,
            warning_message("remote_delete_failed"),
            quotation_id=event.quotation_id,
        )

    def _on_quoted(self, event: QuotationsQuoted) -> None:
        self.push(
            "quotations_quoted",
            LEVEL_INFO,
            notification_message("quotations_quoted", count=event.count),
            quotation_ids=list(event.quotation_ids),
        )

    def _on_auto_confirmed(self, event: QuotationsAutoConfirmed) -> None:
        self.push(
            "quotations_auto_confirmed",
            LEVEL_INFO,
            notification_message("quotations_auto_confirmed", count=event.count),
            quotation_ids=list(event.quotation_ids),
        )

    def _on_order_created(self, event: OrderCreated) -> None:
        self.push(
            "order_created",
            LEVEL_SUCCESS,
            success_message("order_created", order_id=event.order_id, supplier_name=event.supplier_name),
            order_id=event.order_id,
            quotation_id=event.quotation_id,
        )

    def _on_order_approved(self, event: OrderApproved) -> None:
        self.push(
            "order_approved",
            LEVEL_SUCCESS,
            success_message("order_approved", order_id=event.order_id),
            order_id=event.order_id,
        )

    def _on_receipt(self, event: ReceiptConfirmed) -> None:
        self.push(
            "receipt_confirmed",
            LEVEL_SUCCESS,
            success_message("receipt_confirmed", supplier_name=event.supplier_name),
            quotation_id=event.quotation_id,
        )

    def _on_delivered(self, event: OrdersDelivered) -> None:
        self.push(
            "orders_delivered",
            LEVEL_INFO,
            notification_message("orders_delivered", count=event.count),
            quotation_ids=list(event.quotation_ids),
        )

    def _on_remote_sync_failed(self, event: RemoteSyncFailed) -> None:
        self.push(
            "remote_sync_failed",
            LEVEL_WARNING,
            warning_message("remote_sync_failed"),
            quotation_id=event.quotation_id,
            operation=event.operation,
        )
