from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Tuple

from suprimentos.contexts.sourcing.domain.status import ORDER_PENDING_CONFIRMATION, PENDING, is_pre_quoted


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _drop_none(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


@dataclass(frozen=True)
class QuotationItem:
    id: str
    name: str
    unit: str = "un"
    quantity_to_order: float = 0.0
    current_stock: float | None = None
    max_stock: float | None = None
    quoted_unit_price: float | None = None
    available: bool | None = None

    @property
    def identity(self) -> str:
        return str(self.id or "").strip() or self.name.strip().lower()

    def to_document(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "name": self.name,
                "unit": self.unit,
                "quantityToOrder": float(self.quantity_to_order),
                "currentStock": self.current_stock,
                "maxStock": self.max_stock,
                "quotedUnitPrice": self.quoted_unit_price,
                "available": self.available,
            }
        )


@dataclass(frozen=True)
class Quotation:
    id: str
    supplier_name: str = ""
    supplier_email: str = ""
    supplier_id: str | None = None
    remote_id: str | None = None
    items: Tuple[QuotationItem, ...] = ()
    item_names: Tuple[str, ...] = ()
    subject: str = ""
    body: str = ""
    status: str = PENDING
    last_remote_status: str | None = None
    created_at: datetime | None = None
    sent_at: datetime | None = None
    email_sent_at: datetime | None = None
    email_error: str | None = None
    resend_count: int = 0
    reply_from: str | None = None
    reply_body: str | None = None
    reply_received_at: datetime | None = None
    quoted_total: float | None = None
    expected_delivery: str | None = None
    delivery_days: int | None = None
    payment_terms: str | None = None
    has_problems: bool = False
    has_delay: bool = False
    problem_summary: str | None = None
    urgency: str | None = None
    suggested_action: str | None = None
    supplier_notes: str | None = None
    order_id: str | None = None
    confirmed_at: datetime | None = None
    confirmed_manually: bool = False
    delivered_at: datetime | None = None

    @property
    def has_order(self) -> bool:
        return bool(self.order_id)

    @property
    def is_pre_quoted(self) -> bool:
        return is_pre_quoted(self.status)

    @property
    def item_ids(self) -> Tuple[str, ...]:
        return tuple(sorted(item.identity for item in self.items if item.identity))

    @property
    def reference_time(self) -> datetime | None:
        return self.sent_at or self.created_at

    @property
    def has_quote_data(self) -> bool:
        if self.quoted_total is not None:
            return True
        return any(item.quoted_unit_price is not None for item in self.items)

    def to_document(self) -> Dict[str, Any]:
        payload = {
            "id": self.id,
            "remoteId": self.remote_id,
            "supplierId": self.supplier_id,
            "supplierName": self.supplier_name,
            "supplierEmail": self.supplier_email,
            "to": self.supplier_email,
            "items": [item.to_document() for item in self.items],
            "itemNames": list(self.item_names) or [item.name for item in self.items],
            "subject": self.subject,
            "body": self.body,
            "status": self.status,
            "lastRemoteStatus": self.last_remote_status,
            "createdAt": to_iso(self.created_at),
            "sentAt": to_iso(self.sent_at),
            "emailSentAt": to_iso(self.email_sent_at),
            "emailError": self.email_error,
            "resendCount": int(self.resend_count),
            "replyFrom": self.reply_from,
            "replyBody": self.reply_body,
            "replyReceivedAt": to_iso(self.reply_received_at),
            "quotedTotal": self.quoted_total,
            "deliveryDate": self.expected_delivery,
            "deliveryDays": self.delivery_days,
            "paymentTerms": self.payment_terms,
            "hasProblems": bool(self.has_problems),
            "hasDelay": bool(self.has_delay),
            "problemSummary": self.problem_summary,
            "urgency": self.urgency,
            "suggestedAction": self.suggested_action,
            "supplierNotes": self.supplier_notes,
            "orderId": self.order_id,
            "confirmedAt": to_iso(self.confirmed_at),
            "confirmedManually": bool(self.confirmed_manually) if self.confirmed_at else None,
            "deliveredAt": to_iso(self.delivered_at),
        }
        return _drop_none(payload)


@dataclass(frozen=True)
class Order:
    id: str
    quotation_id: str | None = None
    status: str = ORDER_PENDING_CONFIRMATION
    supplier_id: str | None = None
    supplier_name: str = ""
    supplier_email: str = ""
    items: Tuple[QuotationItem, ...] = ()
    total_amount: float | None = None
    expected_delivery: str | None = None
    created_at: datetime | None = None
    confirmed_at: datetime | None = None
    remote_id: str | None = None
    source: str = "quotation"

    @property
    def sort_time(self) -> datetime | None:
        return self.confirmed_at or self.created_at

    def to_document(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "quotationId": self.quotation_id,
                "status": self.status,
                "supplierId": self.supplier_id,
                "supplierName": self.supplier_name,
                "supplierEmail": self.supplier_email,
                "items": [item.to_document() for item in self.items],
                "totalAmount": self.total_amount,
                "deliveryDate": self.expected_delivery,
                "createdAt": to_iso(self.created_at),
                "confirmedAt": to_iso(self.confirmed_at),
                "remoteId": self.remote_id,
                "source": self.source,
            }
        )


@dataclass(frozen=True)
class InventoryItem:
    id: str
    name: str
    unit: str = "un"
    package_quantity: float = 0.0
    package_count: float = 1.0
    min_stock: float = 0.0
    max_stock: float = 0.0
    supplier_id: str | None = None

    @property
    def current_stock(self) -> float:
        return float(self.package_quantity) * float(self.package_count)

    def to_document(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "name": self.name,
                "unit": self.unit,
                "packageQuantity": float(self.package_quantity),
                "packageCount": float(self.package_count),
                "minStock": float(self.min_stock),
                "maxStock": float(self.max_stock),
                "supplierId": self.supplier_id,
            }
        )


@dataclass(frozen=True)
class Supplier:
    id: str
    name: str
    email: str = ""
    linked_item_ids: Tuple[str, ...] = field(default_factory=tuple)

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "linkedItems": list(self.linked_item_ids),
        }
