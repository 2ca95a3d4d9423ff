from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Callable, Dict, List, Tuple, Type

from suprimentos.observability import observe_domain_event_emitted


EventHandler = Callable[["DomainEvent"], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        normalized_event_id = str(self.event_id or "").strip() or uuid.uuid4().hex
        normalized_occurred_at = self.occurred_at if isinstance(self.occurred_at, datetime) else _utc_now()
        if normalized_occurred_at.tzinfo is None:
            normalized_occurred_at = normalized_occurred_at.replace(tzinfo=timezone.utc)
        normalized_occurred_at = normalized_occurred_at.astimezone(timezone.utc)

        object.__setattr__(self, "event_id", normalized_event_id)
        object.__setattr__(self, "occurred_at", normalized_occurred_at)


@dataclass(frozen=True, kw_only=True)
class QuotationSent(DomainEvent):
    quotation_id: str
    supplier_name: str = ""
    supplier_email: str = ""
    email_delivered: bool = True


@dataclass(frozen=True, kw_only=True)
class QuotationResent(DomainEvent):
    quotation_id: str
    supplier_name: str = ""


@dataclass(frozen=True, kw_only=True)
class QuotationSendRolledBack(DomainEvent):
    quotation_id: str
    reason: str = ""


@dataclass(frozen=True, kw_only=True)
class EmailDispatchFailed(DomainEvent):
    quotation_id: str
    supplier_email: str = ""
    reason: str = ""


@dataclass(frozen=True, kw_only=True)
class QuotationDeleted(DomainEvent):
    quotation_id: str
    remote_deleted: bool = True


@dataclass(frozen=True, kw_only=True)
class QuotationsQuoted(DomainEvent):
    quotation_ids: Tuple[str, ...] = ()

    @property
    def count(self) -> int:
        return len(self.quotation_ids)


@dataclass(frozen=True, kw_only=True)
class QuotationsAutoConfirmed(DomainEvent):
    quotation_ids: Tuple[str, ...] = ()

    @property
    def count(self) -> int:
        return len(self.quotation_ids)


@dataclass(frozen=True, kw_only=True)
class OrderCreated(DomainEvent):
    order_id: str
    quotation_id: str
    supplier_name: str = ""
    manual: bool = True


@dataclass(frozen=True, kw_only=True)
class OrderApproved(DomainEvent):
    order_id: str
    quotation_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class ReceiptConfirmed(DomainEvent):
    quotation_id: str
    supplier_name: str = ""


@dataclass(frozen=True, kw_only=True)
class OrdersDelivered(DomainEvent):
    quotation_ids: Tuple[str, ...] = ()

    @property
    def count(self) -> int:
        return len(self.quotation_ids)


@dataclass(frozen=True, kw_only=True)
class RemoteSyncFailed(DomainEvent):
    quotation_id: str
    operation: str = ""
    reason: str = ""


class EventBus:
    def __init__(self) -> None:
        self._lock = RLock()
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = {}
        self._logger = logging.getLogger("suprimentos.events")

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(event_type, [])
            handlers.append(handler)

    def publish(self, event: DomainEvent) -> None:
        observe_domain_event_emitted(type(event).__name__)
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                self._logger.exception("event_handler_failed", extra={"event_type": type(event).__name__})

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()


_DEFAULT_EVENT_BUS = EventBus()


def get_event_bus() -> EventBus:
    return _DEFAULT_EVENT_BUS


def reset_event_bus_for_tests() -> None:
    _DEFAULT_EVENT_BUS.clear()
