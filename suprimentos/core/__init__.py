from suprimentos.core.event_bus import (
    DomainEvent,
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
    get_event_bus,
    reset_event_bus_for_tests,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "QuotationSent",
    "QuotationResent",
    "QuotationSendRolledBack",
    "EmailDispatchFailed",
    "QuotationDeleted",
    "QuotationsQuoted",
    "QuotationsAutoConfirmed",
    "OrderCreated",
    "OrderApproved",
    "ReceiptConfirmed",
    "OrdersDelivered",
    "RemoteSyncFailed",
    "get_event_bus",
    "reset_event_bus_for_tests",
]
