from __future__ import annotations

from typing import Dict, Tuple


PENDING = "pending"
AWAITING = "awaiting"
QUOTED = "quoted"
CONFIRMED = "confirmed"
DELIVERED = "delivered"
CANCELLED = "cancelled"

# Ordem do ciclo de vida; cancelled fica fora da sequencia e e terminal.
STATUS_SEQUENCE: Tuple[str, ...] = (PENDING, AWAITING, QUOTED, CONFIRMED, DELIVERED)
CANONICAL_STATUSES: Tuple[str, ...] = STATUS_SEQUENCE + (CANCELLED,)
PRE_QUOTED_STATUSES = frozenset({PENDING, AWAITING})
TERMINAL_STATUSES = frozenset({DELIVERED, CANCELLED})

_STATUS_ALIASES: Dict[str, str] = {
    "draft": PENDING,
    "created": PENDING,
    "new": PENDING,
    "sent": PENDING,
    "email_sent": PENDING,
    "emailsent": PENDING,
    "awaiting_response": AWAITING,
    "awaitingresponse": AWAITING,
    "waiting": AWAITING,
    "waiting_response": AWAITING,
    "reply_received": AWAITING,
    "replied_pending": AWAITING,
    "quote_received": QUOTED,
    "quotereceived": QUOTED,
    "replied": QUOTED,
    "response_received": QUOTED,
    "pending_confirmation": QUOTED,
    "order_placed": CONFIRMED,
    "orderplaced": CONFIRMED,
    "accepted": CONFIRMED,
    "ordered": CONFIRMED,
    "approved": CONFIRMED,
    "completed": DELIVERED,
    "received": DELIVERED,
    "closed": DELIVERED,
    "canceled": CANCELLED,
    "rejected": CANCELLED,
    "expired": CANCELLED,
}

ORDER_PENDING_CONFIRMATION = "pending_confirmation"
ORDER_CONFIRMED = "confirmed"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"
ORDER_STATUSES: Tuple[str, ...] = (
    ORDER_PENDING_CONFIRMATION,
    ORDER_CONFIRMED,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
)
INACTIVE_ORDER_STATUSES = frozenset({ORDER_DELIVERED, ORDER_CANCELLED})

_ORDER_STATUS_ALIASES: Dict[str, str] = {
    "pending": ORDER_PENDING_CONFIRMATION,
    "quoted": ORDER_PENDING_CONFIRMATION,
    "awaiting_confirmation": ORDER_PENDING_CONFIRMATION,
    "approved": ORDER_CONFIRMED,
    "ordered": ORDER_CONFIRMED,
    "placed": ORDER_CONFIRMED,
    "shipped": ORDER_CONFIRMED,
    "in_transit": ORDER_CONFIRMED,
    "received": ORDER_DELIVERED,
    "completed": ORDER_DELIVERED,
    "canceled": ORDER_CANCELLED,
    "rejected": ORDER_CANCELLED,
}


def _normalize_key(raw: object) -> str:
    return str(raw or "").strip().lower().replace("-", "_").replace(" ", "_")


def map_status(raw: object) -> str:
    """Converte qualquer vocabulario de status (local, remoto, legado) para o status canonico.

    Total e idempotente: valores desconhecidos ou vazios viram ``pending``.
    """
    key = _normalize_key(raw)
    if key in CANONICAL_STATUSES:
        return key
    return _STATUS_ALIASES.get(key, PENDING)


def map_order_status(raw: object) -> str:
    key = _normalize_key(raw)
    if key in ORDER_STATUSES:
        return key
    return _ORDER_STATUS_ALIASES.get(key, ORDER_PENDING_CONFIRMATION)


def status_rank(status: str) -> int:
    canonical = map_status(status)
    if canonical == CANCELLED:
        return len(STATUS_SEQUENCE)
    return STATUS_SEQUENCE.index(canonical)


def is_pre_quoted(status: str) -> bool:
    return map_status(status) in PRE_QUOTED_STATUSES


def is_terminal(status: str, has_order: bool = False) -> bool:
    canonical = map_status(status)
    if canonical in TERMINAL_STATUSES:
        return True
    return canonical == CONFIRMED and has_order


def is_active_status(status: str, has_order: bool = False) -> bool:
    return not is_terminal(status, has_order=has_order)


def max_status(current: str, candidate: str) -> str:
    """Nunca regride: devolve o status de maior ordem entre os dois."""
    if status_rank(candidate) < status_rank(current):
        return map_status(current)
    return map_status(candidate)
