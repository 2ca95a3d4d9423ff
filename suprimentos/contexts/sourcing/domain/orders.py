from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Sequence, Set, Tuple

from suprimentos.contexts.sourcing.domain.models import Order, Quotation
from suprimentos.contexts.sourcing.domain.status import (
    CONFIRMED,
    DELIVERED,
    INACTIVE_ORDER_STATUSES,
    ORDER_CONFIRMED,
    ORDER_PENDING_CONFIRMATION,
    QUOTED,
    is_pre_quoted,
)


QUOTATION_TABS: Tuple[str, ...] = ("awaiting", "orders", "received", "history")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def deterministic_order_id(quotation: Quotation) -> str:
    return f"order_{quotation.id}"


def order_from_quotation(quotation: Quotation) -> Order:
    status = ORDER_CONFIRMED if quotation.status == CONFIRMED else ORDER_PENDING_CONFIRMATION
    return Order(
        id=quotation.order_id or deterministic_order_id(quotation),
        quotation_id=quotation.id,
        status=status,
        supplier_id=quotation.supplier_id,
        supplier_name=quotation.supplier_name,
        supplier_email=quotation.supplier_email,
        items=quotation.items,
        total_amount=quotation.quoted_total,
        expected_delivery=quotation.expected_delivery,
        created_at=quotation.reference_time,
        confirmed_at=quotation.confirmed_at,
        source="quotation",
    )


def _delivered_identities(quotations: Iterable[Quotation]) -> Set[str]:
    identities: Set[str] = set()
    for quotation in quotations:
        if quotation.status != DELIVERED:
            continue
        identities.update(value for value in (quotation.id, quotation.remote_id, quotation.order_id) if value)
    return identities


def get_active_orders(quotations: Sequence[Quotation], remote_orders: Sequence[Order] = ()) -> List[Order]:
    """Pedidos ativos: cotacoes cotadas/confirmadas + pedidos remotos ainda nao representados.

    Tudo que aponta para uma cotacao entregue sai da lista, venha de onde vier.
    """
    views: List[Order] = []
    represented_ids: Set[str] = set()
    represented_quotations: Set[str] = set()

    for quotation in quotations:
        if quotation.status not in (QUOTED, CONFIRMED):
            continue
        order = order_from_quotation(quotation)
        views.append(order)
        represented_ids.add(order.id)
        represented_quotations.update(value for value in (quotation.id, quotation.remote_id) if value)

    for order in remote_orders:
        if order.status in INACTIVE_ORDER_STATUSES:
            continue
        if order.id in represented_ids or (order.remote_id and order.remote_id in represented_ids):
            continue
        if order.quotation_id and order.quotation_id in represented_quotations:
            continue
        views.append(order)
        represented_ids.add(order.id)

    delivered = _delivered_identities(quotations)
    active = [
        order
        for order in views
        if not ({value for value in (order.id, order.remote_id, order.quotation_id) if value} & delivered)
    ]
    active.sort(key=lambda order: order.sort_time or _EPOCH, reverse=True)
    return active


def tab_quotations(quotations: Sequence[Quotation], tab: str) -> List[Quotation]:
    """Abas mutuamente exclusivas da tela de cotacoes; ``history`` mostra tudo."""
    if tab == "awaiting":
        return [quotation for quotation in quotations if is_pre_quoted(quotation.status)]
    if tab == "orders":
        return [quotation for quotation in quotations if quotation.status in (QUOTED, CONFIRMED)]
    if tab == "received":
        return [quotation for quotation in quotations if quotation.status == DELIVERED]
    if tab == "history":
        return list(quotations)
    raise ValueError(f"aba desconhecida: {tab}")


def tab_counts(quotations: Sequence[Quotation]) -> Dict[str, int]:
    return {tab: len(tab_quotations(quotations, tab)) for tab in QUOTATION_TABS}
