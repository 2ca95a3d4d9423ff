from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Iterable, List, Sequence, Set, Tuple

from suprimentos.contexts.sourcing.domain.models import InventoryItem, Quotation, Supplier
from suprimentos.contexts.sourcing.domain.status import CONFIRMED, DELIVERED, is_active_status


STOCK_OK = "ok"
STOCK_WARNING = "warning"
STOCK_CRITICAL = "critical"

WARNING_MARGIN = 1.2


def stock_status(item: InventoryItem) -> str:
    minimum = float(item.min_stock or 0)
    if minimum <= 0:
        return STOCK_OK
    current = item.current_stock
    if current < minimum:
        return STOCK_CRITICAL
    if current <= minimum * WARNING_MARGIN:
        return STOCK_WARNING
    return STOCK_OK


def is_replenished(item: InventoryItem) -> bool:
    return item.current_stock >= float(item.min_stock or 0)


def suggested_quantity(item: InventoryItem) -> float:
    return max(0.0, float(item.max_stock or 0) - item.current_stock)


@dataclass(frozen=True)
class AlertItem:
    item: InventoryItem
    status: str
    suggested_quantity: float

    def to_dict(self) -> Dict[str, object]:
        payload = self.item.to_document()
        payload.update(
            {
                "currentStock": self.item.current_stock,
                "stockStatus": self.status,
                "suggestedQuantity": self.suggested_quantity,
            }
        )
        return payload


@dataclass(frozen=True)
class SupplierAlert:
    supplier: Supplier
    items: Tuple[AlertItem, ...]

    @property
    def has_critical(self) -> bool:
        return any(entry.status == STOCK_CRITICAL for entry in self.items)

    def to_dict(self) -> Dict[str, object]:
        return {
            "supplier": self.supplier.to_document(),
            "hasCritical": self.has_critical,
            "items": [entry.to_dict() for entry in self.items],
        }


def requested_item_ids(quotations: Iterable[Quotation]) -> Set[str]:
    requested: Set[str] = set()
    for quotation in quotations:
        if is_active_status(quotation.status, has_order=quotation.has_order):
            requested.update(quotation.item_ids)
    return requested


def alerts_by_supplier(
    inventory: Sequence[InventoryItem],
    suppliers: Sequence[Supplier],
    quotations: Sequence[Quotation],
) -> List[SupplierAlert]:
    """Itens criticos/baixos ainda sem cotacao ativa, agrupados pelo fornecedor vinculado."""
    already_requested = requested_item_ids(quotations)
    alerts: List[SupplierAlert] = []
    for supplier in suppliers:
        linked = set(supplier.linked_item_ids)
        entries: List[AlertItem] = []
        for item in inventory:
            if item.id not in linked and item.supplier_id != supplier.id:
                continue
            if item.id in already_requested:
                continue
            status = stock_status(item)
            if status == STOCK_OK:
                continue
            entries.append(AlertItem(item=item, status=status, suggested_quantity=suggested_quantity(item)))
        if entries:
            entries.sort(key=lambda entry: (entry.status != STOCK_CRITICAL, entry.item.name.lower()))
            alerts.append(SupplierAlert(supplier=supplier, items=tuple(entries)))
    alerts.sort(key=lambda alert: (not alert.has_critical, alert.supplier.name.lower()))
    return alerts


def dashboard_stats(
    inventory: Sequence[InventoryItem],
    suppliers: Sequence[Supplier],
    quotations: Sequence[Quotation],
) -> Dict[str, object]:
    statuses = [stock_status(item) for item in inventory]
    critical = statuses.count(STOCK_CRITICAL)
    warning = statuses.count(STOCK_WARNING)
    return {
        "totalItems": len(inventory),
        "critical": critical,
        "warning": warning,
        "ok": statuses.count(STOCK_OK),
        "suppliersWithAlerts": len(alerts_by_supplier(inventory, suppliers, quotations)),
        "healthScore": max(0, round(100 - 20 * critical - 5 * warning)),
    }


def inventory_fingerprint(inventory: Iterable[InventoryItem]) -> str:
    rows = sorted((item.id, item.current_stock, float(item.min_stock or 0)) for item in inventory)
    return hashlib.sha256(json.dumps(rows, separators=(",", ":")).encode("utf-8")).hexdigest()


def promote_replenished(
    quotations: Sequence[Quotation],
    inventory: Sequence[InventoryItem],
    *,
    now: datetime,
) -> Tuple[Tuple[Quotation, ...], Tuple[str, ...]]:
    """Cotacoes confirmadas cujos itens voltaram ao minimo viram entregues.

    Item que nao existe mais no estoque conta como reposto, mas estoque vazio
    (ainda nao carregado ou limpo) nao promove nada.
    """
    if not inventory:
        return tuple(quotations), ()
    by_id = {item.id: item for item in inventory}
    promoted: List[str] = []
    result: List[Quotation] = []
    for quotation in quotations:
        if quotation.status != CONFIRMED or not quotation.items:
            result.append(quotation)
            continue
        replenished = all(
            is_replenished(by_id[item.id]) if item.id in by_id else True for item in quotation.items
        )
        if not replenished:
            result.append(quotation)
            continue
        result.append(replace(quotation, status=DELIVERED, delivered_at=quotation.delivered_at or now))
        promoted.append(quotation.id)
    return tuple(result), tuple(promoted)
