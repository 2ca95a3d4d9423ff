"""Conversao de registros crus (documento remoto, cache local, formatos legados) para o modelo canonico.

Todo valor de status que entra no sistema passa por ``map_status`` aqui; nenhuma outra
camada interpreta vocabulario remoto.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Set, Tuple

from suprimentos.contexts.sourcing.domain.models import InventoryItem, Order, Quotation, QuotationItem, Supplier
from suprimentos.contexts.sourcing.domain.status import (
    AWAITING,
    PENDING,
    QUOTED,
    map_order_status,
    map_status,
    max_status,
)


logger = logging.getLogger("suprimentos.sourcing.mapping")

LEGACY_ITEM_PATTERN = re.compile(
    r"[•\-]\s*([^:\n]+):\s*(\d+(?:[.,]\d+)?)\s*(kg|g|un|L|ml|pç|cx|pac)?",
    re.IGNORECASE,
)


def _safe_str(value: object | None) -> str | None:
    if value is None:
        return None
    raw = str(value).strip()
    return raw or None


def _safe_float(value: object | None, default: float | None = None) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return default
    if isinstance(value, str):
        value = value.strip().replace("R$", "").strip()
        if "," in value:
            value = value.replace(".", "").replace(",", ".")
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _safe_int(value: object | None) -> int | None:
    parsed = _safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def _safe_bool(value: object | None, default: bool | None = None) -> bool | None:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "sim", "on"}:
        return True
    if normalized in {"0", "false", "no", "nao", "off"}:
        return False
    return default


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def parse_timestamp(value: object | None) -> datetime | None:
    """Aceita datetime, ISO-8601, epoch (s ou ms) e o formato ``{"seconds": ...}`` do store remoto."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, dict):
        seconds = _first(value, "seconds", "_seconds")
        if seconds is None:
            return None
        return parse_timestamp(float(seconds))
    if isinstance(value, (int, float)):
        seconds = float(value) / 1000.0 if float(value) > 1e11 else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    raw = str(value).strip()
    if raw.isdigit():
        return parse_timestamp(int(raw))
    normalized = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def item_from_record(record: Dict[str, Any], index: int = 0) -> QuotationItem:
    name = str(_first(record, "name", "productName", "description") or "").strip()
    item_id = _safe_str(_first(record, "id", "productId", "itemId")) or (name.lower() or f"item-{index}")
    return QuotationItem(
        id=item_id,
        name=name or item_id,
        unit=str(_first(record, "unit", "uom") or "un"),
        quantity_to_order=_safe_float(_first(record, "quantityToOrder", "quantity", "qty"), 0.0) or 0.0,
        current_stock=_safe_float(record.get("currentStock")),
        max_stock=_safe_float(record.get("maxStock")),
        quoted_unit_price=_safe_float(_first(record, "quotedUnitPrice", "unitPrice", "price")),
        available=_safe_bool(_first(record, "available", "quotedAvailability")),
    )


def recover_legacy_items(quotation_id: str, body: str | None, item_names: Iterable[str]) -> Tuple[QuotationItem, ...]:
    """Registros antigos sem ``items``: tenta linhas ``• nome: qtd unidade`` do corpo, depois ``itemNames``."""
    recovered: List[QuotationItem] = []
    for match in LEGACY_ITEM_PATTERN.finditer(body or ""):
        recovered.append(
            QuotationItem(
                id=f"legacy-{quotation_id}-{len(recovered)}",
                name=match.group(1).strip(),
                unit=match.group(3) or "",
                quantity_to_order=_safe_float(match.group(2), 0.0) or 0.0,
                current_stock=0.0,
                max_stock=0.0,
            )
        )
    if recovered:
        return tuple(recovered)

    names = [str(name).strip() for name in item_names if str(name or "").strip()]
    return tuple(
        QuotationItem(
            id=f"legacy-name-{quotation_id}-{idx}",
            name=name,
            unit="",
            quantity_to_order=0.0,
            current_stock=0.0,
            max_stock=0.0,
        )
        for idx, name in enumerate(names)
    )


def derive_status(raw_status: object | None, *, has_quote_data: bool, has_reply: bool) -> str:
    if _safe_str(raw_status) is not None:
        return map_status(raw_status)
    if has_quote_data:
        return QUOTED
    if has_reply:
        return AWAITING
    return PENDING


def _quotation_from_record(record: Dict[str, Any], *, quotation_id: str, remote_id: str | None) -> Quotation:
    raw_items = record.get("items")
    item_names = tuple(str(name) for name in (record.get("itemNames") or []) if name)
    body = str(record.get("body") or "")
    if isinstance(raw_items, list) and raw_items:
        items = tuple(item_from_record(item, idx) for idx, item in enumerate(raw_items) if isinstance(item, dict))
    else:
        items = recover_legacy_items(quotation_id, body, item_names)

    reply_received_at = parse_timestamp(_first(record, "replyReceivedAt", "repliedAt"))
    quoted_total = _safe_float(_first(record, "quotedTotal", "totalQuote", "totalAmount"))
    has_quote_data = quoted_total is not None or any(item.quoted_unit_price is not None for item in items)
    status = derive_status(
        record.get("status"),
        has_quote_data=has_quote_data,
        has_reply=reply_received_at is not None or bool(record.get("replyBody")),
    )
    analysis = record.get("aiAnalysis") if isinstance(record.get("aiAnalysis"), dict) else {}
    created_at = parse_timestamp(_first(record, "createdAt", "sentAt", "date"))

    return Quotation(
        id=quotation_id,
        remote_id=remote_id,
        supplier_id=_safe_str(record.get("supplierId")),
        supplier_name=str(_first(record, "supplierName", "supplier") or ""),
        supplier_email=str(_first(record, "supplierEmail", "to", "email") or "").strip(),
        items=items,
        item_names=item_names,
        subject=str(record.get("subject") or ""),
        body=body,
        status=status,
        last_remote_status=map_status(record["lastRemoteStatus"]) if record.get("lastRemoteStatus") else None,
        created_at=created_at,
        sent_at=parse_timestamp(record.get("sentAt")) or created_at,
        email_sent_at=parse_timestamp(record.get("emailSentAt")),
        email_error=_safe_str(record.get("emailError")),
        resend_count=_safe_int(record.get("resendCount")) or 0,
        reply_from=_safe_str(record.get("replyFrom")),
        reply_body=_safe_str(record.get("replyBody")),
        reply_received_at=reply_received_at,
        quoted_total=quoted_total,
        expected_delivery=_safe_str(_first(record, "deliveryDate", "expectedDelivery")),
        delivery_days=_safe_int(record.get("deliveryDays")),
        payment_terms=_safe_str(record.get("paymentTerms")),
        has_problems=bool(_safe_bool(record.get("hasProblems"), False)),
        has_delay=bool(_safe_bool(record.get("hasDelay"), False)),
        problem_summary=_safe_str(record.get("problemSummary")),
        urgency=_safe_str(_first(record, "urgency") or analysis.get("urgency")),
        suggested_action=_safe_str(record.get("suggestedAction")),
        supplier_notes=_safe_str(_first(record, "supplierNotes") or analysis.get("supplierNotes")),
        order_id=_safe_str(record.get("orderId")),
        confirmed_at=parse_timestamp(record.get("confirmedAt")),
        confirmed_manually=bool(_safe_bool(record.get("confirmedManually"), False)),
        delivered_at=parse_timestamp(record.get("deliveredAt")),
    )


def quotation_from_cache(record: Dict[str, Any]) -> Quotation | None:
    quotation_id = _safe_str(_first(record, "id", "localId"))
    if quotation_id is None:
        return None
    remote_id = _safe_str(_first(record, "remoteId", "firestoreId"))
    return _quotation_from_record(record, quotation_id=quotation_id, remote_id=remote_id)


def quotation_from_remote(document: Dict[str, Any], document_id: str | None = None) -> Quotation | None:
    """Documento remoto: o id do documento vira ``remote_id``; ``localId`` (quando houver) preserva o id local."""
    remote_id = _safe_str(document_id) or _safe_str(document.get("id"))
    if remote_id is None:
        return None
    local_id = _safe_str(_first(document, "localId", "id")) or remote_id
    return _quotation_from_record(document, quotation_id=local_id, remote_id=remote_id)


def order_from_remote(document: Dict[str, Any], document_id: str | None = None) -> Order | None:
    order_id = _safe_str(document_id) or _safe_str(document.get("id"))
    if order_id is None:
        return None
    raw_items = document.get("items") if isinstance(document.get("items"), list) else []
    return Order(
        id=order_id,
        remote_id=order_id,
        quotation_id=_safe_str(document.get("quotationId")),
        status=map_order_status(document.get("status")),
        supplier_id=_safe_str(document.get("supplierId")),
        supplier_name=str(document.get("supplierName") or ""),
        supplier_email=str(document.get("supplierEmail") or ""),
        items=tuple(item_from_record(item, idx) for idx, item in enumerate(raw_items) if isinstance(item, dict)),
        total_amount=_safe_float(_first(document, "totalAmount", "quotedTotal")),
        expected_delivery=_safe_str(_first(document, "deliveryDate", "expectedDelivery")),
        created_at=parse_timestamp(document.get("createdAt")),
        confirmed_at=parse_timestamp(document.get("confirmedAt")),
        source="remote",
    )


def inventory_item_from_record(record: Dict[str, Any]) -> InventoryItem | None:
    item_id = _safe_str(record.get("id"))
    if item_id is None:
        return None
    package_count = _safe_float(record.get("packageCount"))
    return InventoryItem(
        id=item_id,
        name=str(record.get("name") or item_id),
        unit=str(record.get("unit") or "un"),
        package_quantity=_safe_float(_first(record, "packageQuantity", "currentStock", "quantity"), 0.0) or 0.0,
        package_count=1.0 if package_count is None else package_count,
        min_stock=_safe_float(record.get("minStock"), 0.0) or 0.0,
        max_stock=_safe_float(record.get("maxStock"), 0.0) or 0.0,
        supplier_id=_safe_str(record.get("supplierId")),
    )


def supplier_from_record(record: Dict[str, Any]) -> Supplier | None:
    supplier_id = _safe_str(record.get("id"))
    if supplier_id is None:
        return None
    linked = record.get("linkedItems") or record.get("linkedItemIds") or []
    linked_ids: List[str] = []
    for entry in linked if isinstance(linked, list) else []:
        value = entry.get("id") if isinstance(entry, dict) else entry
        if _safe_str(value):
            linked_ids.append(str(value).strip())
    return Supplier(
        id=supplier_id,
        name=str(record.get("name") or supplier_id),
        email=str(record.get("email") or "").strip(),
        linked_item_ids=tuple(linked_ids),
    )


def _normalized_name(value: str) -> str:
    return (value or "").strip().lower()


def _same_name(left: str, right: str) -> bool:
    return _normalized_name(left) == _normalized_name(right)


def names_match(left: str, right: str) -> bool:
    a = _normalized_name(left)
    b = _normalized_name(right)
    if not a or not b:
        return False
    return a in b or b in a


def pair_items(
    local_items: Iterable[QuotationItem], remote_items: Iterable[QuotationItem]
) -> List[Tuple[QuotationItem, QuotationItem | None]]:
    """Casa cada item local com no maximo um item remoto.

    Ordem de preferencia: id, nome igual (sem caixa), nome contido. Um item remoto
    casado num nivel mais forte nao fica disponivel para os niveis seguintes.
    """
    local_list = list(local_items)
    remote_list = list(remote_items)
    pairs: Dict[int, int] = {}
    used: Set[int] = set()

    def claim(accepts) -> None:
        for local_index, item in enumerate(local_list):
            if local_index in pairs:
                continue
            for remote_index, candidate in enumerate(remote_list):
                if remote_index not in used and accepts(item, candidate):
                    pairs[local_index] = remote_index
                    used.add(remote_index)
                    break

    claim(lambda item, candidate: bool(candidate.id) and candidate.id == item.id)
    claim(lambda item, candidate: bool(_normalized_name(item.name)) and _same_name(item.name, candidate.name))
    claim(lambda item, candidate: names_match(item.name, candidate.name))
    return [
        (item, remote_list[pairs[index]] if index in pairs else None) for index, item in enumerate(local_list)
    ]


def rematch_items(local_items: Tuple[QuotationItem, ...], remote_items: Iterable[QuotationItem]) -> Tuple[QuotationItem, ...]:
    """Leva preco cotado e disponibilidade para os itens locais casados por ``pair_items``."""
    merged: List[QuotationItem] = []
    for item, match in pair_items(local_items, remote_items):
        if match is None:
            merged.append(item)
            continue
        merged.append(
            replace(
                item,
                quoted_unit_price=(
                    match.quoted_unit_price if match.quoted_unit_price is not None else item.quoted_unit_price
                ),
                available=match.available if match.available is not None else item.available,
            )
        )
    return tuple(merged)


def apply_quote_analysis(quotation: Quotation, analysis) -> Quotation:
    """Incorpora o resultado da analise de texto da resposta do fornecedor."""
    if analysis is None or not analysis.has_quote:
        return quotation
    priced_items = tuple(
        QuotationItem(
            id="",
            name=item.name,
            quoted_unit_price=item.unit_price,
            available=item.available,
        )
        for item in analysis.items
    )
    items = rematch_items(quotation.items, priced_items)
    quoted_total = analysis.total_quote
    if quoted_total is None:
        priced = [
            item.quoted_unit_price * item.quantity_to_order
            for item in items
            if item.quoted_unit_price is not None and item.quantity_to_order
        ]
        quoted_total = round(sum(priced), 2) if priced else None
    enriched = replace(
        quotation,
        items=items,
        quoted_total=quotation.quoted_total if quotation.quoted_total is not None else quoted_total,
        expected_delivery=quotation.expected_delivery or analysis.delivery_date,
        delivery_days=quotation.delivery_days if quotation.delivery_days is not None else analysis.delivery_days,
        payment_terms=quotation.payment_terms or analysis.payment_terms,
        has_problems=quotation.has_problems or analysis.has_problems,
        has_delay=quotation.has_delay or analysis.has_delay,
        problem_summary=quotation.problem_summary or analysis.problem_summary,
        urgency=quotation.urgency or analysis.urgency,
        suggested_action=quotation.suggested_action or analysis.suggested_action,
        supplier_notes=quotation.supplier_notes or analysis.supplier_notes,
    )
    if enriched.has_quote_data:
        enriched = replace(enriched, status=max_status(enriched.status, QUOTED))
    return enriched
