from __future__ import annotations

import hashlib
from datetime import datetime, timedelta
from typing import Iterable, Sequence, Tuple

from suprimentos.contexts.sourcing.domain.identity import normalize_email
from suprimentos.contexts.sourcing.domain.models import Quotation, QuotationItem
from suprimentos.contexts.sourcing.domain.status import is_active_status
from suprimentos.ui_strings import QUOTATION_DRAFT


SEND_IN_PROGRESS = "send_in_progress"
SUPPLIER_EMAIL_REQUIRED = "supplier_email_required"
ITEMS_REQUIRED = "items_required"
SUPPLIER_HAS_PENDING_QUOTATION = "supplier_has_pending_quotation"
ITEMS_ALREADY_REQUESTED = "items_already_requested"
DUPLICATE_RECENT_QUOTATION = "duplicate_recent_quotation"

# Rejeicoes de conflito com o estado atual (409); as demais sao dados invalidos (400).
CONFLICT_REJECTIONS = frozenset(
    {
        SEND_IN_PROGRESS,
        SUPPLIER_HAS_PENDING_QUOTATION,
        ITEMS_ALREADY_REQUESTED,
        DUPLICATE_RECENT_QUOTATION,
    }
)


def _same_supplier(quotation: Quotation, supplier_id: str | None, supplier_email: str) -> bool:
    if supplier_id and quotation.supplier_id:
        return quotation.supplier_id == supplier_id
    return bool(supplier_email) and normalize_email(quotation.supplier_email) == supplier_email


def check_send_allowed(
    quotations: Sequence[Quotation],
    *,
    supplier_id: str | None,
    supplier_email: str | None,
    item_ids: Iterable[str],
    now: datetime,
    send_in_progress: bool = False,
    duplicate_window_seconds: int = 3600,
) -> str | None:
    """Devolve o codigo da primeira regra violada, ou ``None`` quando o envio pode seguir."""
    if send_in_progress:
        return SEND_IN_PROGRESS

    normalized_email = normalize_email(supplier_email)
    if not normalized_email:
        return SUPPLIER_EMAIL_REQUIRED

    requested = tuple(sorted({str(item_id) for item_id in item_ids if str(item_id or "").strip()}))
    if not requested:
        return ITEMS_REQUIRED

    window_start = now - timedelta(seconds=max(0, int(duplicate_window_seconds)))
    for quotation in quotations:
        if not quotation.is_pre_quoted:
            continue
        if normalize_email(quotation.supplier_email) != normalized_email:
            continue
        created = quotation.reference_time
        if created is None or created < window_start:
            continue
        if quotation.item_ids == requested:
            return DUPLICATE_RECENT_QUOTATION

    for quotation in quotations:
        if quotation.is_pre_quoted and _same_supplier(quotation, supplier_id, normalized_email):
            return SUPPLIER_HAS_PENDING_QUOTATION

    requested_set = set(requested)
    for quotation in quotations:
        if not is_active_status(quotation.status, has_order=quotation.has_order):
            continue
        if requested_set & set(quotation.item_ids):
            return ITEMS_ALREADY_REQUESTED

    return None


def idempotency_key(supplier_id: str | None, item_ids: Iterable[str], now_ts: float, window_seconds: int) -> str:
    digest = hashlib.sha256(",".join(sorted(str(item_id) for item_id in item_ids)).encode("utf-8")).hexdigest()[:16]
    bucket = int(now_ts // max(1, int(window_seconds)))
    return f"{supplier_id or 'no-supplier'}:{digest}:{bucket}"


def next_quotation_id(now: datetime, taken: Iterable[str]) -> str:
    """Id local baseado no relogio (ms); incrementa enquanto colidir."""
    used = set(taken)
    candidate = int(now.timestamp() * 1000)
    while str(candidate) in used:
        candidate += 1
    return str(candidate)


def build_quotation_draft(
    supplier_name: str,
    items: Sequence[QuotationItem],
    *,
    now: datetime,
    sender_name: str = "Equipe Padoca",
) -> Tuple[str, str]:
    """Assunto e corpo do email; as linhas ``• nome: qtd unidade`` sao o formato que a recuperacao legada le."""
    lines = [f"• {item.name}: {_format_quantity(item.quantity_to_order)} {item.unit}".rstrip() for item in items]
    subject = QUOTATION_DRAFT["subject"].format(date=now.strftime("%d/%m/%Y"))
    body = "\n\n".join(
        [
            QUOTATION_DRAFT["greeting"].format(supplier_name=supplier_name or "fornecedor"),
            QUOTATION_DRAFT["intro"] + "\n" + "\n".join(lines),
            QUOTATION_DRAFT["closing"],
            QUOTATION_DRAFT["signature"].format(sender_name=sender_name),
        ]
    )
    return subject, body


def _format_quantity(value: float) -> str:
    number = float(value or 0)
    if number.is_integer():
        return str(int(number))
    return f"{number:g}"
