from __future__ import annotations

import re
from typing import List

from suprimentos.contexts.sourcing.domain.models import Quotation


ID_TIER = "id"
REMOTE_ID_TIER = "remote_id"
COMPOSITE_TIER = "composite"

EXACT_EMAIL = "exact"
SAME_DOMAIN = "domain"
SUBSTRING_EMAIL = "substring"

# Dominios de webmail nao identificam um fornecedor; nao servem para o casamento por dominio.
PUBLIC_MAIL_DOMAINS = frozenset(
    {
        "gmail.com",
        "googlemail.com",
        "hotmail.com",
        "outlook.com",
        "live.com",
        "yahoo.com",
        "yahoo.com.br",
        "icloud.com",
        "bol.com.br",
        "uol.com.br",
        "terra.com.br",
    }
)

_ANGLE_ADDRESS = re.compile(r"<([^<>]+)>")


def normalize_email(value: object | None) -> str:
    """``"Fornecedor <Vendas@Exemplo.com>"`` -> ``"vendas@exemplo.com"``."""
    raw = str(value or "").strip()
    match = _ANGLE_ADDRESS.search(raw)
    if match:
        raw = match.group(1)
    return raw.strip().strip('"').strip().lower()


def email_domain(value: object | None) -> str:
    normalized = normalize_email(value)
    if "@" not in normalized:
        return ""
    return normalized.rsplit("@", 1)[1]


def email_match_tier(left: object | None, right: object | None) -> str | None:
    a = normalize_email(left)
    b = normalize_email(right)
    if not a or not b:
        return None
    if a == b:
        return EXACT_EMAIL
    domain = email_domain(a)
    if domain and domain == email_domain(b) and domain not in PUBLIC_MAIL_DOMAINS:
        return SAME_DOMAIN
    if a in b or b in a:
        return SUBSTRING_EMAIL
    return None


def composite_key(quotation: Quotation) -> str | None:
    supplier_id = str(quotation.supplier_id or "").strip()
    item_ids = quotation.item_ids
    if not supplier_id or not item_ids:
        return None
    return f"comp:{supplier_id}_{','.join(item_ids)}"


def identity_keys(quotation: Quotation) -> List[str]:
    """Chaves de identidade, da mais para a menos especifica.

    Id local e id remoto compartilham o mesmo espaco: um documento remoto cujo id
    e o id local de outra cotacao colide com ela.
    """
    keys: List[str] = []
    for value in (quotation.remote_id, quotation.id):
        normalized = str(value or "").strip()
        if normalized and f"id:{normalized}" not in keys:
            keys.append(f"id:{normalized}")
    composite = composite_key(quotation)
    if composite:
        keys.append(composite)
    return keys


def resolve_identity(left: Quotation, right: Quotation) -> str | None:
    """Primeiro nivel em que as duas cotacoes se identificam (ou ``None``)."""
    if left.remote_id and left.remote_id == right.remote_id:
        return REMOTE_ID_TIER
    left_ids = {value for value in (left.id, left.remote_id) if value}
    right_ids = {value for value in (right.id, right.remote_id) if value}
    if left_ids & right_ids:
        return ID_TIER
    left_composite = composite_key(left)
    if left_composite and left_composite == composite_key(right):
        return COMPOSITE_TIER
    return None
