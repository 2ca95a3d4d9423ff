from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List


@dataclass(frozen=True)
class ServiceOutput:
    payload: Dict[str, Any]
    status_code: int = 200


@dataclass(frozen=True)
class SendQuotationInput:
    supplier_id: str | None
    supplier_name: str
    supplier_email: str
    items: List[Dict[str, Any]]
    subject: str | None = None
    body: str | None = None


@dataclass(frozen=True)
class ReplyInput:
    quotation_id: str
    reply_from: str | None
    reply_body: str
    received_at: str | None = None

