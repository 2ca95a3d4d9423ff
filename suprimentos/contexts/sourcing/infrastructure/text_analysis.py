from __future__ import annotations

import json
import logging
import re
import urllib.parse
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

from suprimentos.contexts.sourcing.domain.mapping import _safe_bool, _safe_float, _safe_int, _safe_str, names_match
from suprimentos.contexts.sourcing.domain.models import QuotationItem
from suprimentos.http_client import HttpClientError, request_json


logger = logging.getLogger("suprimentos.sourcing.text_analysis")


class TextAnalysisError(RuntimeError):
    pass


@dataclass(frozen=True)
class QuoteItemAnalysis:
    name: str
    unit_price: float | None = None
    available: bool | None = None
    available_quantity: float | None = None
    unit: str | None = None

    @staticmethod
    def from_dict(payload: Dict[str, Any]) -> "QuoteItemAnalysis":
        return QuoteItemAnalysis(
            name=str(payload.get("name") or "").strip(),
            unit_price=_safe_float(payload.get("unitPrice")),
            available=_safe_bool(payload.get("available")),
            available_quantity=_safe_float(payload.get("availableQuantity")),
            unit=_safe_str(payload.get("unit")),
        )


@dataclass(frozen=True)
class QuoteAnalysis:
    has_quote: bool
    items: Tuple[QuoteItemAnalysis, ...] = ()
    total_quote: float | None = None
    delivery_date: str | None = None
    delivery_days: int | None = None
    payment_terms: str | None = None
    has_problems: bool = False
    has_delay: bool = False
    problem_summary: str | None = None
    urgency: str | None = None
    suggested_action: str | None = None
    supplier_notes: str | None = None

    @staticmethod
    def from_dict(payload: Dict[str, Any]) -> "QuoteAnalysis":
        raw_items = payload.get("items") if isinstance(payload.get("items"), list) else []
        return QuoteAnalysis(
            has_quote=bool(_safe_bool(payload.get("hasQuote"), False)),
            items=tuple(QuoteItemAnalysis.from_dict(item) for item in raw_items if isinstance(item, dict)),
            total_quote=_safe_float(payload.get("totalQuote")),
            delivery_date=_safe_str(payload.get("deliveryDate")),
            delivery_days=_safe_int(payload.get("deliveryDays")),
            payment_terms=_safe_str(payload.get("paymentTerms")),
            has_problems=bool(_safe_bool(payload.get("hasProblems"), False)),
            has_delay=bool(_safe_bool(payload.get("hasDelay"), False)),
            problem_summary=_safe_str(payload.get("problemSummary")),
            urgency=_safe_str(payload.get("urgency")),
            suggested_action=_safe_str(payload.get("suggestedAction")),
            supplier_notes=_safe_str(payload.get("supplierNotes")),
        )


class TextAnalyzer(ABC):
    @abstractmethod
    def analyze(self, raw_text: str, context_items: Sequence[QuotationItem]) -> QuoteAnalysis | None:
        """``None`` quando o texto nao traz cotacao; falha de servico vira ``TextAnalysisError``."""
        raise NotImplementedError


_PRICE = r"R?\$?\s*(\d{1,3}(?:\.\d{3})*(?:,\d{1,2})|\d+(?:[.,]\d{1,2})?)"
_TOTAL_PATTERN = re.compile(r"total[^\d\n]{0,20}" + _PRICE, re.IGNORECASE)
_DELIVERY_DAYS_PATTERN = re.compile(r"(?:prazo|entrega)[^\d\n]{0,30}(\d{1,3})\s*dias?", re.IGNORECASE)
_DELIVERY_DATE_PATTERN = re.compile(r"entrega[^\d\n]{0,30}(\d{1,2})/(\d{1,2})/(\d{4})", re.IGNORECASE)
_PAYMENT_PATTERN = re.compile(r"(?:pagamento|condi[cç][aã]o)[^:\n]*:\s*([^\n]+)", re.IGNORECASE)
_UNAVAILABLE_MARKERS = ("em falta", "indisponivel", "indisponível", "sem estoque", "nao temos", "não temos")
_DELAY_MARKERS = ("atraso", "atrasar", "atrasada", "atrasado")


class RuleBasedQuoteAnalyzer(TextAnalyzer):
    """Extracao deterministica para ``ANALYSIS_MODE=rules`` (sem servico externo)."""

    def analyze(self, raw_text: str, context_items: Sequence[QuotationItem]) -> QuoteAnalysis | None:
        text = str(raw_text or "")
        if not text.strip():
            return None

        items: List[QuoteItemAnalysis] = []
        problems: List[str] = []
        for line in text.splitlines():
            lowered = line.lower()
            item = next((candidate for candidate in context_items if candidate.name and candidate.name.lower() in lowered), None)
            if item is None:
                continue
            unavailable = any(marker in lowered for marker in _UNAVAILABLE_MARKERS)
            price_match = re.search(_PRICE, line[lowered.index(item.name.lower()) + len(item.name) :])
            price = _safe_float(price_match.group(1)) if price_match and not unavailable else None
            if unavailable:
                problems.append(f"{item.name} indisponivel")
            if price is None and not unavailable:
                continue
            items.append(QuoteItemAnalysis(name=item.name, unit_price=price, available=not unavailable))

        total_match = _TOTAL_PATTERN.search(text)
        total = _safe_float(total_match.group(1)) if total_match else None
        if not items and total is None:
            return None

        lowered_text = text.lower()
        has_delay = any(marker in lowered_text for marker in _DELAY_MARKERS)
        if has_delay:
            problems.append("atraso na entrega")
        days_match = _DELIVERY_DAYS_PATTERN.search(text)
        date_match = _DELIVERY_DATE_PATTERN.search(text)
        payment_match = _PAYMENT_PATTERN.search(text)
        missing = [item.name for item in context_items if not any(names_match(item.name, entry.name) for entry in items)]
        has_problems = bool(problems)
        return QuoteAnalysis(
            has_quote=True,
            items=tuple(items),
            total_quote=total,
            delivery_date=(
                f"{date_match.group(3)}-{int(date_match.group(2)):02d}-{int(date_match.group(1)):02d}" if date_match else None
            ),
            delivery_days=int(days_match.group(1)) if days_match else None,
            payment_terms=payment_match.group(1).strip() if payment_match else None,
            has_problems=has_problems,
            has_delay=has_delay,
            problem_summary="; ".join(problems) or None,
            urgency="high" if has_problems else "low",
            suggested_action="negotiate" if has_problems or missing else "confirm",
        )


_ANALYSIS_PROMPT = """Voce e um assistente especializado em analise de emails comerciais de fornecedores.
Analise a resposta do fornecedor e extraia as informacoes em JSON.

Identifique problemas como itens indisponiveis, atrasos na entrega, quantidades parciais e precos alterados.

Email do fornecedor:
\"\"\"
{email_body}
\"\"\"

Itens esperados na cotacao: {item_names}

Responda APENAS com JSON valido no formato:
{{
  "hasQuote": boolean,
  "items": [{{"name": string, "unitPrice": number|null, "availableQuantity": number|null,
              "unit": string, "available": boolean}}],
  "deliveryDate": "YYYY-MM-DD"|null,
  "deliveryDays": number|null,
  "hasDelay": boolean,
  "paymentTerms": string|null,
  "totalQuote": number|null,
  "supplierNotes": string|null,
  "hasProblems": boolean,
  "problemSummary": string|null,
  "urgency": "low"|"medium"|"high",
  "suggestedAction": "confirm"|"negotiate"|"cancel"|"wait"
}}"""

_CODE_FENCE = re.compile(r"```(?:json)?\s*|```", re.IGNORECASE)


class GeminiTextAnalyzer(TextAnalyzer):
    """``generateContent`` da API Gemini com temperatura baixa e resposta JSON."""

    def __init__(self, api_key: str | None, model: str, base_url: str) -> None:
        self.api_key = (api_key or "").strip()
        self.model = model
        self.base_url = base_url.rstrip("/")

    def build_request(self, raw_text: str, context_items: Sequence[QuotationItem]) -> dict:
        item_names = ", ".join(item.name for item in context_items if item.name) or "nao especificados"
        prompt = _ANALYSIS_PROMPT.format(email_body=raw_text, item_names=item_names)
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": 0.2,
                "maxOutputTokens": 1024,
                "responseMimeType": "application/json",
            },
        }

    def analyze(self, raw_text: str, context_items: Sequence[QuotationItem]) -> QuoteAnalysis | None:
        if not self.api_key:
            raise TextAnalysisError("GEMINI_API_KEY nao configurada.")
        if not str(raw_text or "").strip():
            return None
        url = f"{self.base_url}/models/{self.model}:generateContent?{urllib.parse.urlencode({'key': self.api_key})}"
        try:
            response = request_json("POST", url, payload=self.build_request(raw_text, context_items), target="gemini")
        except HttpClientError as exc:
            raise TextAnalysisError(str(exc)) from exc
        return self.parse_response(response)

    @staticmethod
    def parse_response(response: object) -> QuoteAnalysis | None:
        try:
            text = response["candidates"][0]["content"]["parts"][0]["text"]  # type: ignore[index]
        except (KeyError, IndexError, TypeError) as exc:
            raise TextAnalysisError("Resposta do Gemini sem conteudo.") from exc
        cleaned = _CODE_FENCE.sub("", str(text or "")).strip()
        try:
            payload = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise TextAnalysisError("Gemini retornou JSON invalido.") from exc
        if not isinstance(payload, dict):
            raise TextAnalysisError("Gemini retornou JSON nao-objeto.")
        analysis = QuoteAnalysis.from_dict(payload)
        if not analysis.has_quote:
            return None
        return analysis
