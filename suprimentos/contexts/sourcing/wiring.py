from __future__ import annotations

from typing import Any, Mapping

from suprimentos.contexts.sourcing.application.listener import ReconciliationListener
from suprimentos.contexts.sourcing.application.notifications import NotificationCenter
from suprimentos.contexts.sourcing.application.replenishment import StockReplenishmentWatcher
from suprimentos.contexts.sourcing.application.send_service import QuotationSendService
from suprimentos.contexts.sourcing.application.service import SourcingService
from suprimentos.contexts.sourcing.application.store import QuotationStore
from suprimentos.contexts.sourcing.infrastructure.document_store import (
    DocumentStore,
    InMemoryDocumentStore,
    SqlDocumentStore,
)
from suprimentos.contexts.sourcing.infrastructure.email_transport import (
    EmailTransport,
    GmailApiTransport,
    MockEmailTransport,
)
from suprimentos.contexts.sourcing.infrastructure.local_cache import (
    JsonListCache,
    KeyValueCache,
    MemoryKeyValueCache,
    QuotationCache,
    SqlKeyValueCache,
)
from suprimentos.contexts.sourcing.infrastructure.text_analysis import (
    GeminiTextAnalyzer,
    RuleBasedQuoteAnalyzer,
    TextAnalyzer,
)
from suprimentos.core import EventBus, get_event_bus


def _mode(config: Mapping[str, Any], key: str, default: str) -> str:
    return str(config.get(key) or default).strip().lower()


def build_document_store(config: Mapping[str, Any]) -> DocumentStore:
    if _mode(config, "DOCUMENT_STORE_MODE", "sql") == "memory":
        return InMemoryDocumentStore()
    return SqlDocumentStore(str(config.get("DB_PATH")))


def build_key_value_cache(config: Mapping[str, Any]) -> KeyValueCache:
    if _mode(config, "LOCAL_CACHE_MODE", "sql") == "memory":
        return MemoryKeyValueCache()
    return SqlKeyValueCache(str(config.get("DB_PATH")))


def build_email_transport(config: Mapping[str, Any]) -> EmailTransport:
    if _mode(config, "EMAIL_MODE", "mock") == "gmail":
        return GmailApiTransport(
            str(config.get("GMAIL_API_BASE_URL")),
            access_token=config.get("GMAIL_ACCESS_TOKEN"),
            sender=str(config.get("GMAIL_SENDER") or "me"),
        )
    return MockEmailTransport()


def build_text_analyzer(config: Mapping[str, Any]) -> TextAnalyzer:
    if _mode(config, "ANALYSIS_MODE", "rules") == "gemini":
        return GeminiTextAnalyzer(
            config.get("GEMINI_API_KEY"),
            model=str(config.get("GEMINI_MODEL")),
            base_url=str(config.get("GEMINI_API_BASE")),
        )
    return RuleBasedQuoteAnalyzer()


def build_sourcing_service(
    config: Mapping[str, Any],
    *,
    document_store: DocumentStore | None = None,
    kv_cache: KeyValueCache | None = None,
    email_transport: EmailTransport | None = None,
    analyzer: TextAnalyzer | None = None,
    event_bus: EventBus | None = None,
    clock=None,
) -> SourcingService:
    """Monta o servico a partir da configuracao; os argumentos explicitos substituem os modos."""
    event_bus = event_bus or get_event_bus()
    document_store = document_store or build_document_store(config)
    kv_cache = kv_cache or build_key_value_cache(config)
    email_transport = email_transport or build_email_transport(config)
    analyzer = analyzer or build_text_analyzer(config)

    store = QuotationStore(QuotationCache(kv_cache, str(config.get("QUOTATION_CACHE_KEY") or "padoca_sent_emails")))
    notifications = NotificationCenter(int(config.get("NOTIFICATION_HISTORY_LIMIT") or 100)).attach(event_bus)
    send_service = QuotationSendService(
        store,
        document_store,
        email_transport,
        event_bus,
        duplicate_window_seconds=int(config.get("DUPLICATE_WINDOW_SECONDS", 3600)),
        idempotency_window_seconds=int(config.get("SEND_IDEMPOTENCY_WINDOW_SECONDS", 300)),
        clock=clock,
        sender_name=str(config.get("QUOTATION_SENDER_NAME") or "Equipe Padoca"),
    )
    return SourcingService(
        store=store,
        document_store=document_store,
        email_transport=email_transport,
        send_service=send_service,
        listener=ReconciliationListener(store, document_store, analyzer, event_bus),
        watcher=StockReplenishmentWatcher(store, document_store, event_bus, clock=clock),
        notifications=notifications,
        inventory_cache=JsonListCache(kv_cache, str(config.get("INVENTORY_CACHE_KEY") or "padoca_inventory")),
        supplier_cache=JsonListCache(kv_cache, str(config.get("SUPPLIER_CACHE_KEY") or "padoca_suppliers")),
        event_bus=event_bus,
        clock=clock,
    )
