from __future__ import annotations

import logging
from dataclasses import replace
from threading import Lock
from typing import Any, Dict, List, Sequence, Tuple

from suprimentos.contexts.sourcing.application.store import QuotationStore
from suprimentos.contexts.sourcing.domain.mapping import apply_quote_analysis, order_from_remote, quotation_from_remote
from suprimentos.contexts.sourcing.domain.models import Order, Quotation, to_iso
from suprimentos.contexts.sourcing.domain.reconciliation import ReconcileResult, reconcile_snapshot
from suprimentos.contexts.sourcing.infrastructure.document_store import DocumentStore, Unsubscribe
from suprimentos.contexts.sourcing.infrastructure.text_analysis import QuoteAnalysis, TextAnalysisError, TextAnalyzer
from suprimentos.core import EventBus, QuotationsAutoConfirmed, QuotationsQuoted, get_event_bus
from suprimentos.observability import observe_duplicates_removed, observe_reconciliation_pass


logger = logging.getLogger("suprimentos.sourcing.listener")

SOURCE_SUBSCRIPTION = "subscription"
SOURCE_POLL = "poll"
SOURCE_PUSH = "push"


class ReconciliationListener:
    """Recebe snapshots do repositorio remoto e reconcilia com a lista local.

    A analise de texto roda fora do lock do store; a reducao e a gravacao sao um
    unico ``store.apply``.
    """

    def __init__(
        self,
        store: QuotationStore,
        document_store: DocumentStore,
        analyzer: TextAnalyzer | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.store = store
        self.document_store = document_store
        self.analyzer = analyzer
        self.event_bus = event_bus or get_event_bus()
        self._state_lock = Lock()
        self._active = False
        self._unsubscribers: List[Unsubscribe] = []
        self._remote_orders: Tuple[Order, ...] = ()
        self._analysis_cache: Dict[Tuple[str, str], QuoteAnalysis | None] = {}

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def remote_orders(self) -> Tuple[Order, ...]:
        return self._remote_orders

    def start(self) -> None:
        with self._state_lock:
            if self._active:
                return
            self._active = True
        try:
            self._unsubscribers.append(self.document_store.subscribe_to_orders(self._on_orders))
            self._unsubscribers.append(self.document_store.subscribe_to_quotations(self._on_quotations))
        except Exception:
            self.stop()
            raise
        logger.info("reconciliation_listener_started")

    def stop(self) -> None:
        with self._state_lock:
            self._active = False
            unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            unsubscribe()
        logger.info("reconciliation_listener_stopped")

    def _on_orders(self, documents: List[Dict[str, Any]]) -> None:
        if not self._active:
            return
        self.update_orders(documents)

    def _on_quotations(self, documents: List[Dict[str, Any]]) -> None:
        if not self._active:
            return
        self.handle_snapshot(documents, SOURCE_SUBSCRIPTION)

    def update_orders(self, documents: Sequence[Dict[str, Any]]) -> Tuple[Order, ...]:
        orders = []
        for document in documents:
            if not isinstance(document, dict):
                continue
            order = order_from_remote(document, document.get("id"))
            if order is not None:
                orders.append(order)
        self._remote_orders = tuple(orders)
        return self._remote_orders

    def poll_once(self) -> ReconcileResult:
        documents = self.document_store.get_quotations()
        return self.handle_snapshot(documents, SOURCE_POLL)

    def handle_snapshot(self, documents: Sequence[Dict[str, Any]], source: str = SOURCE_PUSH) -> ReconcileResult:
        records: List[Quotation] = []
        for document in documents:
            if not isinstance(document, dict):
                continue
            quotation = quotation_from_remote(document, document.get("id"))
            if quotation is not None:
                records.append(quotation)
        records = self._enrich(records, self.store.list())

        outcome: List[ReconcileResult] = []

        def reduce(current: Tuple[Quotation, ...]) -> Tuple[Quotation, ...]:
            result = reconcile_snapshot(current, records)
            outcome.append(result)
            return result.quotations

        self.store.apply(reduce)
        result = outcome[-1]

        if result.bootstrapped:
            removed = len(records) - len(result.quotations)
            if removed:
                observe_duplicates_removed(removed)
            logger.info(
                "reconciliation_bootstrap",
                extra={"source": source, "adopted": len(result.quotations), "duplicates_removed": removed},
            )
        elif result.changed:
            logger.info("reconciliation_applied", extra={"source": source, "updated_ids": list(result.updated_ids)})
        observe_reconciliation_pass(source, len(result.updated_ids))

        if result.newly_quoted:
            self.event_bus.publish(QuotationsQuoted(quotation_ids=result.newly_quoted))
        if result.newly_auto_confirmed:
            self.event_bus.publish(QuotationsAutoConfirmed(quotation_ids=result.newly_auto_confirmed))
        return result

    def _enrich(self, records: List[Quotation], local: Sequence[Quotation]) -> List[Quotation]:
        if self.analyzer is None:
            return records
        enriched: List[Quotation] = []
        for record in records:
            if not record.reply_body or record.has_quote_data:
                enriched.append(record)
                continue
            if not record.items:
                counterpart = next(
                    (
                        entry
                        for entry in local
                        if (entry.remote_id and entry.remote_id == record.remote_id) or entry.id == record.id
                    ),
                    None,
                )
                if counterpart is not None and counterpart.items:
                    record = replace(record, items=counterpart.items)
            analysis = self._analyze(record)
            enriched.append(apply_quote_analysis(record, analysis) if analysis is not None else record)
        return enriched

    def _analyze(self, record: Quotation) -> QuoteAnalysis | None:
        key = (str(record.remote_id or record.id), to_iso(record.reply_received_at) or str(hash(record.reply_body)))
        if key in self._analysis_cache:
            return self._analysis_cache[key]
        try:
            analysis = self.analyzer.analyze(record.reply_body or "", record.items)
        except TextAnalysisError as exc:
            logger.warning("reply_analysis_failed", extra={"quotation_id": record.id, "details": str(exc)})
            return None
        self._analysis_cache[key] = analysis
        return analysis
