from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from threading import Lock
from typing import Callable, Dict, Tuple

from suprimentos.contexts.sourcing.application.store import QuotationStore
from suprimentos.contexts.sourcing.domain.mapping import item_from_record
from suprimentos.contexts.sourcing.domain.models import Quotation, utc_now
from suprimentos.contexts.sourcing.domain.send_policy import (
    CONFLICT_REJECTIONS,
    SEND_IN_PROGRESS,
    build_quotation_draft,
    check_send_allowed,
    idempotency_key,
    next_quotation_id,
)
from suprimentos.contexts.sourcing.domain.status import PENDING
from suprimentos.contexts.sourcing.infrastructure.document_store import DocumentStore, DocumentStoreError
from suprimentos.contexts.sourcing.infrastructure.email_transport import EmailTransport, EmailTransportError
from suprimentos.core import EmailDispatchFailed, EventBus, QuotationSendRolledBack, QuotationSent, get_event_bus
from suprimentos.domain.contracts import SendQuotationInput, ServiceOutput
from suprimentos.errors import PersistenceError, ValidationError
from suprimentos.observability import observe_quotation_send
from suprimentos.ui_strings import success_message, warning_message


logger = logging.getLogger("suprimentos.sourcing.send")

Clock = Callable[[], datetime]


class QuotationSendService:
    """Envio otimista: aplica localmente, persiste no repositorio remoto e so entao envia o email."""

    def __init__(
        self,
        store: QuotationStore,
        document_store: DocumentStore,
        email_transport: EmailTransport,
        event_bus: EventBus | None = None,
        *,
        duplicate_window_seconds: int = 3600,
        idempotency_window_seconds: int = 300,
        clock: Clock | None = None,
        sender_name: str = "Equipe Padoca",
    ) -> None:
        self.store = store
        self.document_store = document_store
        self.email_transport = email_transport
        self.event_bus = event_bus or get_event_bus()
        self.duplicate_window_seconds = max(0, int(duplicate_window_seconds))
        self.idempotency_window_seconds = max(1, int(idempotency_window_seconds))
        self.clock = clock or utc_now
        self.sender_name = sender_name
        self._idempotency_lock = Lock()
        self._completed: Dict[str, Tuple[float, ServiceOutput]] = {}

    def _replay(self, key: str, now_ts: float) -> ServiceOutput | None:
        with self._idempotency_lock:
            expired = [entry for entry, (stored_at, _) in self._completed.items() if now_ts - stored_at > self.idempotency_window_seconds]
            for entry in expired:
                self._completed.pop(entry, None)
            cached = self._completed.get(key)
        return cached[1] if cached else None

    def _remember(self, key: str, now_ts: float, result: ServiceOutput) -> None:
        with self._idempotency_lock:
            self._completed[key] = (now_ts, result)

    @staticmethod
    def _reject(code: str) -> ValidationError:
        return ValidationError(code, http_status=409 if code in CONFLICT_REJECTIONS else 400)

    def send_quotation(self, data: SendQuotationInput) -> ServiceOutput:
        now = self.clock()
        items = tuple(item_from_record(record, index) for index, record in enumerate(data.items or []) if isinstance(record, dict))
        item_ids = [item.identity for item in items]
        key = idempotency_key(data.supplier_id, item_ids, now.timestamp(), self.idempotency_window_seconds)
        replayed = self._replay(key, now.timestamp())
        if replayed is not None:
            logger.info("quotation_send_replayed", extra={"idempotency_key": key})
            observe_quotation_send("replayed")
            return replayed

        if not self.store.begin_send():
            observe_quotation_send("rejected")
            raise self._reject(SEND_IN_PROGRESS)
        try:
            result = self._send(data, items, item_ids, now)
        finally:
            self.store.end_send()
        self._remember(key, now.timestamp(), result)
        return result

    def _send(self, data: SendQuotationInput, items, item_ids, now: datetime) -> ServiceOutput:
        rejection = check_send_allowed(
            self.store.list(),
            supplier_id=data.supplier_id,
            supplier_email=data.supplier_email,
            item_ids=item_ids,
            now=now,
            duplicate_window_seconds=self.duplicate_window_seconds,
        )
        if rejection:
            observe_quotation_send("rejected")
            logger.info("quotation_send_rejected", extra={"reason": rejection, "supplier_id": data.supplier_id})
            raise self._reject(rejection)

        subject, body = build_quotation_draft(data.supplier_name, items, now=now, sender_name=self.sender_name)
        before = self.store.snapshot()
        quotation = Quotation(
            id=next_quotation_id(now, (entry.id for entry in before.quotations)),
            supplier_id=data.supplier_id,
            supplier_name=data.supplier_name,
            supplier_email=str(data.supplier_email or "").strip(),
            items=items,
            item_names=tuple(item.name for item in items),
            subject=data.subject or subject,
            body=data.body or body,
            status=PENDING,
            created_at=now,
            sent_at=now,
        )
        applied_version = self.store.apply(
            lambda current: (quotation,) + tuple(entry for entry in current if entry.id != quotation.id)
        )

        try:
            stored = self.document_store.sync_quotation(quotation.id, quotation.to_document())
        except DocumentStoreError as exc:
            self._rollback(quotation, before, applied_version)
            observe_quotation_send("rolled_back")
            logger.error("quotation_send_rolled_back", extra={"quotation_id": quotation.id, "details": str(exc)})
            self.event_bus.publish(QuotationSendRolledBack(quotation_id=quotation.id, reason=str(exc)))
            raise PersistenceError(details=str(exc)) from exc

        remote_id = str(stored.get("id") or quotation.id)
        warning = None
        try:
            self.email_transport.send_email(quotation.supplier_email, quotation.subject, quotation.body)
            updates = {"remote_id": remote_id, "email_sent_at": self.clock(), "email_error": None}
        except EmailTransportError as exc:
            warning = warning_message("email_send_failed", supplier_email=quotation.supplier_email)
            logger.warning("quotation_email_failed", extra={"quotation_id": quotation.id, "details": str(exc)})
            self.event_bus.publish(
                EmailDispatchFailed(quotation_id=quotation.id, supplier_email=quotation.supplier_email, reason=str(exc))
            )
            updates = {"remote_id": remote_id, "email_error": str(exc)}

        self.store.apply(
            lambda current: tuple(replace(entry, **updates) if entry.id == quotation.id else entry for entry in current)
        )
        final = self.store.get(quotation.id) or replace(quotation, **updates)
        self._sync_best_effort(final)

        email_delivered = warning is None
        observe_quotation_send("sent" if email_delivered else "sent_without_email")
        logger.info(
            "quotation_sent",
            extra={"quotation_id": final.id, "supplier_id": final.supplier_id, "email_delivered": email_delivered},
        )
        self.event_bus.publish(
            QuotationSent(
                quotation_id=final.id,
                supplier_name=final.supplier_name,
                supplier_email=final.supplier_email,
                email_delivered=email_delivered,
            )
        )
        return ServiceOutput(
            {
                "quotation": final.to_document(),
                "email_sent": email_delivered,
                "warning": warning,
                "message": success_message("quotation_sent", supplier_name=final.supplier_name),
            },
            201,
        )

    def _rollback(self, quotation: Quotation, before, applied_version: int) -> None:
        if self.store.restore(before, applied_version):
            return
        # outro escritor confirmou no meio: remove apenas o registro otimista
        self.store.apply(lambda current: tuple(entry for entry in current if entry.id != quotation.id))

    def _sync_best_effort(self, quotation: Quotation) -> None:
        try:
            self.document_store.sync_quotation(quotation.id, quotation.to_document())
        except DocumentStoreError as exc:
            logger.warning("quotation_remote_update_failed", extra={"quotation_id": quotation.id, "details": str(exc)})
