import unittest

from suprimentos.contexts.sourcing.application.send_service import QuotationSendService
from suprimentos.contexts.sourcing.application.store import SEND_IDLE, QuotationStore
from suprimentos.contexts.sourcing.domain.status import PENDING
from suprimentos.contexts.sourcing.infrastructure.document_store import DocumentStoreError, InMemoryDocumentStore
from suprimentos.contexts.sourcing.infrastructure.email_transport import MockEmailTransport
from suprimentos.contexts.sourcing.infrastructure.local_cache import MemoryKeyValueCache, QuotationCache
from suprimentos.core import EmailDispatchFailed, EventBus, QuotationSendRolledBack, QuotationSent
from suprimentos.domain.contracts import SendQuotationInput
from suprimentos.errors import PersistenceError, ValidationError
from suprimentos.observability import metrics_snapshot, reset_metrics_for_tests
from tests.helpers.factories import FrozenClock, item, quotation


CACHE_KEY = "padoca_sent_emails"


class _FailingDocumentStore(InMemoryDocumentStore):
    def __init__(self) -> None:
        super().__init__()
        self.fail = True
        self.before_failure = None

    def sync_quotation(self, quotation_id, fields):
        if self.fail:
            if self.before_failure is not None:
                self.before_failure()
            raise DocumentStoreError("HTTP 503: repositorio indisponivel")
        return super().sync_quotation(quotation_id, fields)


def _input(**overrides) -> SendQuotationInput:
    data = {
        "supplier_id": "sup-1",
        "supplier_name": "Moinho Sul",
        "supplier_email": "vendas@moinhosul.com.br",
        "items": [{"id": "farinha", "name": "Farinha", "unit": "kg", "quantityToOrder": 25}],
    }
    data.update(overrides)
    return SendQuotationInput(**data)


class SendPipelineTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self.kv = MemoryKeyValueCache()
        self.store = QuotationStore(QuotationCache(self.kv, CACHE_KEY))
        self.document_store = InMemoryDocumentStore()
        self.transport = MockEmailTransport()
        self.bus = EventBus()
        self.events = []
        for event_type in (QuotationSent, EmailDispatchFailed, QuotationSendRolledBack):
            self.bus.subscribe(event_type, self.events.append)
        self.clock = FrozenClock()

    def tearDown(self) -> None:
        reset_metrics_for_tests()

    def _service(self, document_store=None) -> QuotationSendService:
        return QuotationSendService(
            self.store,
            document_store or self.document_store,
            self.transport,
            self.bus,
            clock=self.clock,
            sender_name="Padoca Centro",
        )

    def _seed(self, *records) -> None:
        self.store.apply(lambda _current: records)

    def test_send_persists_then_dispatches_email(self) -> None:
        result = self._service().send_quotation(_input())

        self.assertEqual(result.status_code, 201)
        self.assertTrue(result.payload["email_sent"])
        self.assertIsNone(result.payload["warning"])

        stored = self.store.list()
        self.assertEqual(len(stored), 1)
        sent = stored[0]
        self.assertEqual(sent.status, PENDING)
        self.assertEqual(sent.id, str(int(self.clock.now.timestamp() * 1000)))
        self.assertEqual(sent.remote_id, sent.id)
        self.assertEqual(sent.email_sent_at, self.clock.now)
        self.assertIsNone(sent.email_error)

        remote = self.document_store.get_quotations()
        self.assertEqual([doc["id"] for doc in remote], [sent.id])
        self.assertEqual(remote[0]["emailSentAt"], result.payload["quotation"]["emailSentAt"])

        self.assertEqual(len(self.transport.outbox), 1)
        message = self.transport.outbox[0]
        self.assertEqual(message.to, "vendas@moinhosul.com.br")
        self.assertEqual(message.subject, "Solicitacao de Cotacao - 18/10/2026")
        self.assertIn("• Farinha: 25 kg", message.body)

        self.assertEqual([type(event) for event in self.events], [QuotationSent])
        self.assertEqual(self.store.send_status, SEND_IDLE)
        self.assertEqual(metrics_snapshot()["quotation_send"], {"sent": 1})

    def test_new_quotation_is_prepended(self) -> None:
        self._seed(quotation("old", supplier_id="sup-9", supplier_email="x@graos.com.br", items=(item("sal"),)))
        self._service().send_quotation(_input())
        self.assertEqual([entry.id for entry in self.store.list()][1:], ["old"])

    def test_explicit_subject_and_body_are_kept(self) -> None:
        self._service().send_quotation(_input(subject="Pedido urgente", body="Precisamos de farinha hoje."))
        self.assertEqual(self.transport.outbox[0].subject, "Pedido urgente")
        self.assertEqual(self.store.list()[0].body, "Precisamos de farinha hoje.")

    def test_persist_failure_restores_exact_snapshot(self) -> None:
        self._seed(quotation("old", supplier_id="sup-9", supplier_email="x@graos.com.br", items=(item("sal"),)))
        raw_before = self.kv.get(CACHE_KEY)
        listed_before = self.store.list()

        with self.assertRaises(PersistenceError) as ctx:
            self._service(_FailingDocumentStore()).send_quotation(_input())

        self.assertIn("HTTP 503", ctx.exception.details)
        self.assertEqual(self.kv.get(CACHE_KEY), raw_before)
        self.assertEqual(self.store.list(), listed_before)
        self.assertEqual(self.transport.outbox, [])
        self.assertEqual([type(event) for event in self.events], [QuotationSendRolledBack])
        self.assertEqual(self.store.send_status, SEND_IDLE)
        self.assertEqual(metrics_snapshot()["quotation_send"], {"rolled_back": 1})

    def test_persist_failure_after_concurrent_write_removes_only_optimistic_record(self) -> None:
        failing = _FailingDocumentStore()
        concurrent = quotation("from-listener", supplier_id="sup-7", supplier_email="y@leite.com.br", items=(item("leite"),))
        failing.before_failure = lambda: self.store.apply(lambda current: current + (concurrent,))

        with self.assertRaises(PersistenceError):
            self._service(failing).send_quotation(_input())

        self.assertEqual([entry.id for entry in self.store.list()], ["from-listener"])
        self.assertEqual([entry.id for entry in QuotationCache(self.kv, CACHE_KEY).load()], ["from-listener"])

    def test_email_failure_keeps_quotation_with_warning(self) -> None:
        self.transport.disconnect()
        result = self._service().send_quotation(_input())

        self.assertEqual(result.status_code, 201)
        self.assertFalse(result.payload["email_sent"])
        self.assertIn("vendas@moinhosul.com.br", result.payload["warning"])
        sent = self.store.list()[0]
        self.assertIsNotNone(sent.email_error)
        self.assertIsNone(sent.email_sent_at)
        self.assertEqual(len(self.document_store.get_quotations()), 1)
        self.assertEqual([type(event) for event in self.events], [EmailDispatchFailed, QuotationSent])
        self.assertFalse(self.events[-1].email_delivered)

    def test_rejection_leaves_state_untouched(self) -> None:
        self._seed(quotation("1", status=PENDING, items=(item("ovos"),)))
        version = self.store.version

        with self.assertRaises(ValidationError) as ctx:
            self._service().send_quotation(_input())

        self.assertEqual(ctx.exception.code, "supplier_has_pending_quotation")
        self.assertEqual(ctx.exception.http_status, 409)
        self.assertEqual(self.store.version, version)
        self.assertEqual(self.document_store.get_quotations(), [])
        self.assertEqual(self.store.send_status, SEND_IDLE)

    def test_invalid_input_is_a_bad_request(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._service().send_quotation(_input(supplier_email=""))
        self.assertEqual(ctx.exception.code, "supplier_email_required")
        self.assertEqual(ctx.exception.http_status, 400)

    def test_send_in_flight_is_rejected(self) -> None:
        self.assertTrue(self.store.begin_send())
        with self.assertRaises(ValidationError) as ctx:
            self._service().send_quotation(_input())
        self.assertEqual(ctx.exception.code, "send_in_progress")
        self.assertEqual(ctx.exception.http_status, 409)

        self.store.end_send()
        self.assertEqual(self._service().send_quotation(_input()).status_code, 201)

    def test_duplicate_invocation_replays_first_result(self) -> None:
        service = self._service()
        first = service.send_quotation(_input())
        self.clock.advance(seconds=5)
        second = service.send_quotation(_input(items=[{"id": "farinha", "name": "Farinha", "quantity": 25}]))

        self.assertIs(second, first)
        self.assertEqual(len(self.store.list()), 1)
        self.assertEqual(len(self.transport.outbox), 1)
        self.assertEqual(metrics_snapshot()["quotation_send"], {"replayed": 1, "sent": 1})

    def test_after_idempotency_window_duplicate_rule_applies(self) -> None:
        service = self._service()
        service.send_quotation(_input())
        self.clock.advance(minutes=10)

        with self.assertRaises(ValidationError) as ctx:
            service.send_quotation(_input())
        self.assertEqual(ctx.exception.code, "duplicate_recent_quotation")


if __name__ == "__main__":
    unittest.main()
