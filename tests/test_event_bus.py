import unittest

from suprimentos.contexts.sourcing.application.notifications import NotificationCenter
from suprimentos.core import (
    EmailDispatchFailed,
    EventBus,
    OrderCreated,
    OrdersDelivered,
    QuotationDeleted,
    QuotationSendRolledBack,
    QuotationSent,
    QuotationsAutoConfirmed,
    QuotationsQuoted,
    RemoteSyncFailed,
)
from suprimentos.observability import metrics_snapshot, reset_metrics_for_tests


class EventBusTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()

    def tearDown(self) -> None:
        reset_metrics_for_tests()

    def test_handler_execution_order_is_predictable(self) -> None:
        bus = EventBus()
        execution_trace = []

        bus.subscribe(QuotationSent, lambda _event: execution_trace.append("first"))
        bus.subscribe(QuotationSent, lambda _event: execution_trace.append("second"))
        bus.publish(QuotationSent(quotation_id="1", supplier_name="Moinho Sul"))

        self.assertEqual(execution_trace, ["first", "second"])

    def test_failing_handler_does_not_block_the_next_one(self) -> None:
        bus = EventBus()
        received = []

        def broken_handler(_event):
            raise RuntimeError("handler quebrado")

        bus.subscribe(QuotationsQuoted, broken_handler)
        bus.subscribe(QuotationsQuoted, received.append)
        with self.assertLogs("suprimentos.events", level="ERROR"):
            bus.publish(QuotationsQuoted(quotation_ids=("1", "2")))

        self.assertEqual(len(received), 1)
        self.assertEqual(received[0].count, 2)

    def test_handlers_only_receive_their_event_type(self) -> None:
        bus = EventBus()
        received = []
        bus.subscribe(OrdersDelivered, received.append)
        bus.publish(QuotationsAutoConfirmed(quotation_ids=("1",)))
        self.assertEqual(received, [])

    def test_published_events_are_counted(self) -> None:
        bus = EventBus()
        bus.publish(QuotationSent(quotation_id="1"))
        bus.publish(QuotationSent(quotation_id="2"))
        events = metrics_snapshot()["domain_events"]
        self.assertEqual(events["emitted_total"], 2)
        self.assertEqual(events["by_type"], {"QuotationSent": 2})

    def test_event_ids_and_timestamps_are_normalized(self) -> None:
        event = QuotationSent(quotation_id="1", event_id="  ")
        self.assertTrue(event.event_id)
        self.assertIsNotNone(event.occurred_at.tzinfo)


class NotificationCenterTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self.bus = EventBus()
        self.center = NotificationCenter().attach(self.bus)

    def tearDown(self) -> None:
        reset_metrics_for_tests()

    def test_events_become_user_messages_newest_first(self) -> None:
        self.bus.publish(QuotationSent(quotation_id="1", supplier_name="Moinho Sul"))
        self.bus.publish(OrderCreated(order_id="order_1", quotation_id="1", supplier_name="Moinho Sul"))
        self.bus.publish(OrdersDelivered(quotation_ids=("1", "2")))

        entries = self.center.list()
        self.assertEqual([entry.kind for entry in entries], ["orders_delivered", "order_created", "quotation_sent"])
        self.assertEqual(entries[2].message, "Cotacao enviada para Moinho Sul.")
        self.assertEqual(entries[1].message, "Pedido order_1 criado para Moinho Sul.")
        self.assertIn("2 pedido(s)", entries[0].message)
        self.assertEqual(entries[0].details["quotation_ids"], ["1", "2"])
        self.assertEqual(metrics_snapshot()["notifications"], {"order_created": 1, "orders_delivered": 1, "quotation_sent": 1})

    def test_undelivered_email_only_reports_the_failure(self) -> None:
        self.bus.publish(EmailDispatchFailed(quotation_id="1", supplier_email="vendas@moinhosul.com.br", reason="401"))
        self.bus.publish(QuotationSent(quotation_id="1", email_delivered=False))

        entries = self.center.list()
        self.assertEqual([entry.kind for entry in entries], ["email_send_failed"])
        self.assertEqual(entries[0].level, "warning")
        self.assertIn("vendas@moinhosul.com.br", entries[0].message)

    def test_failures_map_to_error_and_warning_levels(self) -> None:
        self.bus.publish(QuotationSendRolledBack(quotation_id="1", reason="HTTP 503"))
        self.bus.publish(QuotationDeleted(quotation_id="2", remote_deleted=False))
        self.bus.publish(RemoteSyncFailed(quotation_id="3", operation="confirm"))

        kinds = [(entry.kind, entry.level) for entry in self.center.list()]
        self.assertEqual(
            kinds,
            [("remote_sync_failed", "warning"), ("remote_delete_failed", "warning"), ("persistence_failed", "error")],
        )

    def test_history_is_bounded(self) -> None:
        center = NotificationCenter(limit=2).attach(self.bus)
        for quotation_id in ("1", "2", "3"):
            self.bus.publish(QuotationDeleted(quotation_id=quotation_id))

        self.assertEqual([entry.details["quotation_id"] for entry in center.list()], ["3", "2"])
        self.assertEqual(len(center.list(limit=1)), 1)

    def test_to_dict_exposes_wire_fields(self) -> None:
        notification = self.center.push("quotation_deleted", "success", "Cotacao removida.", quotation_id="9")
        payload = notification.to_dict()
        self.assertEqual(set(payload), {"id", "kind", "level", "message", "details", "createdAt"})
        self.assertEqual(payload["details"], {"quotation_id": "9"})

    def test_clear_empties_history(self) -> None:
        self.bus.publish(QuotationsQuoted(quotation_ids=("1",)))
        self.center.clear()
        self.assertEqual(self.center.list(), [])


if __name__ == "__main__":
    unittest.main()
