import unittest

from suprimentos.contexts.sourcing.application.notifications import NotificationCenter
from suprimentos.contexts.sourcing.application.replenishment import StockReplenishmentWatcher
from suprimentos.contexts.sourcing.application.store import QuotationStore
from suprimentos.contexts.sourcing.domain.status import CONFIRMED, DELIVERED, QUOTED
from suprimentos.contexts.sourcing.domain.stock import (
    STOCK_CRITICAL,
    STOCK_OK,
    STOCK_WARNING,
    alerts_by_supplier,
    dashboard_stats,
    inventory_fingerprint,
    promote_replenished,
    stock_status,
    suggested_quantity,
)
from suprimentos.contexts.sourcing.infrastructure.document_store import DocumentStoreError, InMemoryDocumentStore
from suprimentos.contexts.sourcing.infrastructure.local_cache import MemoryKeyValueCache, QuotationCache
from suprimentos.core import EventBus, OrdersDelivered, RemoteSyncFailed
from tests.helpers.factories import FrozenClock, at, inventory_item, item, quotation, supplier


class _RejectingDocumentStore(InMemoryDocumentStore):
    def sync_quotation(self, quotation_id, fields):
        raise DocumentStoreError("HTTP 500")


class StockClassificationTest(unittest.TestCase):
    def test_thresholds(self) -> None:
        self.assertEqual(stock_status(inventory_item("farinha", 4, 5)), STOCK_CRITICAL)
        self.assertEqual(stock_status(inventory_item("farinha", 5, 5)), STOCK_WARNING)
        self.assertEqual(stock_status(inventory_item("farinha", 6, 5)), STOCK_WARNING)
        self.assertEqual(stock_status(inventory_item("farinha", 6.1, 5)), STOCK_OK)
        self.assertEqual(stock_status(inventory_item("farinha", 0, 0)), STOCK_OK)

    def test_current_stock_counts_packages(self) -> None:
        packed = inventory_item("ovos", 12, 30, package_count=2)
        self.assertEqual(packed.current_stock, 24.0)
        self.assertEqual(stock_status(packed), STOCK_CRITICAL)

    def test_suggested_quantity_fills_up_to_max(self) -> None:
        self.assertEqual(suggested_quantity(inventory_item("farinha", 4, 5, maximum=50)), 46.0)
        self.assertEqual(suggested_quantity(inventory_item("farinha", 60, 5, maximum=50)), 0.0)


class AlertsAndStatsTest(unittest.TestCase):
    def setUp(self) -> None:
        self.inventory = [
            inventory_item("farinha", 2, 10),
            inventory_item("acucar", 11, 10),
            inventory_item("sal", 50, 10),
            inventory_item("leite", 1, 10),
            inventory_item("ovos", 0, 10),
        ]
        self.suppliers = [
            supplier("sup-2", "Zelo Graos", "zelo@graos.com.br", "acucar"),
            supplier("sup-1", "Moinho Sul", "vendas@moinhosul.com.br", "farinha", "sal", "ovos"),
        ]

    def test_alerts_group_by_supplier_and_skip_requested_items(self) -> None:
        active = [quotation("1", status=QUOTED, items=(item("ovos"),))]
        alerts = alerts_by_supplier(self.inventory, self.suppliers, active)

        self.assertEqual([alert.supplier.id for alert in alerts], ["sup-1", "sup-2"])
        self.assertEqual([entry.item.id for entry in alerts[0].items], ["farinha"])
        self.assertTrue(alerts[0].has_critical)
        self.assertEqual([entry.status for entry in alerts[1].items], [STOCK_WARNING])
        self.assertEqual(alerts[0].items[0].suggested_quantity, 98.0)

        payload = alerts[0].to_dict()
        self.assertEqual(payload["supplier"]["id"], "sup-1")
        self.assertEqual(payload["items"][0]["stockStatus"], STOCK_CRITICAL)

    def test_delivered_quotations_do_not_hide_alerts(self) -> None:
        delivered = [quotation("1", status=DELIVERED, items=(item("ovos"),))]
        alerts = alerts_by_supplier(self.inventory, self.suppliers, delivered)
        self.assertEqual([entry.item.id for entry in alerts[0].items], ["farinha", "ovos"])

    def test_item_linked_by_supplier_id(self) -> None:
        inventory = [inventory_item("fermento", 0, 2, supplier_id="sup-2")]
        alerts = alerts_by_supplier(inventory, self.suppliers, [])
        self.assertEqual([alert.supplier.id for alert in alerts], ["sup-2"])

    def test_dashboard_stats(self) -> None:
        stats = dashboard_stats(self.inventory, self.suppliers, [])
        self.assertEqual(stats["totalItems"], 5)
        self.assertEqual(stats["critical"], 3)
        self.assertEqual(stats["warning"], 1)
        self.assertEqual(stats["ok"], 1)
        self.assertEqual(stats["suppliersWithAlerts"], 2)
        self.assertEqual(stats["healthScore"], 35)

    def test_health_score_is_never_negative(self) -> None:
        inventory = [inventory_item(f"item-{index}", 0, 10) for index in range(8)]
        self.assertEqual(dashboard_stats(inventory, [], [])["healthScore"], 0)

    def test_fingerprint_ignores_order_and_tracks_stock(self) -> None:
        first = inventory_fingerprint(self.inventory)
        self.assertEqual(first, inventory_fingerprint(list(reversed(self.inventory))))
        changed = [inventory_item("farinha", 3, 10)] + self.inventory[1:]
        self.assertNotEqual(first, inventory_fingerprint(changed))


class PromoteReplenishedTest(unittest.TestCase):
    def test_confirmed_quotation_with_restocked_items_is_delivered(self) -> None:
        confirmed = quotation("1", status=CONFIRMED, order_id="ord-1", items=(item("farinha"), item("sumiu")))
        still_low = quotation("2", status=CONFIRMED, supplier_id="sup-2", items=(item("ovos"),))
        quoted = quotation("3", status=QUOTED, supplier_id="sup-3", items=(item("farinha"),))
        empty = quotation("4", status=CONFIRMED, supplier_id="sup-4", items=())
        inventory = [inventory_item("farinha", 10, 10), inventory_item("ovos", 1, 10)]

        updated, promoted = promote_replenished([confirmed, still_low, quoted, empty], inventory, now=at(90))

        self.assertEqual(promoted, ("1",))
        self.assertEqual(updated[0].status, DELIVERED)
        self.assertEqual(updated[0].delivered_at, at(90))
        self.assertIs(updated[1], still_low)
        self.assertIs(updated[2], quoted)
        self.assertIs(updated[3], empty)

    def test_empty_inventory_delivers_nothing(self) -> None:
        confirmed = quotation("1", status=CONFIRMED, order_id="ord-1")
        updated, promoted = promote_replenished([confirmed], [], now=at(90))
        self.assertEqual(promoted, ())
        self.assertIs(updated[0], confirmed)


class StockReplenishmentWatcherTest(unittest.TestCase):
    def setUp(self) -> None:
        self.store = QuotationStore(QuotationCache(MemoryKeyValueCache(), "padoca_sent_emails"))
        self.document_store = InMemoryDocumentStore()
        self.bus = EventBus()
        self.notifications = NotificationCenter().attach(self.bus)
        self.clock = FrozenClock(at(120))
        confirmed = quotation("1", remote_id="doc-1", status=CONFIRMED, order_id="ord-1", items=(item("farinha"),))
        self.store.apply(lambda _current: (confirmed,))
        self.document_store.sync_quotation("doc-1", confirmed.to_document())
        self.document_store.upsert_order("ord-1", {"quotationId": "1", "status": "confirmed"})

    def _watcher(self, document_store=None) -> StockReplenishmentWatcher:
        return StockReplenishmentWatcher(self.store, document_store or self.document_store, self.bus, clock=self.clock)

    def test_restock_delivers_and_syncs_remote(self) -> None:
        delivered = self._watcher().on_inventory_changed([inventory_item("farinha", 20, 10)])

        self.assertEqual(delivered, ("1",))
        self.assertEqual(self.store.get("1").status, DELIVERED)
        self.assertEqual(self.store.get("1").delivered_at, at(120))
        remote = {doc["id"]: doc for doc in self.document_store.get_quotations()}
        self.assertEqual(remote["doc-1"]["status"], "delivered")
        self.assertEqual(self.document_store.get_orders()[0]["status"], "delivered")
        self.assertEqual([entry.kind for entry in self.notifications.list()], ["orders_delivered"])

    def test_empty_inventory_keeps_open_orders(self) -> None:
        watcher = self._watcher()

        self.assertEqual(watcher.on_inventory_changed([]), ())
        self.assertEqual(watcher.run([]), ())

        self.assertEqual(self.store.get("1").status, CONFIRMED)
        self.assertEqual(self.document_store.get_orders()[0]["status"], "confirmed")
        self.assertEqual(self.notifications.list(), [])
        self.assertEqual(watcher.on_inventory_changed([inventory_item("farinha", 20, 10)]), ("1",))

    def test_unchanged_inventory_does_not_rerun(self) -> None:
        watcher = self._watcher()
        low = [inventory_item("farinha", 2, 10)]
        self.assertEqual(watcher.on_inventory_changed(low), ())
        self.assertEqual(watcher.on_inventory_changed(list(low)), ())
        self.assertEqual(watcher.on_inventory_changed([inventory_item("farinha", 12, 10)]), ("1",))

    def test_remote_failure_is_reported_but_local_delivery_stands(self) -> None:
        events = []
        self.bus.subscribe(RemoteSyncFailed, events.append)
        self.bus.subscribe(OrdersDelivered, events.append)

        delivered = self._watcher(_RejectingDocumentStore()).run([inventory_item("farinha", 20, 10)])

        self.assertEqual(delivered, ("1",))
        self.assertEqual(self.store.get("1").status, DELIVERED)
        self.assertEqual([type(event) for event in events], [RemoteSyncFailed, OrdersDelivered])
        self.assertEqual(events[0].operation, "deliver")


if __name__ == "__main__":
    unittest.main()
