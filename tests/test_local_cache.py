import json
import unittest
from datetime import datetime, timezone

from suprimentos.contexts.sourcing.domain.mapping import (
    parse_timestamp,
    quotation_from_cache,
    quotation_from_remote,
    recover_legacy_items,
)
from suprimentos.contexts.sourcing.domain.status import AWAITING, PENDING, QUOTED
from suprimentos.contexts.sourcing.infrastructure.local_cache import (
    JsonListCache,
    LocalCacheError,
    MemoryKeyValueCache,
    QuotationCache,
    SqlKeyValueCache,
)
from suprimentos.db import create_schema, open_database
from tests.helpers.factories import at, item, quotation
from tests.helpers.temp_db import TempDbSandbox, read_cache_value


LEGACY_BODY = (
    "Prezado(a) Moinho Sul,\n\n"
    "Solicitamos cotacao para os seguintes itens:\n"
    "• Farinha de trigo: 25 kg\n"
    "• Fermento: 1,5 kg\n"
    "- Ovos: 30 un\n\n"
    "Atenciosamente,\nEquipe Padoca"
)


class TimestampParsingTest(unittest.TestCase):
    def test_accepts_remote_formats(self) -> None:
        expected = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
        self.assertEqual(parse_timestamp("2026-10-18T12:00:00Z"), expected)
        self.assertEqual(parse_timestamp("2026-10-18T09:00:00-03:00"), expected)
        self.assertEqual(parse_timestamp(expected.timestamp()), expected)
        self.assertEqual(parse_timestamp(int(expected.timestamp() * 1000)), expected)
        self.assertEqual(parse_timestamp({"seconds": expected.timestamp()}), expected)
        self.assertEqual(parse_timestamp(datetime(2026, 10, 18, 12, 0)), expected)

    def test_invalid_values_become_none(self) -> None:
        for raw in (None, "", "ontem", True, {"nanos": 1}):
            with self.subTest(raw=raw):
                self.assertIsNone(parse_timestamp(raw))


class LegacyRecoveryTest(unittest.TestCase):
    def test_recovers_items_from_body_lines(self) -> None:
        items = recover_legacy_items("1700", LEGACY_BODY, [])
        self.assertEqual([entry.name for entry in items], ["Farinha de trigo", "Fermento", "Ovos"])
        self.assertEqual([entry.id for entry in items], ["legacy-1700-0", "legacy-1700-1", "legacy-1700-2"])
        self.assertEqual(items[0].quantity_to_order, 25.0)
        self.assertEqual(items[1].quantity_to_order, 1.5)
        self.assertEqual(items[2].unit, "un")
        self.assertEqual(items[0].current_stock, 0.0)

    def test_falls_back_to_item_names(self) -> None:
        items = recover_legacy_items("1700", "Sem lista no corpo.", ["Leite", " ", "Manteiga"])
        self.assertEqual([entry.id for entry in items], ["legacy-name-1700-0", "legacy-name-1700-1"])
        self.assertEqual([entry.name for entry in items], ["Leite", "Manteiga"])
        self.assertEqual(items[0].quantity_to_order, 0.0)
        self.assertEqual(items[0].unit, "")

    def test_nothing_to_recover(self) -> None:
        self.assertEqual(recover_legacy_items("1700", None, []), ())

    def test_legacy_cache_record_is_mapped(self) -> None:
        record = {
            "id": "1700",
            "to": "Vendas <vendas@moinhosul.com.br>",
            "supplier": "Moinho Sul",
            "body": LEGACY_BODY,
            "status": "sent",
            "date": "2026-10-18T12:00:00Z",
        }
        result = quotation_from_cache(record)
        self.assertEqual(result.status, PENDING)
        self.assertEqual(result.supplier_name, "Moinho Sul")
        self.assertEqual(len(result.items), 3)
        self.assertEqual(result.created_at, at(0))
        self.assertEqual(result.sent_at, at(0))

    def test_status_is_derived_when_missing(self) -> None:
        with_reply = quotation_from_cache({"id": "1", "replyBody": "Segue cotacao."})
        with_price = quotation_from_cache({"id": "2", "items": [{"id": "x", "name": "X", "unitPrice": "R$ 4,50"}]})
        self.assertEqual(with_reply.status, AWAITING)
        self.assertEqual(with_price.status, QUOTED)
        self.assertEqual(with_price.items[0].quoted_unit_price, 4.5)

    def test_remote_document_keeps_local_id(self) -> None:
        result = quotation_from_remote({"localId": "1700", "status": "quoted"}, "doc-1")
        self.assertEqual(result.id, "1700")
        self.assertEqual(result.remote_id, "doc-1")
        self.assertEqual(result.status, QUOTED)
        self.assertIsNone(quotation_from_remote({"status": "quoted"}))


class QuotationCacheTest(unittest.TestCase):
    def test_corrupted_or_unexpected_payload_loads_empty(self) -> None:
        for raw in ("{nao e json", "", "   ", "42", json.dumps("texto")):
            with self.subTest(raw=raw):
                cache = QuotationCache(MemoryKeyValueCache({"k": raw}), "k")
                self.assertEqual(cache.load(), [])
        self.assertEqual(QuotationCache(MemoryKeyValueCache(), "k").load(), [])

    def test_wrapped_payload_and_invalid_entries(self) -> None:
        raw = json.dumps({"quotations": [{"id": "1", "status": "quoted"}, "lixo", {"status": "sem id"}]})
        loaded = QuotationCache(MemoryKeyValueCache({"k": raw}), "k").load()
        self.assertEqual([entry.id for entry in loaded], ["1"])

    def test_duplicates_are_removed_on_load(self) -> None:
        raw = json.dumps(
            [
                {"id": "1", "remoteId": "r1", "createdAt": "2026-10-18T12:00:00Z"},
                {"id": "2", "remoteId": "r1", "createdAt": "2026-10-18T12:05:00Z"},
            ]
        )
        loaded = QuotationCache(MemoryKeyValueCache({"k": raw}), "k").load()
        self.assertEqual([entry.id for entry in loaded], ["2"])

    def test_saved_list_loads_back(self) -> None:
        cache = QuotationCache(MemoryKeyValueCache(), "k")
        original = [
            quotation("1", remote_id="r1", items=(item("farinha", quoted_unit_price=4.2),), status=QUOTED, quoted_total=42.0),
            quotation("2", supplier_id="sup-2", status=AWAITING, reply_body="Amanha respondo."),
        ]
        cache.save(original)
        self.assertEqual(cache.load(), original)

    def test_write_raw_none_deletes_key(self) -> None:
        kv = MemoryKeyValueCache({"k": "[]"})
        QuotationCache(kv, "k").write_raw(None)
        self.assertIsNone(kv.get("k"))

    def test_json_list_cache_tolerates_wrappers(self) -> None:
        kv = MemoryKeyValueCache({"inv": json.dumps({"items": [{"id": "a"}, 3]}), "bad": "{"})
        self.assertEqual(JsonListCache(kv, "inv").load(), [{"id": "a"}])
        self.assertEqual(JsonListCache(kv, "bad").load(), [])


class SqlKeyValueCacheTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="local_cache")
        with open_database(self._temp_db.db_path) as db:
            create_schema(db)
        self.kv = SqlKeyValueCache(self._temp_db.db_path)

    def tearDown(self) -> None:
        self._temp_db.cleanup()

    def test_set_get_overwrite_delete(self) -> None:
        self.assertIsNone(self.kv.get("padoca_sent_emails"))
        self.kv.set("padoca_sent_emails", "[]")
        self.kv.set("padoca_sent_emails", '[{"id": "1"}]')
        self.assertEqual(self.kv.get("padoca_sent_emails"), '[{"id": "1"}]')
        self.assertEqual(read_cache_value(self._temp_db.db_path, "padoca_sent_emails"), '[{"id": "1"}]')
        self.kv.delete("padoca_sent_emails")
        self.assertIsNone(self.kv.get("padoca_sent_emails"))

    def test_missing_table_raises_local_cache_error(self) -> None:
        other = TempDbSandbox(prefix="local_cache_empty")
        try:
            with self.assertRaises(LocalCacheError):
                SqlKeyValueCache(other.db_path).get("qualquer")
        finally:
            other.cleanup()


if __name__ == "__main__":
    unittest.main()
