import unittest

from suprimentos.contexts.sourcing.domain.deduplication import OLDEST, deduplicate
from suprimentos.contexts.sourcing.domain.identity import (
    COMPOSITE_TIER,
    EXACT_EMAIL,
    ID_TIER,
    REMOTE_ID_TIER,
    SAME_DOMAIN,
    SUBSTRING_EMAIL,
    composite_key,
    email_match_tier,
    identity_keys,
    normalize_email,
    resolve_identity,
)
from tests.helpers.factories import at, item, quotation


class IdentityTest(unittest.TestCase):
    def test_identity_keys_order_and_format(self) -> None:
        record = quotation("1700", remote_id="doc-9", items=(item("farinha"), item("acucar")))
        self.assertEqual(
            identity_keys(record),
            ["id:doc-9", "id:1700", "comp:sup-1_acucar,farinha"],
        )

    def test_composite_requires_supplier_and_items(self) -> None:
        self.assertIsNone(composite_key(quotation("1", supplier_id=None)))
        self.assertIsNone(composite_key(quotation("2", items=())))

    def test_resolve_identity_tiers(self) -> None:
        self.assertEqual(
            resolve_identity(quotation("1", remote_id="r1"), quotation("2", remote_id="r1")),
            REMOTE_ID_TIER,
        )
        self.assertEqual(resolve_identity(quotation("1"), quotation("9", remote_id="1")), ID_TIER)
        self.assertEqual(resolve_identity(quotation("1"), quotation("2")), COMPOSITE_TIER)
        self.assertIsNone(resolve_identity(quotation("1"), quotation("2", supplier_id="sup-2")))

    def test_email_normalization_and_tiers(self) -> None:
        self.assertEqual(normalize_email('"Moinho Sul" <Vendas@MoinhoSul.com.br>'), "vendas@moinhosul.com.br")
        self.assertEqual(email_match_tier("vendas@moinhosul.com.br", "Vendas <VENDAS@moinhosul.com.br>"), EXACT_EMAIL)
        self.assertEqual(email_match_tier("vendas@moinhosul.com.br", "joao@moinhosul.com.br"), SAME_DOMAIN)
        self.assertEqual(email_match_tier("moinho@gmail.com", "moinho@gmail.com.br"), SUBSTRING_EMAIL)
        self.assertIsNone(email_match_tier("ana@gmail.com", "bruno@gmail.com"))
        self.assertIsNone(email_match_tier("", "vendas@moinhosul.com.br"))


class DeduplicateTest(unittest.TestCase):
    def test_keeps_newest_record_for_shared_remote_id(self) -> None:
        older = quotation("1", remote_id="r1", created_at=at(0))
        newer = quotation("2", remote_id="r1", created_at=at(5), supplier_id="sup-2")
        result = deduplicate([older, newer])
        self.assertEqual([record.id for record in result], ["2"])

    def test_oldest_priority_keeps_first_sent(self) -> None:
        older = quotation("1", remote_id="r1", created_at=at(0))
        newer = quotation("2", remote_id="r1", created_at=at(5))
        result = deduplicate([newer, older], prioritize=OLDEST)
        self.assertEqual([record.id for record in result], ["1"])

    def test_local_id_collides_with_remote_document_id(self) -> None:
        local = quotation("1700", created_at=at(0))
        remote = quotation("1700", remote_id="1700", created_at=at(0))
        result = deduplicate([local, remote])
        self.assertEqual(len(result), 1)
        self.assertEqual(result[0].remote_id, "1700")

    def test_groups_are_transitive(self) -> None:
        first = quotation("a", remote_id="r1", created_at=at(0))
        second = quotation("b", remote_id="r1", supplier_id="sup-2", items=(item("acucar"),), created_at=at(1))
        third = quotation("c", supplier_id="sup-2", items=(item("acucar"),), created_at=at(2))
        result = deduplicate([first, second, third])
        self.assertEqual([record.id for record in result], ["c"])

    def test_tie_prefers_remote_id_then_first_position(self) -> None:
        plain = quotation("1", created_at=at(0))
        synced = quotation("2", remote_id="r2", created_at=at(0))
        self.assertEqual(deduplicate([plain, synced])[0].id, "2")

        first = quotation("1", created_at=at(0))
        second = quotation("2", created_at=at(0))
        self.assertEqual(deduplicate([first, second])[0].id, "1")

    def test_record_with_time_beats_record_without(self) -> None:
        undated = quotation("1", created_at=None, sent_at=None)
        dated = quotation("2", created_at=at(-600))
        self.assertEqual(deduplicate([undated, dated])[0].id, "2")

    def test_output_keeps_input_order_and_unique_keys(self) -> None:
        records = [
            quotation("1", supplier_id="sup-1", created_at=at(0)),
            quotation("2", supplier_id="sup-2", created_at=at(1)),
            quotation("3", supplier_id="sup-1", created_at=at(2)),
            quotation("4", supplier_id="sup-3", created_at=at(3)),
        ]
        result = deduplicate(records)
        self.assertEqual([record.id for record in result], ["2", "3", "4"])

        seen = set()
        for record in result:
            for key in identity_keys(record):
                self.assertNotIn(key, seen)
                seen.add(key)

    def test_is_idempotent_and_never_creates_records(self) -> None:
        records = [
            quotation("1", remote_id="r1", created_at=at(0)),
            quotation("2", remote_id="r1", created_at=at(1)),
            quotation("3", supplier_id="sup-9", created_at=at(2)),
        ]
        once = deduplicate(records)
        self.assertEqual(deduplicate(once), once)
        for record in once:
            self.assertIn(record, records)

    def test_small_inputs_pass_through(self) -> None:
        self.assertEqual(deduplicate([]), [])
        single = quotation("1")
        self.assertEqual(deduplicate([single]), [single])


if __name__ == "__main__":
    unittest.main()
