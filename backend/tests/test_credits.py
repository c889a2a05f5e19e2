import unittest
from unittest import mock

from support import balance_of, memory_session_factory, seed_balance, transactions_of

from videogen.models.credit_balance import CreditBalance
from videogen.models.credit_transaction import TransactionType
from videogen.services.credits import (
    VEO_FAST_MODEL,
    VEO_STANDARD_MODEL,
    allocate_plan_credits,
    chargeable_translations,
    consume_credits,
    get_balance,
    grant_credits,
    grant_signup_bonus,
    image_credit_cost,
    list_transactions,
    refund_credits,
    translation_credit_cost,
    veo_credit_cost,
)


class TestConsumeCredits(unittest.TestCase):
    def setUp(self):
        self.db = memory_session_factory()()

    def tearDown(self):
        self.db.close()

    def test_debit_writes_balance_and_transaction(self):
        seed_balance(self.db, "u1", 20)
        result = consume_credits(self.db, user_id="u1", amount=16, resource_type="veo_video", resource_id="job-1")
        self.assertTrue(result.success)
        self.assertEqual(result.remaining, 4)
        self.assertEqual(balance_of(self.db, "u1"), 4)
        txs = transactions_of(self.db, "u1")
        self.assertEqual(len(txs), 1)
        self.assertEqual(txs[0].amount, -16)
        self.assertEqual(txs[0].balance_after, 4)
        self.assertEqual(TransactionType(txs[0].type), TransactionType.CONSUMPTION)
        self.assertEqual(txs[0].resource_id, "job-1")

    def test_insufficient_balance_has_no_side_effects(self):
        seed_balance(self.db, "u1", 10)
        result = consume_credits(self.db, user_id="u1", amount=16, resource_type="veo_video", resource_id="job-1")
        self.assertFalse(result.success)
        self.assertEqual(result.remaining, 10)
        self.assertEqual(balance_of(self.db, "u1"), 10)
        self.assertEqual(transactions_of(self.db, "u1"), [])

    def test_missing_balance_row_is_rejected(self):
        result = consume_credits(self.db, user_id="nobody", amount=1, resource_type="ai_music", resource_id="m-1")
        self.assertFalse(result.success)
        self.assertEqual(result.remaining, 0)

    def test_non_positive_amount_raises(self):
        seed_balance(self.db, "u1", 5)
        with self.assertRaises(ValueError):
            consume_credits(self.db, user_id="u1", amount=0, resource_type="x", resource_id="r")
        with self.assertRaises(ValueError):
            consume_credits(self.db, user_id="u1", amount=-3, resource_type="x", resource_id="r")
        self.assertEqual(balance_of(self.db, "u1"), 5)

    def test_same_resource_is_not_charged_twice(self):
        seed_balance(self.db, "u1", 20)
        first = consume_credits(self.db, user_id="u1", amount=5, resource_type="veo_video", resource_id="job-1")
        second = consume_credits(self.db, user_id="u1", amount=5, resource_type="veo_video", resource_id="job-1")
        self.assertTrue(first.success)
        self.assertTrue(second.success)
        self.assertTrue(second.duplicate)
        self.assertEqual(balance_of(self.db, "u1"), 15)
        self.assertEqual(len(transactions_of(self.db, "u1")), 1)


class TestRefundCredits(unittest.TestCase):
    def setUp(self):
        self.db = memory_session_factory()()
        seed_balance(self.db, "u1", 20)
        consume_credits(self.db, user_id="u1", amount=16, resource_type="veo_video", resource_id="job-1")

    def tearDown(self):
        self.db.close()

    def test_refund_restores_balance(self):
        self.assertTrue(
            refund_credits(self.db, user_id="u1", amount=16, resource_id="job-1", reason="failed", resource_type="veo_video")
        )
        self.assertEqual(balance_of(self.db, "u1"), 20)
        txs = transactions_of(self.db, "u1")
        self.assertEqual([t.amount for t in txs], [-16, 16])
        self.assertEqual(TransactionType(txs[1].type), TransactionType.REFUND)

    def test_second_refund_for_same_resource_is_a_noop(self):
        refund_credits(self.db, user_id="u1", amount=16, resource_id="job-1", reason="failed")
        self.assertFalse(refund_credits(self.db, user_id="u1", amount=16, resource_id="job-1", reason="again"))
        self.assertEqual(balance_of(self.db, "u1"), 20)
        self.assertEqual(len(transactions_of(self.db, "u1")), 2)

    def test_refund_swallows_database_errors(self):
        with mock.patch.object(self.db, "execute", side_effect=RuntimeError("database unavailable")):
            self.assertFalse(refund_credits(self.db, user_id="u1", amount=1, resource_id="job-x", reason="failed"))

    def test_zero_amount_is_ignored(self):
        self.assertFalse(refund_credits(self.db, user_id="u1", amount=0, resource_id="job-1", reason="nothing"))


class TestGrantsAndAllocation(unittest.TestCase):
    def setUp(self):
        self.db = memory_session_factory()()

    def tearDown(self):
        self.db.close()

    def test_signup_bonus_once(self):
        self.assertTrue(grant_signup_bonus(self.db, "u1"))
        self.assertFalse(grant_signup_bonus(self.db, "u1"))
        self.assertEqual(balance_of(self.db, "u1"), 2)
        txs = transactions_of(self.db, "u1")
        self.assertEqual(len(txs), 1)
        self.assertEqual(txs[0].description, "Signup bonus - 2 free AI Video credits")

    def test_grant_is_keyed_by_source(self):
        seed_balance(self.db, "u1", 3)
        self.assertTrue(grant_credits(self.db, user_id="u1", amount=25, source="stripe_checkout:cs_1"))
        self.assertFalse(grant_credits(self.db, user_id="u1", amount=25, source="stripe_checkout:cs_1"))
        self.assertEqual(balance_of(self.db, "u1"), 28)
        balance = get_balance(self.db, "u1")
        self.assertEqual(balance.total, 28)

    def test_grant_creates_missing_balance_row(self):
        grant_credits(self.db, user_id="new-user", amount=5, source="admin:1")
        self.assertEqual(balance_of(self.db, "new-user"), 5)

    def test_allocation_tops_up_to_allowance(self):
        seed_balance(self.db, "u1", 12)
        added = allocate_plan_credits(self.db, user_id="u1", monthly_credits=50, plan="creator", source="stripe_invoice:in_1")
        self.assertEqual(added, 38)
        self.assertEqual(balance_of(self.db, "u1"), 50)
        self.assertEqual(sum(t.amount for t in transactions_of(self.db, "u1")), 38)
        row = self.db.get(CreditBalance, "u1")
        self.assertIsNotNone(row.period_end)

    def test_allocation_keeps_balance_above_allowance(self):
        seed_balance(self.db, "u1", 70)
        added = allocate_plan_credits(self.db, user_id="u1", monthly_credits=50, plan="creator", source="stripe_invoice:in_1")
        self.assertEqual(added, 0)
        self.assertEqual(balance_of(self.db, "u1"), 70)
        self.assertEqual(transactions_of(self.db, "u1"), [])

    def test_allocation_per_invoice_only_once(self):
        seed_balance(self.db, "u1", 0)
        allocate_plan_credits(self.db, user_id="u1", monthly_credits=10, plan="starter", source="stripe_invoice:in_1")
        consume_credits(self.db, user_id="u1", amount=4, resource_type="ai_music", resource_id="m1")
        self.assertEqual(
            allocate_plan_credits(self.db, user_id="u1", monthly_credits=10, plan="starter", source="stripe_invoice:in_1"),
            0,
        )
        self.assertEqual(balance_of(self.db, "u1"), 6)

    def test_ledger_sums_to_balance(self):
        grant_signup_bonus(self.db, "u1")
        grant_credits(self.db, user_id="u1", amount=20, source="pack:1")
        consume_credits(self.db, user_id="u1", amount=16, resource_type="veo_video", resource_id="j1")
        consume_credits(self.db, user_id="u1", amount=3, resource_type="nanobanana_image", resource_id="j2")
        refund_credits(self.db, user_id="u1", amount=16, resource_id="j1", reason="failed")
        self.assertEqual(sum(t.amount for t in transactions_of(self.db, "u1")), balance_of(self.db, "u1"))

    def test_list_transactions_newest_first(self):
        seed_balance(self.db, "u1", 10)
        consume_credits(self.db, user_id="u1", amount=1, resource_type="x", resource_id="a")
        consume_credits(self.db, user_id="u1", amount=2, resource_type="x", resource_id="b")
        rows = list_transactions(self.db, "u1")
        self.assertEqual([r.resource_id for r in rows], ["b", "a"])


class TestCostHelpers(unittest.TestCase):
    def test_veo_cost(self):
        self.assertEqual(veo_credit_cost(8, VEO_STANDARD_MODEL), 16)
        self.assertEqual(veo_credit_cost(8, VEO_FAST_MODEL), 8)
        self.assertEqual(veo_credit_cost(0, VEO_FAST_MODEL), 1)

    def test_image_cost(self):
        self.assertEqual(image_credit_cost("1K"), 1)
        self.assertEqual(image_credit_cost("4K"), 3)
        self.assertEqual(image_credit_cost("8K"), 1)
        self.assertEqual(image_credit_cost("2K", 3), 6)

    def test_translation_cost_first_language_free(self):
        self.assertEqual(translation_credit_cost(1), 0)
        self.assertEqual(translation_credit_cost(3), 2)
        self.assertEqual(chargeable_translations(successful=2, charged=2), 1)
        self.assertEqual(chargeable_translations(successful=0, charged=2), 0)


if __name__ == "__main__":
    unittest.main()
