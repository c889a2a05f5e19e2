import hashlib
import hmac
import json
import time
import unittest
from unittest import mock

from fastapi.testclient import TestClient

from support import balance_of, memory_session_factory, seed_balance, seed_plan, transactions_of

import main
from videogen.api.endpoints.billing import process_stripe_event
from videogen.core.database import get_db
from videogen.core.settings import settings
from videogen.models.subscription import Subscription
from videogen.models.webhook_event import WebhookEvent


def checkout_event(event_id="evt_1", session_id="cs_1", pack_id="pack_25"):
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "mode": "payment",
                "client_reference_id": "u1",
                "metadata": {"pack_id": pack_id},
            }
        },
    }


class TestProcessStripeEvent(unittest.TestCase):
    def setUp(self):
        self.db = memory_session_factory()()

    def tearDown(self):
        self.db.close()

    def subscription(self, user_id="u1"):
        self.db.expire_all()
        return self.db.query(Subscription).filter(Subscription.user_id == user_id).first()

    def test_credit_pack_purchase_grants_once(self):
        seed_balance(self.db, "u1", 3)
        self.assertTrue(process_stripe_event(self.db, checkout_event()))
        self.assertFalse(process_stripe_event(self.db, checkout_event()))
        self.assertEqual(balance_of(self.db, "u1"), 28)
        self.assertEqual(self.db.query(WebhookEvent).count(), 1)

    def test_redelivered_checkout_under_new_event_id_is_not_double_granted(self):
        seed_balance(self.db, "u1", 0)
        process_stripe_event(self.db, checkout_event(event_id="evt_1"))
        process_stripe_event(self.db, checkout_event(event_id="evt_2"))
        self.assertEqual(balance_of(self.db, "u1"), 25)
        [grant] = transactions_of(self.db, "u1")
        self.assertEqual(grant.resource_id, "stripe_checkout:cs_1")

    def test_unknown_pack_grants_nothing(self):
        seed_balance(self.db, "u1", 0)
        with mock.patch.object(settings, "stripe_secret_key", None):
            process_stripe_event(self.db, checkout_event(pack_id="pack_9000"))
        self.assertEqual(balance_of(self.db, "u1"), 0)

    def test_pack_resolved_from_line_item_price(self):
        seed_balance(self.db, "u1", 1)
        event = checkout_event(pack_id="")
        event["data"]["object"]["line_items"] = {"data": [{"price": {"id": "price_pack_50"}}]}
        prices = {"pack_5": None, "pack_50": "price_pack_50"}
        with mock.patch.object(settings, "stripe_credit_pack_prices", prices):
            process_stripe_event(self.db, event)
        self.assertEqual(balance_of(self.db, "u1"), 51)

    def test_pack_price_fetched_from_stripe_when_not_expanded(self):
        seed_balance(self.db, "u1", 0)
        listed = mock.Mock(data=[{"price": {"id": "price_pack_5"}}])
        with mock.patch.object(settings, "stripe_secret_key", "sk_test"), mock.patch.object(
            settings, "stripe_credit_pack_prices", {"pack_5": "price_pack_5"}
        ), mock.patch("stripe.checkout.Session.list_line_items", return_value=listed) as list_items:
            process_stripe_event(self.db, checkout_event(pack_id=""))
        list_items.assert_called_once_with("cs_1", limit=1, api_key="sk_test")
        self.assertEqual(balance_of(self.db, "u1"), 5)

    def test_subscription_update_maps_price_to_plan(self):
        event = {
            "id": "evt_sub",
            "type": "customer.subscription.updated",
            "data": {
                "object": {
                    "id": "sub_1",
                    "customer": "cus_1",
                    "status": "active",
                    "current_period_end": 1767225600,
                    "cancel_at_period_end": False,
                    "metadata": {"supabase_user_id": "u1"},
                    "items": {"data": [{"price": {"id": "price_creator_m", "recurring": {"interval": "month"}}}]},
                }
            },
        }
        with mock.patch.object(settings, "stripe_price_creator_monthly", "price_creator_m"):
            process_stripe_event(self.db, event)
        sub = self.subscription()
        self.assertEqual(sub.plan, "creator")
        self.assertEqual(sub.billing_interval, "month")
        self.assertEqual(sub.stripe_subscription_id, "sub_1")
        self.assertIsNotNone(sub.current_period_end)

    def test_invoice_paid_tops_up_plan_allowance(self):
        seed_plan(self.db, "u1", "creator")
        sub = self.subscription()
        sub.stripe_subscription_id = "sub_1"
        self.db.commit()
        seed_balance(self.db, "u1", 12)

        invoice = {"id": "evt_inv", "type": "invoice.paid", "data": {"object": {"id": "in_1", "subscription": "sub_1"}}}
        process_stripe_event(self.db, invoice)
        process_stripe_event(self.db, {**invoice, "id": "evt_inv_retry"})

        self.assertEqual(balance_of(self.db, "u1"), 50)
        self.assertEqual(len(transactions_of(self.db, "u1")), 1)

    def test_payment_failure_and_cancellation(self):
        seed_plan(self.db, "u1", "starter")
        sub = self.subscription()
        sub.stripe_subscription_id = "sub_1"
        self.db.commit()

        process_stripe_event(
            self.db, {"id": "evt_f", "type": "invoice.payment_failed", "data": {"object": {"subscription": "sub_1"}}}
        )
        self.assertEqual(self.subscription().status, "past_due")

        process_stripe_event(
            self.db, {"id": "evt_d", "type": "customer.subscription.deleted", "data": {"object": {"id": "sub_1"}}}
        )
        sub = self.subscription()
        self.assertEqual((sub.plan, sub.status), ("free", "canceled"))
        self.assertIsNone(sub.stripe_subscription_id)


class TestWebhookEndpoint(unittest.TestCase):
    secret = "whsec_test"

    def setUp(self):
        factory = memory_session_factory()
        self.db = factory()

        def override_db():
            db = factory()
            try:
                yield db
            finally:
                db.close()

        main.app.dependency_overrides[get_db] = override_db
        self.client = TestClient(main.app)
        self._secret = mock.patch.object(settings, "stripe_webhook_secret", self.secret)
        self._secret.start()

    def tearDown(self):
        self._secret.stop()
        main.app.dependency_overrides.clear()
        self.db.close()

    def sign(self, payload: str, secret: str | None = None) -> str:
        ts = int(time.time())
        digest = hmac.new((secret or self.secret).encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
        return f"t={ts},v1={digest}"

    def test_signed_event_is_processed(self):
        seed_balance(self.db, "u1", 0)
        payload = json.dumps(checkout_event())
        resp = self.client.post(
            "/api/billing/webhook", content=payload, headers={"stripe-signature": self.sign(payload)}
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"received": True, "duplicate": False})
        self.assertEqual(balance_of(self.db, "u1"), 25)

    def test_bad_signature_is_rejected(self):
        seed_balance(self.db, "u1", 0)
        payload = json.dumps(checkout_event())
        resp = self.client.post(
            "/api/billing/webhook", content=payload, headers={"stripe-signature": self.sign(payload, "whsec_other")}
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"error": "Invalid signature"})
        self.assertEqual(balance_of(self.db, "u1"), 0)


if __name__ == "__main__":
    unittest.main()
