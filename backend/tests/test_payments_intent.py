from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from marketplace.integrations.payments.mock_provider import MockPaymentsProvider
from marketplace.models import CartLine, Order, ProcessedPayment

from _fixtures import BUYER, AppTestMixin, seed_standard_cart

CARD_FORM = {
    "token": "card-token-1",
    "payment_method_id": "visa",
    "transaction_amount": "130.00",
    "installments": 1,
}


class PaymentIntentTestCase(AppTestMixin, unittest.TestCase):
    def setUp(self):
        super().setUp()
        seed_standard_cart()
        self.provider = MockPaymentsProvider()
        patcher = patch(
            "marketplace.segments.segment_checkout.build_payments_provider",
            return_value=self.provider,
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_preference_carries_buyer_metadata(self):
        res = self.client.post("/api/checkout/preference", json={}, headers=self.auth_headers())
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertTrue(body["redirect_url"].startswith("https://example.com/mock/checkout"))
        self.assertEqual(body["init_point"], body["redirect_url"])

        _, call = self.provider.calls[0]
        self.assertEqual(call["metadata"]["buyer_id"], BUYER.id)
        self.assertEqual(call["metadata"]["buyer_type"], "pf")
        self.assertEqual(call["notification_url"], "https://shop.example.com/api/payments/webhook")
        self.assertEqual(call["payer"]["identification"], {"type": "CPF", "number": "52998224725"})
        self.assertEqual([item["quantity"] for item in call["items"]], [2, 1])
        self.assertEqual(Order.query.count(), 0)

    def test_preference_needs_return_urls(self):
        with patch.dict(os.environ, {"MP_RESULT_URL": ""}):
            res = self.client.post("/api/checkout/preference", json={}, headers=self.auth_headers())
        self.assertEqual(res.status_code, 500)
        self.assertEqual(res.get_json()["error"], "PAYMENT_CONFIG_INVALID")

    def test_direct_charge_approved_creates_orders(self):
        res = self.client.post("/api/checkout/direct-charge", json=CARD_FORM, headers=self.auth_headers())
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertEqual(body["status"], "approved")
        self.assertEqual(len(body["orders"]), 2)
        self.assertEqual(CartLine.query.count(), 0)

        entry = ProcessedPayment.query.filter_by(payment_id=body["payment_id"]).one()
        self.assertEqual(entry.state, "completed")
        self.assertEqual(entry.source, "direct_charge")

    def test_direct_charge_with_shipping(self):
        form = dict(CARD_FORM, transaction_amount="151.50", shipping_amount="21.50")
        res = self.client.post("/api/checkout/direct-charge", json=form, headers=self.auth_headers())
        self.assertEqual(res.status_code, 200)
        self.assertEqual(str(self.provider.calls[0][1]["amount"]), "151.50")

    def test_direct_charge_not_approved_keeps_cart(self):
        self.provider.direct_status = "rejected"
        res = self.client.post("/api/checkout/direct-charge", json=CARD_FORM, headers=self.auth_headers())
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertEqual(body["status"], "rejected")
        self.assertEqual(body["orders"], [])
        self.assertEqual(Order.query.count(), 0)
        self.assertEqual(CartLine.query.count(), 2)

    def test_amount_must_match_cart(self):
        form = dict(CARD_FORM, transaction_amount="99.00")
        res = self.client.post("/api/checkout/direct-charge", json=form, headers=self.auth_headers())
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "AMOUNT_MISMATCH")
        self.assertEqual(self.provider.calls, [])

    def test_missing_card_fields(self):
        res = self.client.post(
            "/api/checkout/direct-charge",
            json={"transaction_amount": "130.00"},
            headers=self.auth_headers(),
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "INVALID_PAYMENT_FORM")

    def test_webhook_after_direct_charge_is_a_duplicate(self):
        res = self.client.post("/api/checkout/direct-charge", json=CARD_FORM, headers=self.auth_headers())
        payment_id = res.get_json()["payment_id"]

        with patch(
            "marketplace.segments.segment_payment_webhooks.build_payments_provider",
            return_value=self.provider,
        ):
            hook = self.client.post(
                "/api/payments/webhook",
                json={"type": "payment", "data": {"id": payment_id}},
            )
        self.assertEqual(hook.status_code, 200)
        self.assertEqual(hook.get_json()["state"], "skipped-duplicate")
        self.assertEqual(Order.query.count(), 2)

    def test_idempotency_key_is_forwarded(self):
        headers = {**self.auth_headers(), "Idempotency-Key": "charge-77"}
        self.client.post("/api/checkout/direct-charge", json=CARD_FORM, headers=headers)
        self.assertEqual(self.provider.calls[0][1]["idempotency_key"], "charge-77")


if __name__ == "__main__":
    unittest.main()
