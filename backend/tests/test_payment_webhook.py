from __future__ import annotations

import hashlib
import hmac
import os
import unittest
from datetime import datetime
from unittest.mock import patch

from marketplace.extensions import db
from marketplace.integrations.payments.mock_provider import MockPaymentsProvider
from marketplace.jobs.payment_retry import retry_failed_reconciliations
from marketplace.models import CartLine, JobRun, Order, PlatformEvent, ProcessedPayment, Product, WebhookEvent
from marketplace.services import order_service
from marketplace.services.errors import OrderCreationError
from marketplace.services.payment_reconciliation_service import (
    extract_payment_id,
    extract_topic,
    verify_webhook_signature,
)

from _fixtures import (
    BUYER,
    STORE_TWO,
    AppTestMixin,
    buyer_metadata,
    fill_cart,
    seed_accounts,
    seed_catalog,
    seed_standard_cart,
)

WEBHOOK = "/api/payments/webhook"


def _notification(payment_id: str) -> dict:
    return {"type": "payment", "action": "payment.updated", "data": {"id": payment_id}}


def _signature(secret: str, payment_id: str, request_id: str, ts: str = "1717000000") -> str:
    manifest = f"id:{payment_id};request-id:{request_id};ts:{ts};"
    digest = hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"ts={ts},v1={digest}"


class NotificationParsingTestCase(unittest.TestCase):
    def test_payment_id_prefers_query_then_body(self):
        raw = b'{"data": {"id": "body-1"}}'
        self.assertEqual(extract_payment_id({"id": "q-1"}, raw), "q-1")
        self.assertEqual(extract_payment_id({"data.id": "q-2"}, raw), "q-2")
        self.assertEqual(extract_payment_id({}, raw), "body-1")
        self.assertEqual(extract_payment_id({}, b"not json"), "")

    def test_topic_from_query_or_body(self):
        self.assertEqual(extract_topic({"topic": "Payment"}, b""), "payment")
        self.assertEqual(extract_topic({}, b'{"type": "merchant_order"}'), "merchant_order")
        self.assertEqual(extract_topic({}, b""), "")

    def test_signature_manifest(self):
        header = _signature("s3cret", "12345", "req-1")
        self.assertTrue(
            verify_webhook_signature(secret="s3cret", signature_header=header, request_id="req-1", data_id="12345")
        )
        self.assertFalse(
            verify_webhook_signature(secret="other", signature_header=header, request_id="req-1", data_id="12345")
        )
        self.assertFalse(
            verify_webhook_signature(secret="s3cret", signature_header="garbage", request_id="req-1", data_id="12345")
        )


class PaymentWebhookTestCase(AppTestMixin, unittest.TestCase):
    def setUp(self):
        super().setUp()
        self.provider = MockPaymentsProvider()
        patcher = patch(
            "marketplace.segments.segment_payment_webhooks.build_payments_provider",
            return_value=self.provider,
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def _post(self, payment_id: str, **kwargs):
        return self.client.post(WEBHOOK, json=_notification(payment_id), **kwargs)

    def test_ping(self):
        res = self.client.get(WEBHOOK)
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.get_json()["ok"])

    def test_missing_id_is_acknowledged(self):
        res = self.client.post(WEBHOOK, json={"type": "payment"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["state"], "skipped-no-id")
        self.assertEqual(self.provider.calls, [])

    def test_unsupported_topic_is_acknowledged(self):
        res = self.client.post(WEBHOOK, json={"type": "merchant_order", "data": {"id": "mo-1"}})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["state"], "skipped-unsupported-topic")
        self.assertEqual(self.provider.calls, [])

    def test_pending_then_approved_creates_orders_once(self):
        product_a, product_b = seed_standard_cart()
        self.provider.script_payment("pay-100", "pending", buyer_metadata())

        pending = self._post("pay-100")
        self.assertEqual(pending.status_code, 200)
        self.assertEqual(pending.get_json()["state"], "skipped-not-approved")
        self.assertEqual(Order.query.count(), 0)

        self.provider.script_payment("pay-100", "approved", buyer_metadata())
        approved = self._post("pay-100")
        self.assertEqual(approved.status_code, 200)
        body = approved.get_json()
        self.assertEqual(body["state"], "completed")
        self.assertEqual(len(body["order_ids"]), 2)
        self.assertEqual({o.status for o in Order.query.all()}, {"paid"})
        self.assertEqual({o.payment_id for o in Order.query.all()}, {"pay-100"})
        self.assertEqual(CartLine.query.count(), 0)
        self.assertEqual(db.session.get(Product, product_a).stock_quantity, 3)
        self.assertEqual(db.session.get(Product, product_b).stock_quantity, 2)

        entry = ProcessedPayment.query.filter_by(provider="mock", payment_id="pay-100").one()
        self.assertEqual(entry.state, "completed")
        self.assertEqual(sorted(entry.order_id_list()), sorted(body["order_ids"]))

        again = self._post("pay-100")
        self.assertEqual(again.status_code, 200)
        self.assertEqual(again.get_json()["state"], "skipped-duplicate")
        self.assertEqual(sorted(again.get_json()["order_ids"]), sorted(body["order_ids"]))
        self.assertEqual(Order.query.count(), 2)

        outcomes = [e.outcome for e in WebhookEvent.query.order_by(WebhookEvent.id).all()]
        self.assertEqual(outcomes, ["skipped-not-approved", "completed", "skipped-duplicate"])

    def test_missing_buyer_metadata_is_rejected(self):
        seed_standard_cart()
        self.provider.script_payment("pay-200", "approved", {"mp_env": "sandbox"})
        res = self._post("pay-200")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["state"], "failed-metadata")
        self.assertEqual(Order.query.count(), 0)
        self.assertIsNone(ProcessedPayment.query.filter_by(payment_id="pay-200").first())

    def test_empty_cart_is_acknowledged(self):
        self.provider.script_payment("pay-250", "approved", buyer_metadata())
        res = self._post("pay-250")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["state"], "skipped-empty-cart")

    def test_unknown_payment_is_a_provider_failure(self):
        res = self._post("pay-404")
        self.assertEqual(res.status_code, 502)
        self.assertEqual(res.get_json()["state"], "failed-provider")

    def test_claim_held_by_another_delivery(self):
        seed_standard_cart()
        self.provider.script_payment("pay-300", "approved", buyer_metadata())
        db.session.add(
            ProcessedPayment(
                provider="mock",
                payment_id="pay-300",
                state="processing",
                source="webhook",
                attempts=1,
                claimed_at=datetime.utcnow(),
            )
        )
        db.session.commit()

        res = self._post("pay-300")
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertEqual(body["state"], "skipped-duplicate")
        self.assertEqual(body["detail"], "in_progress")
        self.assertEqual(Order.query.count(), 0)
        self.assertEqual(CartLine.query.count(), 2)

    def test_failed_creation_is_retried_by_the_job(self):
        seed_standard_cart()
        self.provider.script_payment("pay-400", "approved", buyer_metadata())
        real_create = order_service.create_order_with_items

        def fail_store_two(store_id, *args, **kwargs):
            if store_id == STORE_TWO:
                raise OrderCreationError(store_id, "db went away")
            return real_create(store_id, *args, **kwargs)

        with patch("marketplace.services.fulfillment_service.create_order_with_items", side_effect=fail_store_two):
            res = self._post("pay-400")
        self.assertEqual(res.status_code, 500)
        self.assertEqual(res.get_json()["state"], "failed-order-creation")
        self.assertEqual(len(res.get_json()["order_ids"]), 1)

        entry = ProcessedPayment.query.filter_by(payment_id="pay-400").one()
        self.assertEqual(entry.state, "failed")
        self.assertEqual(CartLine.query.count(), 2)

        summary = retry_failed_reconciliations(provider=self.provider)
        self.assertEqual(summary["attempted"], 1)
        self.assertEqual(summary["completed"], 1)
        self.assertEqual(summary["payment_ids"], ["pay-400"])

        db.session.expire_all()
        entry = ProcessedPayment.query.filter_by(payment_id="pay-400").one()
        self.assertEqual(entry.state, "completed")
        self.assertEqual(entry.attempts, 2)
        self.assertEqual(Order.query.count(), 2)
        self.assertEqual(CartLine.query.count(), 0)
        run = JobRun.query.filter_by(job_name="payment_retry").one()
        self.assertEqual((run.trigger, run.attempted, run.completed, run.failed), ("manual", 1, 1, 0))

    def _fail_store_two_once(self, payment_id: str):
        real_create = order_service.create_order_with_items

        def fail_store_two(store_id, *args, **kwargs):
            if store_id == STORE_TWO:
                raise OrderCreationError(store_id, "db went away")
            return real_create(store_id, *args, **kwargs)

        with patch("marketplace.services.fulfillment_service.create_order_with_items", side_effect=fail_store_two):
            res = self._post(payment_id)
        self.assertEqual(res.status_code, 500)

    def test_retry_completes_when_first_store_took_the_last_units(self):
        seed_accounts()
        product_a, product_b = seed_catalog(stock_a=2, stock_b=1)
        fill_cart(BUYER, [(product_a, 2), (product_b, 1)])
        self.provider.script_payment("pay-410", "approved", buyer_metadata())
        self._fail_store_two_once("pay-410")

        summary = retry_failed_reconciliations(provider=self.provider)
        self.assertEqual(summary["completed"], 1)

        db.session.expire_all()
        self.assertEqual(ProcessedPayment.query.filter_by(payment_id="pay-410").one().state, "completed")
        self.assertEqual(Order.query.count(), 2)
        self.assertEqual(db.session.get(Product, product_a).stock_quantity, 0)
        self.assertEqual(CartLine.query.count(), 0)

    def test_emptied_cart_abandons_the_failed_payment(self):
        seed_standard_cart()
        self.provider.script_payment("pay-420", "approved", buyer_metadata())
        self._fail_store_two_once("pay-420")
        CartLine.query.delete()
        db.session.commit()

        first = retry_failed_reconciliations(provider=self.provider)
        self.assertEqual(first["skipped"], 1)
        for _ in range(3):
            self.assertEqual(retry_failed_reconciliations(provider=self.provider)["attempted"], 0)

        db.session.expire_all()
        entry = ProcessedPayment.query.filter_by(payment_id="pay-420").one()
        self.assertEqual(entry.state, "abandoned")
        self.assertEqual(entry.last_error, "cart is empty")
        self.assertEqual(len(entry.order_id_list()), 1)
        events = PlatformEvent.query.filter_by(event_type="payment_reconcile_abandoned").all()
        self.assertEqual([e.severity for e in events], ["ERROR"])

    def test_refunded_payment_abandons_the_failed_payment(self):
        seed_standard_cart()
        self.provider.script_payment("pay-425", "approved", buyer_metadata())
        self._fail_store_two_once("pay-425")
        self.provider.script_payment("pay-425", "refunded", buyer_metadata())

        retry_failed_reconciliations(provider=self.provider)

        db.session.expire_all()
        entry = ProcessedPayment.query.filter_by(payment_id="pay-425").one()
        self.assertEqual(entry.state, "abandoned")
        self.assertIn("refunded", entry.last_error)

    def test_provider_outage_spends_the_retry_budget(self):
        seed_standard_cart()
        self.provider.script_payment("pay-430", "approved", buyer_metadata())
        self._fail_store_two_once("pay-430")
        unreachable = MockPaymentsProvider()

        with patch.dict(os.environ, {"PAYMENT_MAX_ATTEMPTS": "3"}):
            runs = [retry_failed_reconciliations(provider=unreachable)["attempted"] for _ in range(4)]
        self.assertEqual(runs, [1, 1, 0, 0])

        db.session.expire_all()
        entry = ProcessedPayment.query.filter_by(payment_id="pay-430").one()
        self.assertEqual((entry.state, entry.attempts), ("failed", 3))

    def test_signature_is_enforced_when_secret_configured(self):
        seed_standard_cart()
        self.provider.script_payment("987654", "approved", buyer_metadata())
        with patch.dict(os.environ, {"MP_WEBHOOK_SECRET": "whsec"}):
            bad = self._post("987654", headers={"x-signature": "ts=1,v1=deadbeef", "x-request-id": "rq-1"})
            self.assertEqual(bad.status_code, 401)
            self.assertEqual(bad.get_json()["state"], "failed-signature")
            self.assertEqual(Order.query.count(), 0)

            good = self._post(
                "987654",
                headers={"x-signature": _signature("whsec", "987654", "rq-2"), "x-request-id": "rq-2"},
            )
            self.assertEqual(good.status_code, 200)
            self.assertEqual(good.get_json()["state"], "completed")
        self.assertEqual(Order.query.count(), 2)


if __name__ == "__main__":
    unittest.main()
