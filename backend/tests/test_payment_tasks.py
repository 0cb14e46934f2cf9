from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from marketplace.integrations.payments.mock_provider import MockPaymentsProvider
from marketplace.models import Order, WebhookEvent
from marketplace.tasks.payment_tasks import (
    _retry_countdown,
    reconcile_payment_task,
    retry_failed_payment_reconciliations,
)

from _fixtures import AppTestMixin, buyer_metadata, seed_standard_cart


class RetryCountdownTestCase(unittest.TestCase):
    def test_backoff_grows_and_caps(self):
        self.assertEqual([_retry_countdown(n) for n in range(4)], [5, 10, 20, 40])
        self.assertEqual(_retry_countdown(20), 900)


class PaymentTasksTestCase(AppTestMixin, unittest.TestCase):
    def setUp(self):
        super().setUp()
        seed_standard_cart()
        self.provider = MockPaymentsProvider()
        patcher = patch("marketplace.tasks.payment_tasks.build_payments_provider", return_value=self.provider)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_reconcile_task_fulfils_approved_payment(self):
        self.provider.script_payment("pay-task", "approved", buyer_metadata())
        out = reconcile_payment_task.run(payment_id="pay-task", trace_id="t-1")
        self.assertEqual(out["state"], "completed")
        self.assertEqual(Order.query.count(), 2)

    def test_reconcile_task_retries_provider_failures(self):
        with self.assertRaises(RuntimeError):
            reconcile_payment_task.run(payment_id="pay-unknown")
        self.assertEqual(Order.query.count(), 0)

    def test_scheduled_retry_with_nothing_to_do(self):
        out = retry_failed_payment_reconciliations.run()
        self.assertEqual(out["attempted"], 0)
        self.assertTrue(out["ok"])

    def test_webhook_enqueues_when_queue_enabled(self):
        with patch.dict(os.environ, {"PAYMENT_WEBHOOK_QUEUE": "1"}):
            with patch.object(reconcile_payment_task, "delay") as delay:
                res = self.client.post("/api/payments/webhook", json={"type": "payment", "data": {"id": "pay-q"}})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["state"], "queued")
        self.assertEqual(delay.call_args.kwargs["payment_id"], "pay-q")
        self.assertEqual(Order.query.count(), 0)
        self.assertEqual(WebhookEvent.query.one().outcome, "queued")


if __name__ == "__main__":
    unittest.main()
