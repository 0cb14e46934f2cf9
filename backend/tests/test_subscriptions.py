from __future__ import annotations

import os
import unittest
from decimal import Decimal
from unittest.mock import patch

from marketplace.extensions import db
from marketplace.integrations.payments.mock_provider import MockPaymentsProvider
from marketplace.models import Subscription, SubscriptionPlan

from _fixtures import SELLER_ONE, AppTestMixin, seed_accounts, seed_catalog


class SubscriptionTestCase(AppTestMixin, unittest.TestCase):
    def setUp(self):
        super().setUp()
        seed_accounts()
        seed_catalog()
        plan = SubscriptionPlan(name="Seller monthly", price=Decimal("39.90"), periodicity="monthly")
        db.session.add(plan)
        db.session.add(SubscriptionPlan(name="Retired", price=Decimal("9.90"), periodicity="weekly", active=False))
        db.session.commit()
        self.plan_id = int(plan.id)
        self.provider = MockPaymentsProvider()
        patcher = patch(
            "marketplace.segments.segment_subscriptions.build_payments_provider",
            return_value=self.provider,
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def _subscribe(self, **overrides):
        form = {"plan_id": self.plan_id, "card_token_id": "card-1", "payer_email": "bruno@example.com"}
        form.update(overrides)
        return self.client.post("/api/subscriptions", json=form, headers=self.auth_headers(SELLER_ONE))

    def test_lists_active_plans(self):
        res = self.client.get("/api/subscriptions/plans")
        self.assertEqual(res.status_code, 200)
        self.assertEqual([p["name"] for p in res.get_json()["items"]], ["Seller monthly"])

    def test_subscribe_creates_authorized_subscription(self):
        res = self._subscribe()
        self.assertEqual(res.status_code, 200)
        sub = res.get_json()["subscription"]
        self.assertEqual(sub["status"], "authorized")
        self.assertTrue(sub["preapproval_id"].startswith("pre_"))

        _, call = self.provider.calls[0]
        self.assertEqual(call["frequency"], 1)
        self.assertEqual(call["frequency_type"], "months")
        self.assertEqual(call["external_reference"], f"pf_{SELLER_ONE.id}_plan_{self.plan_id}")

    def test_subscribe_validation(self):
        self.assertEqual(self._subscribe(card_token_id="").status_code, 400)
        self.assertEqual(self._subscribe(plan_id=9999).status_code, 404)
        self.assertEqual(self._subscribe().status_code, 200)
        duplicate = self._subscribe()
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.get_json()["error"], "ALREADY_SUBSCRIBED")

    def test_webhook_syncs_status(self):
        pre_id = self._subscribe().get_json()["subscription"]["preapproval_id"]
        self.provider.preapprovals[pre_id].status = "cancelled"

        res = self.client.post("/api/subscriptions/webhook", query_string={"id": pre_id})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json(), {"ok": True, "known": True, "status": "cancelled"})
        self.assertEqual(Subscription.query.one().status, "cancelled")

    def test_webhook_edge_cases(self):
        ignored = self.client.post("/api/subscriptions/webhook", json={})
        self.assertEqual(ignored.get_json(), {"ok": True, "ignored": True})

        unknown = self.client.post("/api/subscriptions/webhook", query_string={"id": "pre_missing"})
        self.assertEqual(unknown.status_code, 500)
        self.assertEqual(unknown.get_json()["error"], "SUBSCRIPTION_SYNC_FAILED")

    def test_gate_applies_only_when_enabled(self):
        open_res = self.client.get("/api/shipping/oauth/connect", headers=self.auth_headers(SELLER_ONE))
        self.assertEqual(open_res.status_code, 302)

        with patch.dict(os.environ, {"REQUIRE_SELLER_SUBSCRIPTION": "1"}):
            gated = self.client.get("/api/shipping/oauth/connect", headers=self.auth_headers(SELLER_ONE))
            self.assertEqual(gated.status_code, 402)
            self.assertEqual(gated.get_json()["error"], "SUBSCRIPTION_REQUIRED")

            self._subscribe()
            allowed = self.client.get("/api/shipping/oauth/connect", headers=self.auth_headers(SELLER_ONE))
            self.assertEqual(allowed.status_code, 302)


if __name__ == "__main__":
    unittest.main()
