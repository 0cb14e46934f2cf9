from __future__ import annotations

import unittest

from marketplace.models import CartLine

from _fixtures import BUYER, SELLER_ONE, AppTestMixin, seed_accounts, seed_catalog


class CartApiTestCase(AppTestMixin, unittest.TestCase):
    def setUp(self):
        super().setUp()
        seed_accounts()
        self.product_a, self.product_b = seed_catalog()

    def _add(self, product_id, party=BUYER):
        return self.client.post("/api/cart/items", json={"product_id": product_id}, headers=self.auth_headers(party))

    def test_add_twice_increments_one_line(self):
        first = self._add(self.product_a)
        second = self._add(self.product_a)
        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.get_json()["quantity"], 2)
        self.assertEqual(first.get_json()["line_id"], second.get_json()["line_id"])
        self.assertEqual(CartLine.query.count(), 1)

    def test_view_cart_totals(self):
        self._add(self.product_a)
        self._add(self.product_a)
        self._add(self.product_b)
        res = self.client.get("/api/cart", headers=self.auth_headers())
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertEqual(body["total"], "130.00")
        self.assertEqual([line["quantity"] for line in body["lines"]], [2, 1])
        self.assertEqual(body["lines"][0]["image_url"], "https://cdn.example.com/a.jpg")

    def test_plus_and_minus(self):
        line_id = self._add(self.product_a).get_json()["line_id"]
        plus = self.client.post(f"/api/cart/items/{line_id}/plus", headers=self.auth_headers())
        self.assertEqual(plus.get_json()["quantity"], 2)

        minus = self.client.post(f"/api/cart/items/{line_id}/minus", headers=self.auth_headers())
        self.assertEqual(minus.get_json()["quantity"], 1)
        self.assertFalse(minus.get_json()["removed"])

        gone = self.client.post(f"/api/cart/items/{line_id}/minus", headers=self.auth_headers())
        self.assertEqual(gone.status_code, 200)
        self.assertTrue(gone.get_json()["removed"])
        self.assertEqual(CartLine.query.count(), 0)

    def test_invalid_action_and_unknown_line(self):
        line_id = self._add(self.product_a).get_json()["line_id"]
        bad = self.client.post(f"/api/cart/items/{line_id}/double", headers=self.auth_headers())
        self.assertEqual(bad.status_code, 400)
        missing = self.client.post("/api/cart/items/9999/plus", headers=self.auth_headers())
        self.assertEqual(missing.status_code, 404)

    def test_lines_belong_to_their_buyer(self):
        line_id = self._add(self.product_a).get_json()["line_id"]
        res = self.client.delete(f"/api/cart/items/{line_id}", headers=self.auth_headers(SELLER_ONE))
        self.assertEqual(res.status_code, 404)
        self.assertEqual(CartLine.query.count(), 1)

        own = self.client.delete(f"/api/cart/items/{line_id}", headers=self.auth_headers())
        self.assertEqual(own.status_code, 200)
        self.assertEqual(CartLine.query.count(), 0)

    def test_add_validation(self):
        self.assertEqual(self._add("abc").status_code, 400)
        self.assertEqual(self._add(424242).status_code, 404)

    def test_requires_session(self):
        res = self.client.get("/api/cart")
        self.assertEqual(res.status_code, 401)
        bad_token = self.client.get("/api/cart", headers={"Authorization": "Bearer not-a-jwt"})
        self.assertEqual(bad_token.status_code, 401)


if __name__ == "__main__":
    unittest.main()
