from __future__ import annotations

import json
import os
import unittest
from decimal import Decimal
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import requests

from marketplace.integrations.common import IntegrationMisconfiguredError, ProviderError
from marketplace.integrations.payments.factory import build_payments_provider
from marketplace.integrations.payments.mercadopago_provider import MercadoPagoPaymentsProvider
from marketplace.integrations.shipping.factory import build_shipping_provider
from marketplace.integrations.shipping.melhorenvio_provider import MelhorEnvioShippingProvider


def _response(status: int, payload=None):
    resp = MagicMock()
    resp.status_code = status
    body = json.dumps(payload).encode("utf-8") if payload is not None else b""
    resp.content = body
    resp.text = body.decode("utf-8")
    resp.json.return_value = payload
    return resp


class MercadoPagoClientTestCase(unittest.TestCase):
    def setUp(self):
        self.http = MagicMock()
        self.client = MercadoPagoPaymentsProvider("TEST-123", session=self.http)

    def test_sandbox_detection(self):
        self.assertEqual(self.client.environment, "sandbox")
        self.assertEqual(MercadoPagoPaymentsProvider("APP_USR-1", session=self.http).environment, "production")

    def test_get_payment_parses_status_and_metadata(self):
        self.http.request.return_value = _response(
            200, {"id": 555, "status": "Approved", "metadata": {"buyer_id": "b1", "buyer_type": "pf"}}
        )
        snap = self.client.get_payment("555")
        self.assertTrue(snap.approved)
        self.assertEqual(snap.metadata["buyer_id"], "b1")
        method, url = self.http.request.call_args.args
        self.assertEqual((method, url), ("GET", "https://api.mercadopago.com/v1/payments/555"))
        self.assertEqual(self.http.request.call_args.kwargs["headers"]["Authorization"], "Bearer TEST-123")

    def test_direct_payment_sends_idempotency_header(self):
        self.http.request.return_value = _response(201, {"id": 9, "status": "approved"})
        self.client.create_direct_payment(
            token="tok",
            amount=Decimal("130.00"),
            payment_method_id="visa",
            installments=2,
            payer={"email": "a@example.com"},
            metadata={"buyer_id": "b1"},
            idempotency_key="idem-1",
        )
        kwargs = self.http.request.call_args.kwargs
        self.assertEqual(kwargs["headers"]["X-Idempotency-Key"], "idem-1")
        self.assertEqual(kwargs["json"]["transaction_amount"], 130.0)
        self.assertEqual(kwargs["json"]["installments"], 2)

    def test_preference_requires_init_point(self):
        self.http.request.return_value = _response(201, {"id": "pref-1"})
        with self.assertRaises(ProviderError):
            self.client.create_preference(
                items=[], payer={}, back_urls={}, notification_url="", metadata={}
            )

    def test_error_status_and_transport_failures(self):
        self.http.request.return_value = _response(404, {"message": "payment not found"})
        with self.assertRaises(ProviderError) as caught:
            self.client.get_payment("x")
        self.assertEqual(caught.exception.status, 404)
        self.assertEqual(caught.exception.message, "payment not found")

        self.http.request.side_effect = requests.ConnectionError("boom")
        with self.assertRaises(ProviderError) as caught:
            self.client.get_payment("x")
        self.assertIsNone(caught.exception.status)


class MelhorEnvioClientTestCase(unittest.TestCase):
    def setUp(self):
        self.http = MagicMock()
        self.client = MelhorEnvioShippingProvider(
            client_id="cid",
            client_secret="csecret",
            redirect_uri="https://shop.example.com/api/shipping/oauth/callback",
            session=self.http,
        )

    def test_authorize_url_carries_state(self):
        url = self.client.authorize_url("store-1:123:abc")
        query = parse_qs(urlparse(url).query)
        self.assertEqual(query["state"], ["store-1:123:abc"])
        self.assertEqual(query["client_id"], ["cid"])
        self.assertEqual(query["response_type"], ["code"])

    def test_exchange_code_posts_form_with_basic_auth(self):
        self.http.post.return_value = _response(
            200, {"access_token": "at", "refresh_token": "rt", "expires_in": 2592000, "token_type": "Bearer"}
        )
        grant = self.client.exchange_code("the-code")
        self.assertEqual((grant.access_token, grant.refresh_token, grant.expires_in), ("at", "rt", 2592000))
        kwargs = self.http.post.call_args.kwargs
        self.assertEqual(kwargs["data"]["grant_type"], "authorization_code")
        self.assertEqual(kwargs["auth"], ("cid", "csecret"))

    def test_token_response_without_access_token(self):
        self.http.post.return_value = _response(200, {"token_type": "Bearer"})
        with self.assertRaises(ProviderError):
            self.client.refresh("rt")
        with self.assertRaises(ProviderError):
            self.client.refresh("")

    def test_quote_maps_services(self):
        self.http.request.return_value = _response(
            200,
            [
                {"id": 1, "name": "PAC", "price": "21.50", "delivery_time": 6, "company": {"name": "Correios"}},
                {"id": 3, "name": ".Package", "error": "Servico indisponivel", "company": {"name": "Jadlog"}},
            ],
        )
        quotes = self.client.quote("at", from_postal="20040002", to_postal="01310100", products=[])
        self.assertEqual([q.service_id for q in quotes], [1, 3])
        self.assertEqual(quotes[0].company, "Correios")
        self.assertEqual(quotes[0].delivery_days, 6)
        self.assertEqual(quotes[1].error, "Servico indisponivel")

    def test_cart_insert_and_print_need_ids_back(self):
        self.http.request.return_value = _response(200, {"id": "shp-1"})
        self.assertEqual(self.client.cart_insert("at", {"service": 1}), "shp-1")

        self.http.request.return_value = _response(200, {})
        with self.assertRaises(ProviderError):
            self.client.cart_insert("at", {"service": 1})
        with self.assertRaises(ProviderError):
            self.client.print_labels("at", ["shp-1"])

    def test_api_needs_token(self):
        with self.assertRaises(ProviderError):
            self.client.checkout("", ["shp-1"])
        self.http.request.assert_not_called()


class ProviderFactoryTestCase(unittest.TestCase):
    def test_mock_is_refused_in_production(self):
        with patch.dict(os.environ, {"MARKETPLACE_ENV": "production", "PAYMENTS_PROVIDER": "mock", "SHIPPING_PROVIDER": "mock"}):
            with self.assertRaises(IntegrationMisconfiguredError):
                build_payments_provider()
            with self.assertRaises(IntegrationMisconfiguredError):
                build_shipping_provider()

    def test_real_providers_need_credentials(self):
        env = {
            "MARKETPLACE_ENV": "dev",
            "PAYMENTS_PROVIDER": "mercadopago",
            "MP_ACCESS_TOKEN": "",
            "SHIPPING_PROVIDER": "melhorenvio",
            "MELHOR_ENVIO_CLIENT_ID": "",
        }
        with patch.dict(os.environ, env):
            with self.assertRaises(IntegrationMisconfiguredError):
                build_payments_provider()
            with self.assertRaises(IntegrationMisconfiguredError):
                build_shipping_provider()

    def test_configured_mercadopago(self):
        with patch.dict(os.environ, {"MARKETPLACE_ENV": "dev", "PAYMENTS_PROVIDER": "mercadopago", "MP_ACCESS_TOKEN": "TEST-9"}):
            provider = build_payments_provider()
        self.assertIsInstance(provider, MercadoPagoPaymentsProvider)
        self.assertEqual(provider.environment, "sandbox")


if __name__ == "__main__":
    unittest.main()
