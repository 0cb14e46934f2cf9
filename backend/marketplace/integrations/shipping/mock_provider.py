from __future__ import annotations

import uuid
from urllib.parse import urlencode

from marketplace.integrations.common import ProviderError
from marketplace.integrations.shipping.base import ShippingProvider, ShippingQuote, TokenGrant


class MockShippingProvider(ShippingProvider):
    """Records calls; `fail_on` names a method that raises a ProviderError."""

    name = "mock"

    def __init__(self, *, expires_in: int = 3600, fail_on: str | None = None):
        self.expires_in = expires_in
        self.fail_on = fail_on
        self.calls: list[tuple[str, dict]] = []

    def _record(self, method: str, **kwargs):
        self.calls.append((method, kwargs))
        if self.fail_on == method:
            raise ProviderError(self.name, 500, f"{method} failed")

    def called(self, method: str) -> list[dict]:
        return [kw for name, kw in self.calls if name == method]

    def _grant(self) -> TokenGrant:
        suffix = uuid.uuid4().hex[:8]
        return TokenGrant(
            access_token=f"access_{suffix}",
            refresh_token=f"refresh_{suffix}",
            token_type="Bearer",
            expires_in=self.expires_in,
        )

    def authorize_url(self, state):
        return "https://example.com/mock/oauth/authorize?" + urlencode({"state": state})

    def exchange_code(self, code):
        self._record("exchange_code", code=code)
        return self._grant()

    def refresh(self, refresh_token):
        self._record("refresh", refresh_token=refresh_token)
        return self._grant()

    def quote(self, access_token, *, from_postal, to_postal, products):
        self._record("quote", access_token=access_token, from_postal=from_postal, to_postal=to_postal, products=products)
        return [ShippingQuote(service_id=1, name="PAC", company="Correios", price="21.50", delivery_days=6)]

    def cart_insert(self, access_token, payload):
        self._record("cart_insert", access_token=access_token, payload=payload)
        return f"shp_{uuid.uuid4().hex[:10]}"

    def checkout(self, access_token, shipment_ids):
        self._record("checkout", access_token=access_token, shipment_ids=list(shipment_ids))
        return {"purchase": {"orders": [{"id": sid} for sid in shipment_ids]}}

    def generate_labels(self, access_token, shipment_ids):
        self._record("generate_labels", access_token=access_token, shipment_ids=list(shipment_ids))
        return {sid: {"status": True} for sid in shipment_ids}

    def print_labels(self, access_token, shipment_ids, mode="public"):
        self._record("print_labels", access_token=access_token, shipment_ids=list(shipment_ids), mode=mode)
        return "https://example.com/mock/labels/" + ",".join(shipment_ids)

    def track(self, access_token, shipment_ids):
        self._record("track", access_token=access_token, shipment_ids=list(shipment_ids))
        return {sid: {"status": "posted", "tracking": "BR123456789"} for sid in shipment_ids}
