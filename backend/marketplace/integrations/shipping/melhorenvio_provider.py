from __future__ import annotations

import requests

from marketplace.integrations.common import ProviderError, provider_timeout, response_json, response_message
from marketplace.integrations.shipping.base import ShippingProvider, ShippingQuote, TokenGrant

SANDBOX_URL = "https://sandbox.melhorenvio.com.br"


def _as_list(shipment_ids) -> list[str]:
    if isinstance(shipment_ids, (list, tuple)):
        return [str(x) for x in shipment_ids if str(x or "").strip()]
    return [str(shipment_ids)] if str(shipment_ids or "").strip() else []


class MelhorEnvioShippingProvider(ShippingProvider):
    name = "melhorenvio"

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        base_url: str = SANDBOX_URL,
        auth_url: str = SANDBOX_URL,
        scopes: str = "shipping-calculate",
        user_agent: str = "marketplace-backend",
        session: requests.Session | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.base_url = base_url.rstrip("/")
        self.auth_url = auth_url.rstrip("/")
        self.scopes = scopes
        self.user_agent = user_agent
        self.http = session or requests.Session()

    def authorize_url(self, state: str) -> str:
        req = requests.Request(
            "GET",
            f"{self.auth_url}/oauth/authorize",
            params={
                "client_id": self.client_id,
                "redirect_uri": self.redirect_uri,
                "response_type": "code",
                "scope": self.scopes,
                "state": state,
            },
        )
        return req.prepare().url

    def _token_request(self, form: dict) -> TokenGrant:
        try:
            r = self.http.post(
                f"{self.auth_url}/oauth/token",
                data=form,
                auth=(self.client_id, self.client_secret),
                headers={"Accept": "application/json", "User-Agent": self.user_agent},
                timeout=provider_timeout(),
            )
        except requests.RequestException as exc:
            raise ProviderError(self.name, None, f"transport: {exc}") from exc
        data = response_json(r)
        if r.status_code < 200 or r.status_code >= 300:
            raise ProviderError(self.name, r.status_code, response_message(data, r.status_code), payload=data)
        grant = TokenGrant.from_payload(data)
        if not grant.access_token:
            raise ProviderError(self.name, r.status_code, "token response without access_token", payload=data)
        return grant

    def exchange_code(self, code: str) -> TokenGrant:
        return self._token_request(
            {"grant_type": "authorization_code", "redirect_uri": self.redirect_uri, "code": code}
        )

    def refresh(self, refresh_token: str) -> TokenGrant:
        if not refresh_token:
            raise ProviderError(self.name, None, "refresh_token missing")
        return self._token_request({"grant_type": "refresh_token", "refresh_token": refresh_token})

    def _api(self, method: str, path: str, access_token: str, *, payload: dict | None = None, params=None):
        if not access_token:
            raise ProviderError(self.name, None, "access token missing")
        try:
            r = self.http.request(
                method,
                f"{self.base_url}{path}",
                headers={
                    "Accept": "application/json",
                    "Authorization": f"Bearer {access_token}",
                    "User-Agent": self.user_agent,
                },
                json=payload,
                params=params,
                timeout=provider_timeout(),
            )
        except requests.RequestException as exc:
            raise ProviderError(self.name, None, f"transport: {exc}") from exc
        if r.status_code < 200 or r.status_code >= 300:
            data = response_json(r)
            raise ProviderError(self.name, r.status_code, response_message(data, r.status_code), payload=data)
        if not r.content:
            return {}
        try:
            return r.json()
        except ValueError:
            return {"raw": r.text[:500]}

    def quote(self, access_token, *, from_postal, to_postal, products):
        data = self._api(
            "POST",
            "/api/v2/me/shipment/calculate",
            access_token,
            payload={"from": {"postal_code": from_postal}, "to": {"postal_code": to_postal}, "products": products},
        )
        rows = data if isinstance(data, list) else [data]
        out = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            company = row.get("company") or {}
            delivery = row.get("delivery_time")
            out.append(
                ShippingQuote(
                    service_id=int(row.get("id") or 0),
                    name=str(row.get("name") or ""),
                    company=str(company.get("name") or "") if isinstance(company, dict) else "",
                    price=str(row.get("custom_price") or row.get("price") or ""),
                    delivery_days=int(delivery) if str(delivery or "").isdigit() else None,
                    error=str(row.get("error") or ""),
                )
            )
        return out

    def cart_insert(self, access_token, payload):
        data = self._api("POST", "/api/v2/me/cart", access_token, payload=payload)
        shipment_id = str((data or {}).get("id") or "").strip() if isinstance(data, dict) else ""
        if not shipment_id:
            raise ProviderError(self.name, 200, "cart insert returned no shipment id", payload=data if isinstance(data, dict) else {})
        return shipment_id

    def checkout(self, access_token, shipment_ids):
        return self._api("POST", "/api/v2/me/shipment/checkout", access_token, payload={"orders": _as_list(shipment_ids)})

    def generate_labels(self, access_token, shipment_ids):
        orders = _as_list(shipment_ids)
        if not orders:
            raise ProviderError(self.name, None, "no shipment ids to generate")
        return self._api("POST", "/api/v2/me/shipment/generate", access_token, payload={"orders": orders})

    def print_labels(self, access_token, shipment_ids, mode="public"):
        orders = _as_list(shipment_ids)
        if not orders:
            raise ProviderError(self.name, None, "no shipment ids to print")
        data = self._api("POST", "/api/v2/me/shipment/print", access_token, payload={"mode": mode, "orders": orders})
        url = str((data or {}).get("url") or "").strip() if isinstance(data, dict) else ""
        if not url:
            raise ProviderError(self.name, 200, "print returned no url", payload=data if isinstance(data, dict) else {})
        return url

    def track(self, access_token, shipment_ids):
        orders = _as_list(shipment_ids)
        if not orders:
            raise ProviderError(self.name, None, "no shipment ids to track")
        return self._api("POST", "/api/v2/me/shipment/tracking", access_token, payload={"orders": orders})
