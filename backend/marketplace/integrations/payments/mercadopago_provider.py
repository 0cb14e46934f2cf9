from __future__ import annotations

import requests

from marketplace.integrations.common import ProviderError, provider_timeout, response_json, response_message
from marketplace.integrations.payments.base import (
    PaymentSnapshot,
    PaymentsProvider,
    PreapprovalResult,
    PreferenceResult,
)

API_BASE = "https://api.mercadopago.com"


def environment_for_token(access_token: str) -> str:
    return "sandbox" if (access_token or "").startswith("TEST-") else "production"


def _snapshot(data: dict) -> PaymentSnapshot:
    metadata = data.get("metadata")
    return PaymentSnapshot(
        id=str(data.get("id") or ""),
        status=str(data.get("status") or "").strip().lower(),
        status_detail=str(data.get("status_detail") or ""),
        metadata=metadata if isinstance(metadata, dict) else {},
        external_reference=str(data.get("external_reference") or ""),
        raw=data,
    )


def _preapproval(data: dict) -> PreapprovalResult:
    return PreapprovalResult(
        id=str(data.get("id") or ""),
        status=str(data.get("status") or "").strip().lower(),
        init_point=str(data.get("init_point") or data.get("sandbox_init_point") or ""),
        raw=data,
    )


class MercadoPagoPaymentsProvider(PaymentsProvider):
    name = "mercadopago"

    def __init__(self, access_token: str, *, api_base: str = API_BASE, session: requests.Session | None = None):
        self.access_token = access_token
        self.api_base = api_base.rstrip("/")
        self.environment = environment_for_token(access_token)
        self.http = session or requests.Session()

    def _headers(self, idempotency_key: str | None = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    def _call(self, method: str, path: str, *, payload: dict | None = None, idempotency_key: str | None = None) -> dict:
        url = f"{self.api_base}{path}"
        try:
            r = self.http.request(
                method,
                url,
                headers=self._headers(idempotency_key),
                json=payload,
                timeout=provider_timeout(),
            )
        except requests.RequestException as exc:
            raise ProviderError(self.name, None, f"transport: {exc}") from exc
        data = response_json(r)
        if r.status_code < 200 or r.status_code >= 300:
            raise ProviderError(self.name, r.status_code, response_message(data, r.status_code), payload=data)
        return data

    def create_preference(self, *, items, payer, back_urls, notification_url, metadata, external_reference=""):
        body = {
            "items": items,
            "payer": payer,
            "back_urls": back_urls,
            "auto_return": "approved",
            "metadata": metadata,
        }
        if notification_url:
            body["notification_url"] = notification_url
        if external_reference:
            body["external_reference"] = external_reference
        data = self._call("POST", "/checkout/preferences", payload=body)
        redirect = (data.get("init_point") or data.get("sandbox_init_point") or "").strip()
        if not redirect:
            raise ProviderError(self.name, 200, "preference created without init_point", payload=data)
        return PreferenceResult(
            redirect_url=redirect,
            preference_id=str(data.get("id") or ""),
            provider=self.name,
            raw=data,
        )

    def get_payment(self, payment_id):
        data = self._call("GET", f"/v1/payments/{payment_id}")
        return _snapshot(data)

    def create_direct_payment(self, *, token, amount, payment_method_id, installments, payer, metadata, issuer_id=None, idempotency_key=None):
        body = {
            "transaction_amount": float(amount),
            "token": token,
            "description": "Marketplace checkout",
            "installments": int(installments or 1),
            "payment_method_id": payment_method_id,
            "payer": payer,
            "metadata": metadata,
        }
        if issuer_id:
            body["issuer_id"] = issuer_id
        data = self._call("POST", "/v1/payments", payload=body, idempotency_key=idempotency_key)
        return _snapshot(data)

    def create_preapproval(self, *, reason, payer_email, card_token_id, amount, frequency, frequency_type, external_reference="", back_url=""):
        body = {
            "reason": reason,
            "payer_email": payer_email,
            "card_token_id": card_token_id,
            "auto_recurring": {
                "frequency": int(frequency),
                "frequency_type": frequency_type,
                "transaction_amount": float(amount),
                "currency_id": "BRL",
            },
            "status": "authorized",
        }
        if external_reference:
            body["external_reference"] = external_reference
        if back_url:
            body["back_url"] = back_url
        return _preapproval(self._call("POST", "/preapproval", payload=body))

    def get_preapproval(self, preapproval_id):
        return _preapproval(self._call("GET", f"/preapproval/{preapproval_id}"))
