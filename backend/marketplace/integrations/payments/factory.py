from __future__ import annotations

import os

from marketplace.integrations.common import IntegrationMisconfiguredError
from marketplace.integrations.payments.base import PaymentsProvider
from marketplace.integrations.payments.mercadopago_provider import MercadoPagoPaymentsProvider, environment_for_token
from marketplace.integrations.payments.mock_provider import MockPaymentsProvider


def _is_production() -> bool:
    return (os.getenv("MARKETPLACE_ENV") or "dev").strip().lower() in ("prod", "production")


def _provider_name() -> str:
    default = "mercadopago" if _is_production() else "mock"
    return (os.getenv("PAYMENTS_PROVIDER") or default).strip().lower()


def build_payments_provider() -> PaymentsProvider:
    provider = _provider_name()

    if provider == "mock":
        if _is_production():
            raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:mock payments in production")
        return MockPaymentsProvider()

    if provider != "mercadopago":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:payments_provider={provider}")

    access_token = (os.getenv("MP_ACCESS_TOKEN") or "").strip()
    if not access_token:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing MP_ACCESS_TOKEN")

    return MercadoPagoPaymentsProvider(access_token=access_token)


def payment_health() -> dict:
    provider = _provider_name()
    missing = []
    if provider == "mercadopago":
        for key in ("MP_ACCESS_TOKEN", "MP_WEBHOOK_URL", "MP_RESULT_URL"):
            if not (os.getenv(key) or "").strip():
                missing.append(key)
    status = "misconfigured" if missing else "configured"
    if provider not in ("mercadopago", "mock"):
        status = "misconfigured"
    return {
        "status": status,
        "provider": provider,
        "environment": environment_for_token(os.getenv("MP_ACCESS_TOKEN") or "") if provider == "mercadopago" else "sandbox",
        "webhook_signature": bool((os.getenv("MP_WEBHOOK_SECRET") or "").strip()),
        "missing": missing,
    }
