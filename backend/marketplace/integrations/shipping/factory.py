from __future__ import annotations

import os

from marketplace.integrations.common import IntegrationMisconfiguredError
from marketplace.integrations.shipping.base import ShippingProvider
from marketplace.integrations.shipping.melhorenvio_provider import SANDBOX_URL, MelhorEnvioShippingProvider
from marketplace.integrations.shipping.mock_provider import MockShippingProvider


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _is_production() -> bool:
    return _env("MARKETPLACE_ENV", "dev").lower() in ("prod", "production")


def _provider_name() -> str:
    return _env("SHIPPING_PROVIDER", "melhorenvio" if _is_production() else "mock").lower()


def build_shipping_provider() -> ShippingProvider:
    provider = _provider_name()

    if provider == "mock":
        if _is_production():
            raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:mock shipping in production")
        return MockShippingProvider()

    if provider != "melhorenvio":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:shipping_provider={provider}")

    client_id = _env("MELHOR_ENVIO_CLIENT_ID")
    client_secret = _env("MELHOR_ENVIO_CLIENT_SECRET")
    if not client_id or not client_secret:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing MELHOR_ENVIO_CLIENT_ID/SECRET")
    redirect_uri = _env("MELHOR_ENVIO_REDIRECT_URI")
    if not redirect_uri:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing MELHOR_ENVIO_REDIRECT_URI")

    return MelhorEnvioShippingProvider(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        base_url=_env("MELHOR_ENVIO_BASE_URL", SANDBOX_URL),
        auth_url=_env("MELHOR_ENVIO_AUTH_URL", SANDBOX_URL),
        scopes=_env("MELHOR_ENVIO_SCOPES", "shipping-calculate"),
        user_agent=_env("MELHOR_ENVIO_USER_AGENT", "marketplace-backend"),
    )


def shipping_health() -> dict:
    provider = _provider_name()
    missing = []
    if provider == "melhorenvio":
        for key in ("MELHOR_ENVIO_CLIENT_ID", "MELHOR_ENVIO_CLIENT_SECRET", "MELHOR_ENVIO_REDIRECT_URI"):
            if not _env(key):
                missing.append(key)
    return {
        "status": "misconfigured" if missing or provider not in ("melhorenvio", "mock") else "configured",
        "provider": provider,
        "base_url": _env("MELHOR_ENVIO_BASE_URL", SANDBOX_URL) if provider == "melhorenvio" else "",
        "missing": missing,
    }
