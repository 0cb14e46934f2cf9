from __future__ import annotations

import os


class IntegrationDisabledError(RuntimeError):
    pass


class IntegrationMisconfiguredError(RuntimeError):
    pass


class ProviderError(RuntimeError):
    """Non-2xx or malformed response from an external provider."""

    def __init__(self, provider: str, status: int | None, message: str, *, payload: dict | None = None):
        self.provider = provider
        self.status = status
        self.message = message or ""
        self.payload = payload or {}
        super().__init__(f"{provider.upper()}_FAILED:{status}:{self.message}")


def provider_timeout() -> float:
    raw = (os.getenv("PROVIDER_HTTP_TIMEOUT_SECONDS") or "").strip()
    try:
        value = float(raw) if raw else 5.0
    except ValueError:
        value = 5.0
    return max(0.5, value)


def response_json(resp) -> dict:
    if not resp.content:
        return {}
    try:
        data = resp.json()
    except ValueError:
        return {"raw": resp.text[:500]}
    return data if isinstance(data, dict) else {"payload": data}


def response_message(data: dict, status: int) -> str:
    for key in ("message", "error_description", "error", "cause"):
        val = data.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
        if isinstance(val, list) and val:
            first = val[0]
            if isinstance(first, dict):
                return str(first.get("description") or first.get("message") or first)
            return str(first)
    return f"HTTP {status}"
