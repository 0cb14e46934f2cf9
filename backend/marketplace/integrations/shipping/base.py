from __future__ import annotations

from dataclasses import dataclass


@dataclass
class TokenGrant:
    access_token: str
    refresh_token: str | None
    token_type: str
    expires_in: int
    scope: str = ""
    raw: dict | None = None

    @classmethod
    def from_payload(cls, data: dict) -> "TokenGrant":
        try:
            expires_in = int(data.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0
        return cls(
            access_token=str(data.get("access_token") or ""),
            refresh_token=(str(data.get("refresh_token")) if data.get("refresh_token") else None),
            token_type=str(data.get("token_type") or "Bearer"),
            expires_in=expires_in,
            scope=str(data.get("scope") or ""),
            raw=data,
        )


@dataclass
class ShippingQuote:
    service_id: int
    name: str
    company: str
    price: str
    delivery_days: int | None = None
    error: str = ""


class ShippingProvider:
    name = "unknown"

    def authorize_url(self, state: str) -> str:
        raise NotImplementedError

    def exchange_code(self, code: str) -> TokenGrant:
        raise NotImplementedError

    def refresh(self, refresh_token: str) -> TokenGrant:
        raise NotImplementedError

    def quote(self, access_token: str, *, from_postal: str, to_postal: str, products: list[dict]) -> list[ShippingQuote]:
        raise NotImplementedError

    def cart_insert(self, access_token: str, payload: dict) -> str:
        raise NotImplementedError

    def checkout(self, access_token: str, shipment_ids: list[str]) -> dict:
        raise NotImplementedError

    def generate_labels(self, access_token: str, shipment_ids: list[str]) -> dict:
        raise NotImplementedError

    def print_labels(self, access_token: str, shipment_ids: list[str], mode: str = "public") -> str:
        raise NotImplementedError

    def track(self, access_token: str, shipment_ids: list[str]) -> dict:
        raise NotImplementedError
