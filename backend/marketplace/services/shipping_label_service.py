from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from marketplace.extensions import db
from marketplace.integrations.common import ProviderError
from marketplace.integrations.shipping.base import ShippingProvider
from marketplace.models import Order, Product, Store, load_profile
from marketplace.services.cart_service import load_cart_snapshot
from marketplace.services.checkout_service import parse_quantity
from marketplace.services.errors import (
    LabelPipelineError,
    PostalCodeRequiredError,
    ShippingTokenMissingError,
)
from marketplace.services.fulfillment_service import HookOutcome, report_hook
from marketplace.services.shipping_token_service import get_valid_access_token
from marketplace.utils.request_context import AccountKind, PartyRef

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        return float(raw) if raw else float(default)
    except ValueError:
        return float(default)


def default_service_id() -> int:
    return int(_env_float("SHIPPING_DEFAULT_SERVICE_ID", 1))


def default_dimensions() -> dict:
    return {
        "height": _env_float("SHIPPING_DEFAULT_HEIGHT_CM", 10),
        "width": _env_float("SHIPPING_DEFAULT_WIDTH_CM", 15),
        "length": _env_float("SHIPPING_DEFAULT_LENGTH_CM", 20),
    }


def default_item_weight() -> float:
    return _env_float("SHIPPING_DEFAULT_ITEM_WEIGHT_KG", 0.3)


def party_address(party: PartyRef | None) -> dict:
    """Sender/receiver block built from the party's PF or PJ profile."""
    profile = load_profile(party)
    if profile is None:
        raise LabelPipelineError("resolve_parties", f"profile not found for {party.key if party else 'unknown party'}")
    out = {
        "name": profile.display_name,
        "phone": profile.phone or "",
        "email": profile.email or "",
        "country_id": "BR",
    }
    out.update(profile.address_dict())
    doc = profile.identification()["number"]
    if party.kind == AccountKind.PJ:
        out["company_document"] = doc
        out["state_register"] = profile.state_register or ""
    else:
        out["document"] = doc
    if not out["postal_code"]:
        raise LabelPipelineError("resolve_parties", f"postal code missing for {party.key}")
    return out


def _line_weight(product_id: int, quantity: int) -> float:
    product = db.session.get(Product, int(product_id))
    weight = product.weight_kg if product is not None and product.weight_kg else default_item_weight()
    return float(weight) * int(quantity)


def build_cart_payload(order: Order, *, service_id: int, sender: dict, receiver: dict) -> dict:
    products = []
    total_weight = 0.0
    for line in order.lines:
        products.append(
            {
                "name": line.product_name or f"Produto {line.product_id}",
                "quantity": int(line.quantity),
                "unitary_value": float(Decimal(line.unit_price_cents) / 100),
            }
        )
        total_weight += _line_weight(line.product_id, line.quantity)
    volume = dict(default_dimensions())
    volume["weight"] = round(max(total_weight, 0.01), 3)
    return {
        "service": int(service_id),
        "from": sender,
        "to": receiver,
        "products": products,
        "volumes": [volume],
        "options": {
            "insurance_value": float(Decimal(order.total_price or 0)),
            "receipt": False,
            "own_hand": False,
            "reverse": False,
            "non_commercial": True,
            "platform": "marketplace",
            "tags": [{"tag": order.code, "url": None}],
        },
    }


def _quote_products(order: Order) -> list[dict]:
    dims = default_dimensions()
    out = []
    for line in order.lines:
        row = {"id": str(line.product_id), "quantity": int(line.quantity)}
        row.update(dims)
        row["weight"] = _line_weight(line.product_id, 1)
        row["insurance_value"] = float(Decimal(line.unit_price_cents) / 100)
        out.append(row)
    return out


@dataclass
class LabelResult:
    order_id: int
    shipment_id: str
    label_url: str
    company: str
    service: str
    hooks: list[HookOutcome]

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "shipment_id": self.shipment_id,
            "label_url": self.label_url,
            "company": self.company,
            "service": self.service,
            "hooks": [h.to_dict() for h in self.hooks],
        }


def _step(step: str, fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except ProviderError as exc:
        logger.warning("label_pipeline_step_failed step=%s status=%s err=%s", step, exc.status, exc.message)
        raise LabelPipelineError(step, f"{step} failed: {exc.message}") from exc


def generate_label_for_order(
    order: Order,
    provider: ShippingProvider,
    *,
    service_id: int | None = None,
    actor: str | None = None,
) -> LabelResult:
    """Quote, buy, generate and print a label for one order.

    Each call buys a new shipment; callers guard against relabelling.
    """
    service_id = int(service_id or order.me_service_id or default_service_id())
    try:
        token = get_valid_access_token(order.store_id, provider)
    except ProviderError as exc:
        raise LabelPipelineError("token_refresh", f"token refresh failed: {exc.message}") from exc

    sender = party_address(order.seller_ref)
    receiver = party_address(order.buyer_ref)

    quotes = _step(
        "quote",
        provider.quote,
        token,
        from_postal=sender["postal_code"],
        to_postal=receiver["postal_code"],
        products=_quote_products(order),
    )
    chosen = next((q for q in quotes if int(q.service_id) == service_id and not q.error), None)
    if chosen is None:
        raise LabelPipelineError("quote", f"service {service_id} not available for this route")

    payload = build_cart_payload(order, service_id=service_id, sender=sender, receiver=receiver)
    shipment_id = _step("cart_insert", provider.cart_insert, token, payload)
    _step("checkout", provider.checkout, token, [shipment_id])
    _step("generate", provider.generate_labels, token, [shipment_id])
    label_url = _step("print", provider.print_labels, token, [shipment_id], mode="public")

    hook = HookOutcome("label_metadata_persist", True, f"order:{order.id}", shipment_id)
    try:
        order.me_order_id = shipment_id
        order.me_service_id = service_id
        order.me_company = chosen.company[:80]
        order.me_service = chosen.name[:80]
        order.me_label_url = label_url
        order.label_generated_at = datetime.utcnow()
        db.session.add(order)
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        hook = HookOutcome("label_metadata_persist", False, f"order:{order.id}", f"shipment={shipment_id} err={exc}")
    report_hook(hook, actor=actor)
    logger.info("label_generated order_id=%s shipment_id=%s", order.id, shipment_id)
    return LabelResult(
        order_id=int(order.id),
        shipment_id=shipment_id,
        label_url=label_url,
        company=chosen.company,
        service=chosen.name,
        hooks=[hook],
    )


def quote_cart(buyer: PartyRef, provider: ShippingProvider, *, to_postal: str | None = None) -> list[dict]:
    """Per-store quotes for the buyer's cart. Stores that cannot be quoted are reported, not fatal."""
    receiver_postal = "".join(ch for ch in str(to_postal or "") if ch.isdigit())
    if not receiver_postal:
        profile = load_profile(buyer)
        receiver_postal = profile.address_dict()["postal_code"] if profile is not None else ""
    if not receiver_postal:
        raise PostalCodeRequiredError("Destination postal code required")

    per_store: dict[str, list[dict]] = {}
    for line in load_cart_snapshot(buyer):
        product = line.product
        if product is None or not product.store_id:
            continue
        row = {"id": str(product.id), "quantity": parse_quantity(line.quantity)}
        row.update(default_dimensions())
        row["weight"] = float(product.weight_kg or default_item_weight())
        row["insurance_value"] = float(product.price)
        per_store.setdefault(product.store_id, []).append(row)

    out = []
    for store_id, products in per_store.items():
        store = db.session.get(Store, store_id)
        entry = {"store_id": store_id, "store_name": store.name if store else "", "quotes": [], "error": ""}
        try:
            token = get_valid_access_token(store_id, provider)
            sender = load_profile(store.owner) if store is not None else None
            from_postal = sender.address_dict()["postal_code"] if sender is not None else ""
            if not from_postal:
                raise LabelPipelineError("resolve_parties", "store has no origin postal code")
            quotes = provider.quote(token, from_postal=from_postal, to_postal=receiver_postal, products=products)
            entry["quotes"] = [
                {
                    "service_id": q.service_id,
                    "name": q.name,
                    "company": q.company,
                    "price": q.price,
                    "delivery_days": q.delivery_days,
                    "error": q.error,
                }
                for q in quotes
            ]
        except (ShippingTokenMissingError, LabelPipelineError) as exc:
            entry["error"] = exc.code
        except ProviderError as exc:
            logger.warning("shipping_quote_failed store_id=%s err=%s", store_id, exc.message)
            entry["error"] = "PROVIDER_ERROR"
        out.append(entry)
    return out


def track_order(order: Order, provider: ShippingProvider) -> dict:
    if not order.me_order_id:
        raise LabelPipelineError("track", "order has no shipment")
    token = get_valid_access_token(order.store_id, provider)
    data = _step("track", provider.track, token, [order.me_order_id])
    if isinstance(data, dict) and order.me_order_id in data:
        return data[order.me_order_id]
    return data
