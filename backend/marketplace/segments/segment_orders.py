from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from marketplace.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError, ProviderError
from marketplace.integrations.shipping.factory import build_shipping_provider
from marketplace.services.errors import MarketplaceError
from marketplace.services.order_service import (
    advance_order_status,
    is_party_to_order,
    load_order,
    orders_for_buyer,
    orders_for_seller,
)
from marketplace.services.shipping_label_service import generate_label_for_order, track_order
from marketplace.services.subscription_service import requires_active_subscription
from marketplace.utils.request_context import RequestContext, requires_context

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api/orders")


def _not_found():
    return jsonify({"ok": False, "error": "NOT_FOUND", "message": "Order not found"}), 404


@orders_bp.get("/mine")
@requires_context
def my_orders(ctx: RequestContext):
    items = [o.to_dict() for o in orders_for_buyer(ctx.party)]
    return jsonify({"ok": True, "items": items, "count": len(items)}), 200


@orders_bp.get("/sales")
@requires_context
def my_sales(ctx: RequestContext):
    items = [o.to_dict() for o in orders_for_seller(ctx.party)]
    return jsonify({"ok": True, "items": items, "count": len(items)}), 200


@orders_bp.post("/<int:order_id>/advance-status")
@requires_context
def advance_status(ctx: RequestContext, order_id: int):
    order = load_order(order_id)
    if order is None or not is_party_to_order(order, ctx.party):
        return _not_found()
    previous = order.status
    try:
        status = advance_order_status(order, actor=ctx.party.key)
    except MarketplaceError as exc:
        return jsonify(exc.to_dict()), exc.http_status
    return jsonify({"ok": True, "order_id": order_id, "previous": previous, "status": status}), 200


@orders_bp.post("/<int:order_id>/generate-label")
@requires_context
@requires_active_subscription
def generate_label(ctx: RequestContext, order_id: int):
    order = load_order(order_id)
    if order is None or order.seller_ref != ctx.party:
        return _not_found()
    payload = request.get_json(silent=True) or {}
    if order.me_order_id and not bool(payload.get("force")):
        return jsonify(
            {
                "ok": False,
                "error": "LABEL_EXISTS",
                "message": "Order already has a label; send force=true to buy a new shipment",
                "label_url": order.me_label_url or "",
            }
        ), 409
    try:
        provider = build_shipping_provider()
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as exc:
        return jsonify({"ok": False, "error": "INTEGRATION_MISCONFIGURED", "message": str(exc)}), 500
    try:
        result = generate_label_for_order(order, provider, service_id=payload.get("service_id"), actor=ctx.party.key)
    except MarketplaceError as exc:
        current_app.logger.warning("label_generation_failed order_id=%s err=%s", order_id, exc.message)
        return jsonify(exc.to_dict()), exc.http_status
    return jsonify({"ok": True, **result.to_dict()}), 200


@orders_bp.get("/<int:order_id>/tracking")
@requires_context
def tracking(ctx: RequestContext, order_id: int):
    order = load_order(order_id)
    if order is None or not is_party_to_order(order, ctx.party):
        return _not_found()
    try:
        provider = build_shipping_provider()
        data = track_order(order, provider)
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as exc:
        return jsonify({"ok": False, "error": "INTEGRATION_MISCONFIGURED", "message": str(exc)}), 500
    except MarketplaceError as exc:
        return jsonify(exc.to_dict()), exc.http_status
    except ProviderError as exc:
        return jsonify({"ok": False, "error": "PROVIDER_ERROR", "message": exc.message}), 502
    return jsonify({"ok": True, "order_id": order_id, "shipment_id": order.me_order_id, "tracking": data}), 200
