from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from marketplace.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from marketplace.integrations.payments.factory import build_payments_provider
from marketplace.services.errors import MarketplaceError, OrderCreationError
from marketplace.services.fulfillment_service import run_fulfillment
from marketplace.services.order_service import OrderStatus
from marketplace.services.payment_service import create_checkout_preference, process_direct_charge
from marketplace.utils.idempotency import get_idempotency_key, lookup_response, release_key, store_response
from marketplace.utils.request_context import RequestContext, requires_context

checkout_bp = Blueprint("checkout_bp", __name__, url_prefix="/api/checkout")


def _integration_error(exc: Exception):
    if isinstance(exc, IntegrationDisabledError):
        return jsonify({"ok": False, "error": "INTEGRATION_DISABLED", "message": str(exc)}), 503
    return jsonify({"ok": False, "error": "INTEGRATION_MISCONFIGURED", "message": str(exc)}), 500


@checkout_bp.post("/finalize")
@requires_context
def finalize(ctx: RequestContext):
    payload = request.get_json(silent=True) or {}
    idem = lookup_response(ctx.party.key, "/api/checkout/finalize", payload)
    if idem and idem[0] in ("hit", "conflict", "required"):
        return jsonify(idem[1]), idem[2]
    idem_row = idem[1] if idem and idem[0] == "miss" else None

    try:
        result = run_fulfillment(ctx.party, OrderStatus.CREATED)
    except OrderCreationError as exc:
        current_app.logger.error("checkout_finalize_failed buyer=%s store_id=%s", ctx.party.key, exc.store_id)
        body = exc.to_dict()
        body["orders"] = [o.to_dict() for o in exc.created]
        # fulfilled stores left the cart, so the same key may finish the rest
        if idem_row is not None:
            release_key(idem_row)
        return jsonify(body), exc.http_status
    except MarketplaceError as exc:
        if idem_row is not None:
            release_key(idem_row)
        return jsonify(exc.to_dict()), exc.http_status

    body = {"ok": True, **result.to_dict()}
    if idem_row is not None:
        store_response(idem_row, body, 200)
    return jsonify(body), 200


@checkout_bp.post("/preference")
@requires_context
def preference(ctx: RequestContext):
    payload = request.get_json(silent=True) or {}
    try:
        provider = build_payments_provider()
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as exc:
        return _integration_error(exc)
    try:
        out = create_checkout_preference(ctx, provider, payload.get("payer"))
    except MarketplaceError as exc:
        return jsonify(exc.to_dict()), exc.http_status
    return jsonify({"ok": True, **out}), 200


@checkout_bp.post("/direct-charge")
@requires_context
def direct_charge(ctx: RequestContext):
    payload = request.get_json(silent=True) or {}
    try:
        provider = build_payments_provider()
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as exc:
        return _integration_error(exc)
    try:
        body, status = process_direct_charge(ctx, provider, payload, idempotency_key=get_idempotency_key())
    except MarketplaceError as exc:
        return jsonify(exc.to_dict()), exc.http_status
    return jsonify(body), status
