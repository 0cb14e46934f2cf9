from __future__ import annotations

from flask import Blueprint, current_app, jsonify, redirect, request

from marketplace.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError, ProviderError
from marketplace.integrations.shipping.factory import build_shipping_provider
from marketplace.services.errors import MarketplaceError, OAuthStateError
from marketplace.services.shipping_label_service import quote_cart
from marketplace.services.shipping_token_service import begin_oauth, complete_oauth, store_owned_by
from marketplace.services.subscription_service import requires_active_subscription
from marketplace.utils.request_context import RequestContext, requires_context

shipping_bp = Blueprint("shipping_bp", __name__, url_prefix="/api/shipping")


def _misconfigured(exc: Exception):
    return jsonify({"ok": False, "error": "INTEGRATION_MISCONFIGURED", "message": str(exc)}), 500


@shipping_bp.get("/oauth/connect")
@requires_context
@requires_active_subscription
def oauth_connect(ctx: RequestContext):
    store = store_owned_by(ctx.party, (request.args.get("store_id") or "").strip() or None)
    if store is None:
        return jsonify({"ok": False, "error": "NO_STORE", "message": "Seller has no store"}), 400
    try:
        provider = build_shipping_provider()
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as exc:
        return _misconfigured(exc)
    url = begin_oauth(store, ctx.party, provider)
    current_app.logger.info("shipping_oauth_started store_id=%s", store.id)
    return redirect(url, code=302)


@shipping_bp.get("/oauth/callback")
@requires_context
def oauth_callback(ctx: RequestContext):
    error = (request.args.get("error") or "").strip()
    if error:
        return jsonify({"ok": False, "error": "OAUTH_DENIED", "message": request.args.get("error_description") or error}), 400
    code = (request.args.get("code") or "").strip()
    state = (request.args.get("state") or "").strip()
    if not code:
        return jsonify({"ok": False, "error": "MISSING_CODE", "message": "Authorization code missing"}), 400
    try:
        provider = build_shipping_provider()
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as exc:
        return _misconfigured(exc)
    try:
        token = complete_oauth(code=code, state=state, owner=ctx.party, provider=provider)
    except OAuthStateError as exc:
        current_app.logger.warning("shipping_oauth_state_rejected party=%s reason=%s", ctx.party.key, exc.message)
        return jsonify(exc.to_dict()), exc.http_status
    except ProviderError as exc:
        return jsonify({"ok": False, "error": "PROVIDER_ERROR", "message": exc.message}), 502
    return jsonify(
        {
            "ok": True,
            "store_id": token.store_id,
            "connected": True,
            "expires_at": token.effective_expires_at().isoformat(),
        }
    ), 200


@shipping_bp.post("/quote")
@requires_context
def quote(ctx: RequestContext):
    payload = request.get_json(silent=True) or {}
    try:
        provider = build_shipping_provider()
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as exc:
        return _misconfigured(exc)
    try:
        stores = quote_cart(ctx.party, provider, to_postal=payload.get("to_postal_code"))
    except MarketplaceError as exc:
        return jsonify(exc.to_dict()), exc.http_status
    return jsonify({"ok": True, "stores": stores}), 200
