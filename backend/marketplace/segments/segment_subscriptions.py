from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from marketplace.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError, ProviderError
from marketplace.integrations.payments.factory import build_payments_provider
from marketplace.models import SubscriptionPlan
from marketplace.services.errors import MarketplaceError
from marketplace.services.payment_reconciliation_service import extract_payment_id
from marketplace.services.subscription_service import subscribe, sync_preapproval
from marketplace.utils.request_context import RequestContext, requires_context

subscriptions_bp = Blueprint("subscriptions_bp", __name__, url_prefix="/api/subscriptions")


@subscriptions_bp.get("/plans")
def list_plans():
    plans = SubscriptionPlan.query.filter_by(active=True).order_by(SubscriptionPlan.id.asc()).all()
    return jsonify({"ok": True, "items": [p.to_dict() for p in plans]}), 200


@subscriptions_bp.post("")
@requires_context
def create_subscription(ctx: RequestContext):
    payload = request.get_json(silent=True) or {}
    try:
        provider = build_payments_provider()
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as exc:
        return jsonify({"ok": False, "error": "INTEGRATION_MISCONFIGURED", "message": str(exc)}), 500
    try:
        sub = subscribe(ctx, provider, payload)
    except MarketplaceError as exc:
        return jsonify(exc.to_dict()), exc.http_status
    return jsonify({"ok": True, "subscription": sub.to_dict()}), 200


@subscriptions_bp.post("/webhook")
def subscription_webhook():
    raw = request.get_data(cache=True) or b""
    preapproval_id = extract_payment_id(request.args.to_dict(), raw)
    if not preapproval_id:
        return jsonify({"ok": True, "ignored": True}), 200
    try:
        provider = build_payments_provider()
        sub = sync_preapproval(preapproval_id, provider)
    except (IntegrationDisabledError, IntegrationMisconfiguredError, ProviderError) as exc:
        current_app.logger.error("subscription_webhook_failed preapproval_id=%s err=%s", preapproval_id, exc)
        return jsonify({"ok": False, "error": "SUBSCRIPTION_SYNC_FAILED", "message": str(exc)}), 500
    return jsonify({"ok": True, "known": sub is not None, "status": sub.status if sub else ""}), 200
