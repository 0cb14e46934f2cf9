from __future__ import annotations

import logging
import os
from functools import wraps

from flask import jsonify

from marketplace.extensions import db
from marketplace.integrations.common import ProviderError
from marketplace.integrations.payments.base import PaymentsProvider
from marketplace.models import Subscription, SubscriptionPlan
from marketplace.services.errors import MarketplaceError
from marketplace.utils.request_context import PartyRef, RequestContext

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("authorized", "active")

FREQUENCIES = {
    "monthly": (1, "months"),
    "mensal": (1, "months"),
    "weekly": (7, "days"),
    "semanal": (7, "days"),
}


class SubscriptionError(MarketplaceError):
    def __init__(self, code: str, message: str, http_status: int = 400):
        self.code = code
        self.http_status = http_status
        super().__init__(message)


def frequency_for(periodicity: str | None) -> tuple[int, str]:
    return FREQUENCIES.get((periodicity or "").strip().lower(), (1, "months"))


def active_subscription(party: PartyRef, plan_id: int | None = None) -> Subscription | None:
    query = Subscription.query.filter(
        Subscription.subscriber_id == party.id,
        Subscription.subscriber_type == party.kind,
        Subscription.status.in_(ACTIVE_STATUSES),
    )
    if plan_id is not None:
        query = query.filter(Subscription.plan_id == int(plan_id))
    return query.first()


def subscribe(ctx: RequestContext, provider: PaymentsProvider, form: dict) -> Subscription:
    form = form if isinstance(form, dict) else {}
    plan_id = form.get("plan_id")
    card_token_id = str(form.get("card_token_id") or "").strip()
    payer_email = str(form.get("payer_email") or "").strip()
    if not plan_id or not card_token_id or not payer_email:
        raise SubscriptionError("INCOMPLETE", "plan_id, card_token_id and payer_email are required", 400)
    try:
        plan = db.session.get(SubscriptionPlan, int(plan_id))
    except (TypeError, ValueError):
        plan = None
    if plan is None or not plan.active:
        raise SubscriptionError("PLAN_NOT_FOUND", "Plan not found", 404)
    if active_subscription(ctx.party, plan.id) is not None:
        raise SubscriptionError("ALREADY_SUBSCRIBED", "An active subscription to this plan already exists", 409)

    frequency, frequency_type = frequency_for(plan.periodicity)
    try:
        pre = provider.create_preapproval(
            reason=plan.name or "Marketplace subscription",
            payer_email=payer_email,
            card_token_id=card_token_id,
            amount=plan.price,
            frequency=frequency,
            frequency_type=frequency_type,
            external_reference=f"{ctx.party.kind}_{ctx.party.id}_plan_{plan.id}",
            back_url=(os.getenv("MP_SUBSCRIPTIONS_BACK_URL") or "").strip(),
        )
    except ProviderError as exc:
        logger.warning("preapproval_create_failed party=%s plan_id=%s err=%s", ctx.party.key, plan.id, exc.message)
        raise SubscriptionError("PROVIDER_ERROR", exc.message, 500) from exc

    sub = Subscription(
        subscriber_id=ctx.party.id,
        subscriber_type=ctx.party.kind,
        plan_id=plan.id,
        preapproval_id=pre.id or None,
        status=pre.status or "pending",
        init_point=pre.init_point or None,
    )
    db.session.add(sub)
    db.session.commit()
    logger.info("subscription_created party=%s plan_id=%s status=%s", ctx.party.key, plan.id, sub.status)
    return sub


def sync_preapproval(preapproval_id: str, provider: PaymentsProvider) -> Subscription | None:
    """Refresh a stored subscription's status from the provider. Unknown ids return None."""
    pre = provider.get_preapproval(preapproval_id)
    sub = Subscription.query.filter_by(preapproval_id=str(preapproval_id)).first()
    if sub is None:
        logger.info("preapproval_unknown preapproval_id=%s", preapproval_id)
        return None
    if pre.status and pre.status != sub.status:
        logger.info("subscription_status_changed id=%s %s->%s", sub.id, sub.status, pre.status)
        sub.status = pre.status
        db.session.add(sub)
        db.session.commit()
    return sub


def _subscription_required() -> bool:
    raw = (os.getenv("REQUIRE_SELLER_SUBSCRIPTION") or "").strip().lower()
    return raw in ("1", "true", "yes", "on")


def requires_active_subscription(view):
    """Gate a context-taking view behind an authorized/active subscription.

    Applies only when REQUIRE_SELLER_SUBSCRIPTION is on.
    """

    @wraps(view)
    def _wrapped(ctx: RequestContext, *args, **kwargs):
        if _subscription_required() and active_subscription(ctx.party) is None:
            return jsonify({"ok": False, "error": "SUBSCRIPTION_REQUIRED", "message": "An active subscription is required"}), 402
        return view(ctx, *args, **kwargs)

    return _wrapped
