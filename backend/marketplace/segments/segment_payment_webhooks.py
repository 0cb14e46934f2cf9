from __future__ import annotations

import os

from flask import Blueprint, current_app, jsonify, request

from marketplace.extensions import db
from marketplace.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from marketplace.integrations.payments.factory import build_payments_provider
from marketplace.services.payment_reconciliation_service import (
    ReconcileResult,
    WebhookOutcome,
    extract_payment_id,
    extract_topic,
    handle_notification,
    record_webhook_event,
    verify_webhook_signature,
    webhook_secret,
)
from marketplace.utils.observability import get_request_id

webhooks_bp = Blueprint("webhooks_bp", __name__, url_prefix="/api/payments")


def _queue_enabled() -> bool:
    return (os.getenv("PAYMENT_WEBHOOK_QUEUE") or "").strip().lower() in ("1", "true", "yes", "on")


def _respond(result: ReconcileResult):
    body = result.to_dict()
    rid = get_request_id()
    if rid:
        body["trace_id"] = rid
    return jsonify(body), result.http_status


def _try_enqueue(args, raw: bytes) -> ReconcileResult | None:
    """Hand a signed, well-formed payment notification to the worker. None means process inline."""
    topic = extract_topic(args, raw)
    payment_id = extract_payment_id(args, raw)
    if not payment_id or (topic and topic != "payment"):
        return None
    secret = webhook_secret()
    if secret and not verify_webhook_signature(
        secret=secret,
        signature_header=request.headers.get("x-signature", ""),
        request_id=request.headers.get("x-request-id", ""),
        data_id=payment_id,
    ):
        return None
    try:
        from marketplace.tasks.payment_tasks import reconcile_payment_task

        reconcile_payment_task.delay(payment_id=payment_id, trace_id=get_request_id())
    except Exception:
        current_app.logger.exception("payment_webhook_enqueue_failed payment_id=%s", payment_id)
        return None
    return ReconcileResult(WebhookOutcome.QUEUED, payment_id)


@webhooks_bp.get("/webhook")
def webhook_ping():
    return jsonify({"ok": True, "message": "webhook endpoint reachable"}), 200


@webhooks_bp.post("/webhook")
def payment_webhook():
    raw = request.get_data(cache=True) or b""
    args = request.args.to_dict()
    topic = extract_topic(args, raw)
    payment_id = extract_payment_id(args, raw)

    result = None
    if _queue_enabled():
        result = _try_enqueue(args, raw)
    if result is None:
        try:
            result, topic, payment_id = handle_notification(
                args=args,
                raw=raw,
                headers=request.headers,
                provider_factory=build_payments_provider,
            )
        except (IntegrationDisabledError, IntegrationMisconfiguredError) as exc:
            current_app.logger.error("payment_webhook_provider_unavailable err=%s", exc)
            result = ReconcileResult(WebhookOutcome.FAILED_PROVIDER, payment_id, str(exc))
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("payment_webhook_failed payment_id=%s", payment_id)
            result = ReconcileResult(WebhookOutcome.FAILED_ORDER_CREATION, payment_id, type(exc).__name__)

    current_app.logger.info(
        "payment_webhook_outcome payment_id=%s topic=%s state=%s status=%s",
        payment_id,
        topic,
        result.state,
        result.http_status,
    )
    record_webhook_event(provider="mercadopago", topic=topic, resource_id=payment_id, result=result, raw=raw)
    return _respond(result)
