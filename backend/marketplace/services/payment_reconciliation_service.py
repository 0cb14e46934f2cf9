from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime

from marketplace.extensions import db
from marketplace.integrations.common import ProviderError
from marketplace.integrations.payments.base import PaymentsProvider
from marketplace.models import WebhookEvent
from marketplace.services import cart_service, payment_ledger_service as ledger
from marketplace.services.errors import (
    CartLoadError,
    InsufficientStockError,
    NothingToCheckoutError,
    OrderCreationError,
)
from marketplace.services.fulfillment_service import run_fulfillment
from marketplace.services.order_service import OrderStatus
from marketplace.utils.events import log_event
from marketplace.utils.observability import get_request_id
from marketplace.utils.request_context import PartyRef

logger = logging.getLogger(__name__)

DIRECT_CHARGE_FLOW = "direct_charge"


class WebhookOutcome:
    SKIPPED_NO_ID = "skipped-no-id"
    SKIPPED_DUPLICATE = "skipped-duplicate"
    SKIPPED_NOT_APPROVED = "skipped-not-approved"
    SKIPPED_EMPTY_CART = "skipped-empty-cart"
    SKIPPED_UNSUPPORTED_TOPIC = "skipped-unsupported-topic"
    FAILED_METADATA = "failed-metadata"
    FAILED_SIGNATURE = "failed-signature"
    FAILED_PROVIDER = "failed-provider"
    FAILED_ORDER_CREATION = "failed-order-creation"
    COMPLETED = "completed"
    QUEUED = "queued"

    HTTP_STATUS = {
        SKIPPED_NO_ID: 200,
        SKIPPED_DUPLICATE: 200,
        SKIPPED_NOT_APPROVED: 200,
        SKIPPED_EMPTY_CART: 200,
        SKIPPED_UNSUPPORTED_TOPIC: 200,
        FAILED_METADATA: 400,
        FAILED_SIGNATURE: 401,
        FAILED_PROVIDER: 502,
        FAILED_ORDER_CREATION: 500,
        COMPLETED: 200,
        QUEUED: 200,
    }
    RETRYABLE = {FAILED_PROVIDER, FAILED_ORDER_CREATION}


@dataclass
class ReconcileResult:
    state: str
    payment_id: str = ""
    detail: str = ""
    order_ids: list[int] = field(default_factory=list)

    @property
    def http_status(self) -> int:
        return WebhookOutcome.HTTP_STATUS.get(self.state, 500)

    @property
    def retryable(self) -> bool:
        return self.state in WebhookOutcome.RETRYABLE

    def to_dict(self) -> dict:
        return {
            "ok": self.http_status < 400,
            "state": self.state,
            "payment_id": self.payment_id,
            "detail": self.detail,
            "order_ids": list(self.order_ids),
        }


def _parse_body(raw: bytes | None) -> dict:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw.decode("utf-8", errors="ignore") or "{}")
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def extract_payment_id(args, raw: bytes | None) -> str:
    """Find the payment id: query `id`, then query `data.id`, then body `data.id`."""
    for key in ("id", "data.id"):
        val = str((args or {}).get(key) or "").strip()
        if val:
            return val
    body = _parse_body(raw)
    data = body.get("data")
    if isinstance(data, dict) and str(data.get("id") or "").strip():
        return str(data.get("id")).strip()
    return ""


def extract_topic(args, raw: bytes | None) -> str:
    for key in ("type", "topic"):
        val = str((args or {}).get(key) or "").strip().lower()
        if val:
            return val
    body = _parse_body(raw)
    for key in ("type", "topic"):
        val = str(body.get(key) or "").strip().lower()
        if val:
            return val
    return ""


def _parse_signature_header(header: str) -> tuple[str, str]:
    ts = v1 = ""
    for part in (header or "").split(","):
        k, _, v = part.partition("=")
        k = k.strip().lower()
        if k == "ts":
            ts = v.strip()
        elif k == "v1":
            v1 = v.strip()
    return ts, v1


def verify_webhook_signature(*, secret: str, signature_header: str, request_id: str, data_id: str) -> bool:
    ts, v1 = _parse_signature_header(signature_header)
    if not ts or not v1:
        return False
    parts = []
    if data_id:
        parts.append(f"id:{data_id.lower() if data_id.isalnum() else data_id};")
    if request_id:
        parts.append(f"request-id:{request_id};")
    parts.append(f"ts:{ts};")
    manifest = "".join(parts)
    expected = hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, v1.lower())


def webhook_secret() -> str:
    return (os.getenv("MP_WEBHOOK_SECRET") or "").strip()


def record_webhook_event(
    *,
    provider: str,
    topic: str,
    resource_id: str,
    result: ReconcileResult,
    raw: bytes | None,
) -> WebhookEvent | None:
    try:
        raw = raw or b""
        row = WebhookEvent(
            provider=provider,
            topic=(topic or "")[:40] or None,
            resource_id=(resource_id or "")[:128] or None,
            outcome=result.state,
            http_status=result.http_status,
            processed_at=datetime.utcnow(),
            request_id=get_request_id() or None,
            payload_hash=hashlib.sha256(raw).hexdigest(),
            payload_json=raw.decode("utf-8", errors="ignore")[:8000],
            error=(result.detail or None) if result.http_status >= 400 else None,
        )
        db.session.add(row)
        db.session.commit()
        return row
    except Exception:
        db.session.rollback()
        logger.exception("webhook_event_record_failed resource_id=%s", resource_id)
        return None


def buyer_from_metadata(metadata: dict) -> PartyRef | None:
    meta = metadata or {}
    buyer_id = str(meta.get("buyer_id") or "").strip()
    buyer_type = str(meta.get("buyer_type") or "").strip()
    if not buyer_id or not buyer_type:
        return None
    try:
        return PartyRef(buyer_type, buyer_id)
    except ValueError:
        return None


def reconcile_payment(payment_id: str, provider: PaymentsProvider, *, now: datetime | None = None) -> ReconcileResult:
    """Fetch a payment and, when approved, fulfil it exactly once."""
    pid = str(payment_id or "").strip()
    if not pid:
        return ReconcileResult(WebhookOutcome.SKIPPED_NO_ID)

    try:
        payment = provider.get_payment(pid)
    except ProviderError as exc:
        logger.warning("payment_fetch_failed payment_id=%s status=%s err=%s", pid, exc.status, exc.message)
        return ReconcileResult(WebhookOutcome.FAILED_PROVIDER, pid, exc.message)

    entry = ledger.get_entry(pid, provider.name)
    if payment.metadata.get("checkout_flow") == DIRECT_CHARGE_FLOW and entry is not None and entry.state != ledger.LedgerState.FAILED:
        return ReconcileResult(WebhookOutcome.SKIPPED_DUPLICATE, pid, "handled by direct charge", entry.order_id_list())

    if not payment.approved:
        logger.info("payment_not_approved payment_id=%s status=%s", pid, payment.status)
        _abandon_failed_entry(entry, pid, f"payment no longer approved: {payment.status}")
        return ReconcileResult(WebhookOutcome.SKIPPED_NOT_APPROVED, pid, payment.status)

    buyer = buyer_from_metadata(payment.metadata)
    if buyer is None:
        logger.error("payment_metadata_missing payment_id=%s metadata_keys=%s", pid, sorted(payment.metadata.keys()))
        log_event(
            "payment_metadata_missing",
            subject_type="payment",
            subject_id=pid,
            severity="ERROR",
            metadata={"keys": sorted(payment.metadata.keys())},
        )
        db.session.commit()
        return ReconcileResult(WebhookOutcome.FAILED_METADATA, pid, "buyer_id/buyer_type missing from payment metadata")

    if entry is not None and entry.state == ledger.LedgerState.COMPLETED:
        return ReconcileResult(WebhookOutcome.SKIPPED_DUPLICATE, pid, "already completed", entry.order_id_list())

    try:
        snapshot = cart_service.load_cart_snapshot(buyer)
    except CartLoadError as exc:
        return ReconcileResult(WebhookOutcome.FAILED_ORDER_CREATION, pid, exc.message)
    if not snapshot:
        logger.info("payment_cart_empty payment_id=%s buyer=%s", pid, buyer.key)
        _abandon_failed_entry(entry, pid, "cart is empty")
        return ReconcileResult(WebhookOutcome.SKIPPED_EMPTY_CART, pid)

    claim = ledger.claim_payment(pid, provider=provider.name, source="webhook", now=now)
    if not claim.acquired:
        log_event(
            "payment_duplicate_suppressed",
            subject_type="payment",
            subject_id=pid,
            metadata={"reason": claim.reason},
        )
        db.session.commit()
        order_ids = claim.row.order_id_list() if claim.row is not None else []
        return ReconcileResult(WebhookOutcome.SKIPPED_DUPLICATE, pid, claim.reason, order_ids)

    try:
        result = run_fulfillment(buyer, OrderStatus.PAID, payment_id=pid)
    except NothingToCheckoutError as exc:
        ledger.mark_failed(claim.row, exc.message)
        _abandon_failed_entry(claim.row, pid, exc.message)
        return ReconcileResult(WebhookOutcome.SKIPPED_EMPTY_CART, pid, exc.message)
    except (InsufficientStockError, CartLoadError) as exc:
        return _fail(claim.row, pid, exc.message, [])
    except OrderCreationError as exc:
        return _fail(claim.row, pid, exc.message, [o.order_id for o in exc.created])

    ledger.mark_completed(claim.row, result.order_ids)
    logger.info("payment_reconciled payment_id=%s orders=%s", pid, result.order_ids)
    return ReconcileResult(WebhookOutcome.COMPLETED, pid, "", result.order_ids)


def _abandon_failed_entry(entry, pid: str, reason: str) -> None:
    if entry is None or entry.state != ledger.LedgerState.FAILED:
        return
    if not ledger.abandon_failed(entry, reason):
        return
    log_event(
        "payment_reconcile_abandoned",
        subject_type="payment",
        subject_id=pid,
        severity="ERROR",
        metadata={"reason": reason, "order_ids": entry.order_id_list()},
    )
    db.session.commit()


def _fail(row, pid: str, message: str, order_ids: list[int]) -> ReconcileResult:
    ledger.mark_failed(row, message, order_ids)
    logger.error("payment_reconcile_failed payment_id=%s err=%s", pid, message)
    log_event(
        "payment_reconcile_failed",
        subject_type="payment",
        subject_id=pid,
        severity="ERROR",
        metadata={"error": message, "order_ids": order_ids},
    )
    db.session.commit()
    return ReconcileResult(WebhookOutcome.FAILED_ORDER_CREATION, pid, message, order_ids)


def handle_notification(
    *,
    args,
    raw: bytes | None,
    headers,
    provider_factory,
) -> tuple[ReconcileResult, str, str]:
    """Run one webhook delivery through signature, topic and id checks, then reconcile.

    Returns (result, topic, payment_id). The provider is only built once the
    delivery is known to need it.
    """
    topic = extract_topic(args, raw)
    payment_id = extract_payment_id(args, raw)

    secret = webhook_secret()
    if secret:
        ok = verify_webhook_signature(
            secret=secret,
            signature_header=headers.get("x-signature", ""),
            request_id=headers.get("x-request-id", ""),
            data_id=payment_id,
        )
        if not ok:
            logger.warning("webhook_signature_invalid payment_id=%s", payment_id)
            return ReconcileResult(WebhookOutcome.FAILED_SIGNATURE, payment_id, "invalid signature"), topic, payment_id

    if topic and topic != "payment":
        return ReconcileResult(WebhookOutcome.SKIPPED_UNSUPPORTED_TOPIC, payment_id, topic), topic, payment_id
    if not payment_id:
        return ReconcileResult(WebhookOutcome.SKIPPED_NO_ID), topic, payment_id

    return reconcile_payment(payment_id, provider_factory()), topic, payment_id
