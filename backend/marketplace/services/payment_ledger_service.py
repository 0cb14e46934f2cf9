from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError

from marketplace.extensions import db
from marketplace.models import ProcessedPayment

logger = logging.getLogger(__name__)


class LedgerState:
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"


@dataclass
class Claim:
    acquired: bool
    row: ProcessedPayment | None
    reason: str = ""


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


def claim_stale_seconds() -> int:
    return max(1, _env_int("PAYMENT_CLAIM_STALE_SECONDS", 300))


def max_attempts() -> int:
    return max(1, _env_int("PAYMENT_MAX_ATTEMPTS", 5))


def get_entry(payment_id: str, provider: str = "mercadopago") -> ProcessedPayment | None:
    return ProcessedPayment.query.filter_by(provider=provider, payment_id=str(payment_id)).first()


def claim_payment(
    payment_id: str,
    *,
    provider: str = "mercadopago",
    source: str = "webhook",
    now: datetime | None = None,
) -> Claim:
    """Take the exclusive right to fulfil a payment.

    The unique (provider, payment_id) row arbitrates concurrent deliveries.
    Failed rows and processing rows older than the stale window can be
    reclaimed; only one reclaimer's conditional update matches.
    """
    now = now or datetime.utcnow()
    pid = str(payment_id)
    row = ProcessedPayment(
        provider=provider,
        payment_id=pid,
        state=LedgerState.PROCESSING,
        source=source,
        attempts=1,
        claimed_at=now,
    )
    db.session.add(row)
    try:
        db.session.commit()
        return Claim(True, row, "new")
    except IntegrityError:
        db.session.rollback()

    existing = get_entry(pid, provider)
    if existing is None:
        return Claim(False, None, "vanished")
    if existing.state == LedgerState.COMPLETED:
        return Claim(False, existing, "completed")

    stale_before = now - timedelta(seconds=claim_stale_seconds())
    if existing.state == LedgerState.PROCESSING and existing.claimed_at and existing.claimed_at > stale_before:
        return Claim(False, existing, "in_progress")

    result = db.session.execute(
        update(ProcessedPayment)
        .where(ProcessedPayment.id == existing.id)
        .where(
            or_(
                ProcessedPayment.state == LedgerState.FAILED,
                and_(
                    ProcessedPayment.state == LedgerState.PROCESSING,
                    ProcessedPayment.claimed_at <= stale_before,
                ),
            )
        )
        .values(
            state=LedgerState.PROCESSING,
            source=source,
            claimed_at=now,
            attempts=ProcessedPayment.attempts + 1,
        )
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    if result.rowcount != 1:
        return Claim(False, get_entry(pid, provider), "lost_race")
    db.session.refresh(existing)
    logger.info("payment_claim_reclaimed payment_id=%s attempts=%s", pid, existing.attempts)
    return Claim(True, existing, "reclaimed")


def mark_completed(row: ProcessedPayment, order_ids: list[int]) -> ProcessedPayment:
    row.state = LedgerState.COMPLETED
    row.order_ids = ",".join(str(int(x)) for x in order_ids)
    row.completed_at = datetime.utcnow()
    row.last_error = None
    db.session.add(row)
    db.session.commit()
    return row


def mark_failed(row: ProcessedPayment, error: str, order_ids: list[int] | None = None) -> ProcessedPayment:
    row.state = LedgerState.FAILED
    row.last_error = (error or "")[:2000]
    if order_ids:
        row.order_ids = ",".join(str(int(x)) for x in order_ids)
    db.session.add(row)
    db.session.commit()
    return row


def abandon_failed(row: ProcessedPayment, reason: str) -> bool:
    """Close a failed row that retrying can no longer settle. Other states are left alone."""
    result = db.session.execute(
        update(ProcessedPayment)
        .where(ProcessedPayment.id == row.id)
        .where(ProcessedPayment.state == LedgerState.FAILED)
        .values(state=LedgerState.ABANDONED, last_error=(reason or "")[:2000])
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    if result.rowcount != 1:
        return False
    logger.warning("payment_ledger_abandoned payment_id=%s reason=%s", row.payment_id, reason)
    return True


def count_unclaimed_attempt(payment_id: str, *, provider: str, seen_attempts: int, error: str = "") -> bool:
    """Charge a retry that never reached the claim against the row's attempt budget.

    Only matches when the row is still failed with the attempts the caller saw,
    so a retry that did claim (and already counted itself) is not charged twice.
    """
    values = {"attempts": ProcessedPayment.attempts + 1}
    if error:
        values["last_error"] = error[:2000]
    result = db.session.execute(
        update(ProcessedPayment)
        .where(ProcessedPayment.provider == provider)
        .where(ProcessedPayment.payment_id == str(payment_id))
        .where(ProcessedPayment.state == LedgerState.FAILED)
        .where(ProcessedPayment.attempts == int(seen_attempts))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount == 1


def retryable_failures(limit: int = 50) -> list[ProcessedPayment]:
    return (
        ProcessedPayment.query.filter(
            ProcessedPayment.state == LedgerState.FAILED,
            ProcessedPayment.attempts < max_attempts(),
        )
        .order_by(ProcessedPayment.claimed_at.asc())
        .limit(int(limit))
        .all()
    )
