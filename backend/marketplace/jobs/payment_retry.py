from __future__ import annotations

import logging
from datetime import datetime

from marketplace.extensions import db
from marketplace.integrations.payments.factory import build_payments_provider
from marketplace.services.payment_ledger_service import count_unclaimed_attempt, retryable_failures
from marketplace.services.payment_reconciliation_service import WebhookOutcome, reconcile_payment
from marketplace.utils.job_runs import record_job_run

logger = logging.getLogger(__name__)

RETRY_JOB_NAME = "payment_retry"


def retry_failed_reconciliations(*, limit: int = 50, provider=None, trigger: str = "manual") -> dict:
    """Re-run reconciliation for ledger rows left in `failed` with attempts to spare.

    Every pass costs the row one attempt, including passes that stop before the
    ledger claim, so a row that keeps failing early still runs out of budget.
    """
    started = datetime.utcnow()
    summary = {"ok": True, "attempted": 0, "completed": 0, "failed": 0, "skipped": 0, "payment_ids": []}
    error = None
    try:
        rows = retryable_failures(limit=max(1, min(int(limit), 500)))
        if rows and provider is None:
            provider = build_payments_provider()
        for row in rows:
            payment_id = row.payment_id
            row_provider, seen_attempts = row.provider, int(row.attempts or 0)
            summary["attempted"] += 1
            summary["payment_ids"].append(payment_id)
            try:
                result = reconcile_payment(payment_id, provider)
            except Exception as exc:
                db.session.rollback()
                logger.exception("payment_retry_crashed payment_id=%s", payment_id)
                summary["failed"] += 1
                error = f"{payment_id}:{type(exc).__name__}"
                count_unclaimed_attempt(payment_id, provider=row_provider, seen_attempts=seen_attempts, error=str(exc))
                continue
            if result.state != WebhookOutcome.COMPLETED:
                count_unclaimed_attempt(
                    payment_id, provider=row_provider, seen_attempts=seen_attempts, error=result.detail
                )
            if result.state == WebhookOutcome.COMPLETED:
                summary["completed"] += 1
            elif result.retryable or result.http_status >= 400:
                summary["failed"] += 1
            else:
                summary["skipped"] += 1
            logger.info("payment_retry_outcome payment_id=%s state=%s", payment_id, result.state)
    except Exception as exc:
        db.session.rollback()
        logger.exception("payment_retry_run_failed")
        summary["ok"] = False
        error = str(exc)
        raise
    finally:
        record_job_run(
            job_name=RETRY_JOB_NAME,
            ok=summary["ok"] and error is None,
            started_at=started,
            error=error,
            trigger=trigger,
            summary=summary,
        )
    return summary
