from __future__ import annotations

import json
import os
import time
from datetime import datetime

from celery import shared_task
from flask import current_app

from marketplace.integrations.payments.factory import build_payments_provider
from marketplace.services.payment_reconciliation_service import reconcile_payment


def _task_log(task_name: str, *, status: str, started_at: float, trace_id: str = "", **extra):
    duration_ms = int(max(0.0, (time.perf_counter() - float(started_at))) * 1000.0)
    payload = {
        "task_name": task_name,
        "status": status,
        "duration_ms": duration_ms,
        "trace_id": str(trace_id or ""),
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra or {})
    current_app.logger.info(json.dumps(payload))


def _retry_countdown(retries: int) -> int:
    # Exponential backoff with cap.
    return int(min(900, max(5, 5 * (2 ** int(max(0, retries))))))


@shared_task(
    bind=True,
    name="marketplace.tasks.payment_tasks.reconcile_payment",
    max_retries=5,
)
def reconcile_payment_task(self, *, payment_id: str, trace_id: str = ""):
    started = time.perf_counter()
    retries = int(self.request.retries or 0)
    result = reconcile_payment(str(payment_id), build_payments_provider())
    if result.retryable and retries < int(self.max_retries or 0):
        countdown = _retry_countdown(retries)
        _task_log(
            "reconcile_payment",
            status="retrying",
            started_at=started,
            trace_id=trace_id,
            payment_id=payment_id,
            state=result.state,
            countdown=countdown,
        )
        raise self.retry(exc=RuntimeError(f"reconcile_{result.state}"), countdown=countdown)
    _task_log(
        "reconcile_payment",
        status="ok" if not result.retryable else "failed",
        started_at=started,
        trace_id=trace_id,
        payment_id=payment_id,
        state=result.state,
        order_ids=list(result.order_ids),
    )
    return result.to_dict()


@shared_task(
    bind=True,
    name="marketplace.tasks.payment_tasks.retry_failed_payment_reconciliations",
    max_retries=3,
)
def retry_failed_payment_reconciliations(self, *, trace_id: str = ""):
    started = time.perf_counter()
    try:
        limit = int((os.getenv("PAYMENT_RETRY_LIMIT") or "50").strip() or 50)
    except ValueError:
        limit = 50
    from marketplace.jobs.payment_retry import retry_failed_reconciliations

    try:
        summary = retry_failed_reconciliations(limit=limit, trigger="beat")
    except Exception as exc:
        if int(self.request.retries or 0) < int(self.max_retries or 0):
            countdown = _retry_countdown(int(self.request.retries or 0))
            _task_log(
                "retry_failed_payment_reconciliations",
                status="retrying",
                started_at=started,
                trace_id=trace_id,
                detail=str(exc),
                countdown=countdown,
            )
            raise self.retry(exc=exc, countdown=countdown)
        _task_log("retry_failed_payment_reconciliations", status="failed", started_at=started, trace_id=trace_id, detail=str(exc))
        raise
    _task_log(
        "retry_failed_payment_reconciliations",
        status="ok",
        started_at=started,
        trace_id=trace_id,
        attempted=summary["attempted"],
        completed=summary["completed"],
    )
    return summary
