from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from marketplace.extensions import db
from marketplace.models import JobRun

logger = logging.getLogger(__name__)

JOB_TRIGGERS = ("beat", "cli", "manual")


def record_job_run(
    *,
    job_name: str,
    ok: bool,
    started_at: datetime,
    error: str | None = None,
    trigger: str = "manual",
    summary: dict | None = None,
) -> JobRun | None:
    """Persist one job execution. Counters come from the job's summary dict when given.

    A failed write is logged and swallowed; the job's own outcome stands.
    """
    counts = summary or {}
    finished = datetime.utcnow()
    try:
        row = JobRun(
            job_name=(job_name or "unknown").strip()[:64],
            trigger=trigger if trigger in JOB_TRIGGERS else "manual",
            ran_at=finished,
            ok=bool(ok),
            duration_ms=max(0, int((finished - started_at).total_seconds() * 1000)) if started_at else None,
            attempted=int(counts.get("attempted") or 0),
            completed=int(counts.get("completed") or 0),
            failed=int(counts.get("failed") or 0),
            error=(error or "")[:1000] or None,
        )
        db.session.add(row)
        db.session.commit()
        return row
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning("job_run_record_failed job=%s", job_name)
        return None


def latest_job_run(job_name: str) -> dict | None:
    row = JobRun.query.filter_by(job_name=job_name).order_by(JobRun.ran_at.desc(), JobRun.id.desc()).first()
    return row.to_dict() if row is not None else None
