from datetime import datetime

from marketplace.extensions import db


class JobRun(db.Model):
    """One execution of a background job, with its payment counters."""

    __tablename__ = "job_runs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(64), nullable=False, index=True)
    # beat | cli | manual
    trigger = db.Column(db.String(16), nullable=False, default="manual")
    ran_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    ok = db.Column(db.Boolean, nullable=False, default=True, index=True)
    duration_ms = db.Column(db.Integer, nullable=True)
    attempted = db.Column(db.Integer, nullable=False, default=0)
    completed = db.Column(db.Integer, nullable=False, default=0)
    failed = db.Column(db.Integer, nullable=False, default=0)
    error = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "job_name": self.job_name or "",
            "trigger": self.trigger or "manual",
            "ran_at": self.ran_at.isoformat() if self.ran_at else None,
            "ok": bool(self.ok),
            "duration_ms": self.duration_ms,
            "attempted": int(self.attempted or 0),
            "completed": int(self.completed or 0),
            "failed": int(self.failed or 0),
            "error": self.error or "",
        }
