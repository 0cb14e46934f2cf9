from datetime import datetime

from marketplace.extensions import db


class ProcessedPayment(db.Model):
    """Ledger of provider payments that have been (or are being) turned into orders."""

    __tablename__ = "processed_payments"
    __table_args__ = (
        db.UniqueConstraint("provider", "payment_id", name="uq_processed_payment_provider_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(32), nullable=False, default="mercadopago")
    payment_id = db.Column(db.String(64), nullable=False)
    # processing | completed | failed | abandoned
    state = db.Column(db.String(16), nullable=False, default="processing", index=True)
    source = db.Column(db.String(24), nullable=False, default="webhook")
    attempts = db.Column(db.Integer, nullable=False, default=1)
    order_ids = db.Column(db.Text, nullable=True)
    last_error = db.Column(db.Text, nullable=True)

    claimed_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def order_id_list(self) -> list[int]:
        return [int(x) for x in (self.order_ids or "").split(",") if x.strip()]

    def to_dict(self):
        return {
            "id": int(self.id),
            "provider": self.provider,
            "payment_id": self.payment_id,
            "state": self.state,
            "source": self.source,
            "attempts": int(self.attempts or 0),
            "order_ids": self.order_id_list(),
            "last_error": self.last_error or "",
            "claimed_at": self.claimed_at.isoformat() if self.claimed_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class WebhookEvent(db.Model):
    __tablename__ = "webhook_events"

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(32), nullable=False, default="mercadopago")
    topic = db.Column(db.String(40), nullable=True)
    resource_id = db.Column(db.String(128), nullable=True, index=True)
    outcome = db.Column(db.String(40), nullable=False, default="received")
    http_status = db.Column(db.Integer, nullable=True)
    processed_at = db.Column(db.DateTime, nullable=True)
    request_id = db.Column(db.String(64), nullable=True)
    payload_hash = db.Column(db.String(128), nullable=True)
    payload_json = db.Column(db.Text, nullable=True)
    error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "provider": self.provider,
            "topic": self.topic or "",
            "resource_id": self.resource_id or "",
            "outcome": self.outcome or "",
            "http_status": self.http_status,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "request_id": self.request_id or "",
            "payload_hash": self.payload_hash or "",
            "error": self.error or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
