from datetime import datetime, timedelta

from marketplace.extensions import db


class ShippingToken(db.Model):
    __tablename__ = "shipping_tokens"

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.String(64), db.ForeignKey("stores.id"), nullable=False, unique=True)
    access_token = db.Column(db.Text, nullable=False)
    refresh_token = db.Column(db.Text, nullable=True)
    token_type = db.Column(db.String(24), nullable=True)
    scope = db.Column(db.String(255), nullable=True)
    expires_in = db.Column(db.Integer, nullable=False, default=0)
    # rows written before expires_at existed fall back to created_at + expires_in
    expires_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def effective_expires_at(self) -> datetime:
        if self.expires_at is not None:
            return self.expires_at
        return (self.created_at or datetime.utcnow()) + timedelta(seconds=int(self.expires_in or 0))

    def seconds_remaining(self, now: datetime | None = None) -> float:
        now = now or datetime.utcnow()
        return (self.effective_expires_at() - now).total_seconds()


class ShippingOAuthState(db.Model):
    __tablename__ = "shipping_oauth_states"

    id = db.Column(db.Integer, primary_key=True)
    state = db.Column(db.String(128), nullable=False, unique=True)
    store_id = db.Column(db.String(64), db.ForeignKey("stores.id"), nullable=False, index=True)
    owner_key = db.Column(db.String(80), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    consumed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
