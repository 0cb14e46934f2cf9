from datetime import datetime

from marketplace.extensions import db


class SubscriptionPlan(db.Model):
    __tablename__ = "subscription_plans"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False)
    # monthly | weekly
    periodicity = db.Column(db.String(16), nullable=False, default="monthly")
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "name": self.name,
            "price": str(self.price),
            "periodicity": self.periodicity,
            "active": bool(self.active),
        }


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    subscriber_id = db.Column(db.String(64), nullable=False, index=True)
    subscriber_type = db.Column(db.String(2), nullable=False)
    plan_id = db.Column(db.Integer, db.ForeignKey("subscription_plans.id"), nullable=False)
    preapproval_id = db.Column(db.String(64), nullable=True, unique=True)
    # pending | authorized | active | paused | cancelled
    status = db.Column(db.String(24), nullable=False, default="pending", index=True)
    init_point = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "plan_id": int(self.plan_id),
            "preapproval_id": self.preapproval_id or "",
            "status": self.status,
            "init_point": self.init_point or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
