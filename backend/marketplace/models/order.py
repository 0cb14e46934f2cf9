from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from marketplace.extensions import db
from marketplace.utils.request_context import PartyRef


def _money(value) -> str:
    return str(Decimal(value or 0).quantize(Decimal("0.01")))


class Order(db.Model):
    """One store's share of a checkout.

    A single payment may produce several orders (one per store), so the
    payment id is unique only together with the store id.
    """

    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("payment_id", "store_id", name="uq_orders_payment_store"),
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(40), nullable=False, index=True)
    store_id = db.Column(db.String(64), db.ForeignKey("stores.id"), nullable=False, index=True)
    status = db.Column(db.String(24), nullable=False, default="created", index=True)

    buyer_type = db.Column(db.String(2), nullable=False)
    buyer_pf_id = db.Column(db.String(64), nullable=True, index=True)
    buyer_pj_id = db.Column(db.String(64), nullable=True, index=True)
    seller_pf_id = db.Column(db.String(64), nullable=True, index=True)
    seller_pj_id = db.Column(db.String(64), nullable=True, index=True)

    total_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    payment_id = db.Column(db.String(64), nullable=True, index=True)

    me_order_id = db.Column(db.String(64), nullable=True)
    me_service_id = db.Column(db.Integer, nullable=True)
    me_company = db.Column(db.String(80), nullable=True)
    me_service = db.Column(db.String(80), nullable=True)
    me_label_url = db.Column(db.Text, nullable=True)
    label_generated_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    lines = db.relationship(
        "OrderLine",
        backref="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderLine.id",
    )

    @property
    def buyer_ref(self) -> PartyRef | None:
        return PartyRef.from_slots(self.buyer_pf_id, self.buyer_pj_id)

    @property
    def seller_ref(self) -> PartyRef | None:
        return PartyRef.from_slots(self.seller_pf_id, self.seller_pj_id)

    def to_dict(self, *, include_lines: bool = True) -> dict:
        out = {
            "id": int(self.id),
            "code": self.code,
            "store_id": self.store_id,
            "status": self.status,
            "buyer_type": self.buyer_type,
            "total_price": _money(self.total_price),
            "payment_id": self.payment_id or "",
            "shipping": {
                "order_id": self.me_order_id or "",
                "service_id": self.me_service_id,
                "company": self.me_company or "",
                "service": self.me_service or "",
                "label_url": self.me_label_url or "",
                "label_generated_at": self.label_generated_at.isoformat() if self.label_generated_at else None,
            },
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_lines:
            out["lines"] = [line.to_dict() for line in self.lines]
        return out


class OrderLine(db.Model):
    __tablename__ = "order_lines"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    product_name = db.Column(db.String(200), nullable=False, default="")
    image_url = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "product_id": int(self.product_id),
            "quantity": int(self.quantity),
            "unit_price_cents": int(self.unit_price_cents),
            "subtotal_cents": int(self.subtotal_cents),
            "product_name": self.product_name or "",
            "image_url": self.image_url or "",
        }


class OrderTransition(db.Model):
    __tablename__ = "order_transitions"
    __table_args__ = (
        db.UniqueConstraint("order_id", "idempotency_key", name="uq_order_transition_order_key"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    from_status = db.Column(db.String(24), nullable=False, default="")
    to_status = db.Column(db.String(24), nullable=False)
    actor = db.Column(db.String(80), nullable=False, default="system")
    idempotency_key = db.Column(db.String(160), nullable=False)
    reason = db.Column(db.String(240), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "from_status": self.from_status or "",
            "to_status": self.to_status or "",
            "actor": self.actor or "",
            "idempotency_key": self.idempotency_key or "",
            "reason": self.reason or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
