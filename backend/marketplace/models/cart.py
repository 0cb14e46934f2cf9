from datetime import datetime

from marketplace.extensions import db


class CartLine(db.Model):
    __tablename__ = "cart_lines"
    __table_args__ = (
        db.UniqueConstraint("buyer_id", "buyer_type", "product_id", name="uq_cart_buyer_product"),
        db.CheckConstraint("quantity >= 1", name="ck_cart_quantity_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    buyer_id = db.Column(db.String(64), nullable=False, index=True)
    buyer_type = db.Column(db.String(2), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
