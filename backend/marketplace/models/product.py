from __future__ import annotations

from datetime import datetime

from marketplace.extensions import db
from marketplace.utils.request_context import PartyRef


class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, default="")
    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    # NULL means stock is not tracked for this product.
    stock_quantity = db.Column(db.Integer, nullable=True)

    owner_id = db.Column(db.String(64), nullable=False, index=True)
    owner_type = db.Column(db.String(2), nullable=False)
    store_id = db.Column(db.String(64), db.ForeignKey("stores.id"), nullable=True, index=True)

    image_urls = db.Column(db.Text, nullable=True)
    weight_kg = db.Column(db.Float, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @property
    def owner(self) -> PartyRef:
        return PartyRef(self.owner_type, self.owner_id)

    def first_image(self) -> str:
        return (self.image_urls or "").split(",")[0].strip()
