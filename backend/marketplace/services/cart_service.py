from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from marketplace.extensions import db
from marketplace.models import CartLine, Product
from marketplace.services.errors import CartLoadError
from marketplace.utils.request_context import PartyRef


@dataclass(frozen=True)
class ProductSnapshot:
    id: int
    price: Decimal
    stock_quantity: int | None
    store_id: str | None
    owner_id: str
    owner_type: str
    name: str
    image_url: str
    weight_kg: float | None = None


@dataclass(frozen=True)
class CartSnapshotLine:
    line_id: int
    product: ProductSnapshot | None
    quantity: int


def load_cart_snapshot(buyer: PartyRef) -> list[CartSnapshotLine]:
    """Read the buyer's cart with live product data.

    Lines whose product row vanished come back with product=None.
    """
    try:
        rows = (
            db.session.query(CartLine, Product)
            .outerjoin(Product, Product.id == CartLine.product_id)
            .filter(CartLine.buyer_id == buyer.id, CartLine.buyer_type == buyer.kind)
            .order_by(CartLine.id.asc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise CartLoadError(f"cart read failed: {exc}") from exc

    out = []
    for line, product in rows:
        snap = None
        if product is not None:
            snap = ProductSnapshot(
                id=int(product.id),
                price=Decimal(product.price or 0),
                stock_quantity=product.stock_quantity,
                store_id=product.store_id,
                owner_id=product.owner_id,
                owner_type=product.owner_type,
                name=product.name or "",
                image_url=product.first_image(),
                weight_kg=product.weight_kg,
            )
        out.append(CartSnapshotLine(line_id=int(line.id), product=snap, quantity=int(line.quantity or 0)))
    return out


def _line_for(buyer: PartyRef, line_id: int) -> CartLine | None:
    return CartLine.query.filter_by(id=int(line_id), buyer_id=buyer.id, buyer_type=buyer.kind).first()


def add_to_cart(buyer: PartyRef, product_id: int) -> CartLine:
    product = db.session.get(Product, int(product_id))
    if product is None:
        raise LookupError("product_not_found")
    line = CartLine.query.filter_by(buyer_id=buyer.id, buyer_type=buyer.kind, product_id=product.id).first()
    if line is None:
        line = CartLine(buyer_id=buyer.id, buyer_type=buyer.kind, product_id=product.id, quantity=1)
    else:
        line.quantity = int(line.quantity or 0) + 1
    db.session.add(line)
    db.session.commit()
    return line


def change_quantity(buyer: PartyRef, line_id: int, action: str) -> CartLine | None:
    """Apply plus/minus to a line. Returns None when the line was removed."""
    if action not in ("plus", "minus"):
        raise ValueError("invalid_action")
    line = _line_for(buyer, line_id)
    if line is None:
        raise LookupError("cart_line_not_found")
    if action == "plus":
        line.quantity = int(line.quantity or 0) + 1
        db.session.add(line)
        db.session.commit()
        return line
    if int(line.quantity or 0) <= 1:
        db.session.delete(line)
        db.session.commit()
        return None
    line.quantity = int(line.quantity) - 1
    db.session.add(line)
    db.session.commit()
    return line


def remove_line(buyer: PartyRef, line_id: int) -> None:
    line = _line_for(buyer, line_id)
    if line is None:
        raise LookupError("cart_line_not_found")
    db.session.delete(line)
    db.session.commit()


def clear_cart(buyer: PartyRef) -> int:
    deleted = CartLine.query.filter_by(buyer_id=buyer.id, buyer_type=buyer.kind).delete(synchronize_session=False)
    db.session.commit()
    return int(deleted or 0)


def remove_store_lines(buyer: PartyRef, store_ids) -> int:
    """Drop the buyer's cart lines for products sold by the given stores."""
    ids = [s for s in store_ids if s]
    if not ids:
        return 0
    product_ids = db.session.query(Product.id).filter(Product.store_id.in_(ids))
    deleted = (
        CartLine.query.filter(
            CartLine.buyer_id == buyer.id,
            CartLine.buyer_type == buyer.kind,
            CartLine.product_id.in_(product_ids.scalar_subquery()),
        )
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return int(deleted or 0)


def cart_summary(buyer: PartyRef) -> dict:
    lines = []
    total = Decimal("0.00")
    for row in load_cart_snapshot(buyer):
        if row.product is None:
            continue
        line_total = (row.product.price * row.quantity).quantize(Decimal("0.01"))
        total += line_total
        lines.append(
            {
                "id": row.line_id,
                "product_id": row.product.id,
                "name": row.product.name,
                "image_url": row.product.image_url,
                "store_id": row.product.store_id,
                "quantity": row.quantity,
                "unit_price": str(row.product.price.quantize(Decimal("0.01"))),
                "line_total": str(line_total),
            }
        )
    return {"lines": lines, "total": str(total.quantize(Decimal("0.01")))}
