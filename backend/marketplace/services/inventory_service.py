from __future__ import annotations

from sqlalchemy import update

from marketplace.extensions import db
from marketplace.models import Product
from marketplace.services.errors import InsufficientStockError


def decrement_stock(product_id: int, quantity: int) -> None:
    """Atomically take `quantity` units from a product's tracked stock.

    Untracked stock (NULL) is left as is. Raises InsufficientStockError when
    the decrement would go below zero or the product is gone.
    """
    qty = int(quantity)
    if qty < 1:
        raise ValueError("quantity must be positive")

    product = db.session.get(Product, int(product_id))
    if product is None:
        raise InsufficientStockError(product_id, f"Product {product_id} not found")
    if product.stock_quantity is None:
        return

    result = db.session.execute(
        update(Product)
        .where(Product.id == int(product_id))
        .where(Product.stock_quantity.isnot(None))
        .where(Product.stock_quantity >= qty)
        .values(stock_quantity=Product.stock_quantity - qty)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise InsufficientStockError(product_id)
    db.session.commit()
    db.session.expire(product)
