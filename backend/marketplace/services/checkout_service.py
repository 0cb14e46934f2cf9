from __future__ import annotations

import logging
import random
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from marketplace.services.cart_service import CartSnapshotLine
from marketplace.services.errors import InsufficientStockError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartitionedItem:
    product_id: int
    quantity: int
    unit_price: Decimal
    name: str
    image_url: str


def parse_quantity(value) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        parsed = 1
    return max(1, parsed)


def to_cents(value) -> int:
    return int((Decimal(value or 0) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def partition_by_store(
    snapshot: list[CartSnapshotLine],
    *,
    settled_stores: frozenset[str] | set[str] = frozenset(),
) -> "OrderedDict[str, list[PartitionedItem]]":
    """Group cart lines per store, rejecting the whole cart on any stock shortfall.

    Lines without a product or a store are skipped. Store order follows the
    first appearance of each store in the cart. Stores in `settled_stores`
    already hold an order for this checkout and their stock was taken, so
    their lines are grouped without a stock check.
    """
    groups: "OrderedDict[str, list[PartitionedItem]]" = OrderedDict()
    for line in snapshot:
        product = line.product
        if product is None:
            logger.warning("cart_line_without_product line_id=%s", line.line_id)
            continue
        if not product.store_id:
            logger.warning("cart_line_without_store product_id=%s", product.id)
            continue
        qty = parse_quantity(line.quantity)
        if (
            product.store_id not in settled_stores
            and product.stock_quantity is not None
            and int(product.stock_quantity) < qty
        ):
            raise InsufficientStockError(
                product.id,
                f"Insufficient stock for {product.name or product.id}: {product.stock_quantity} available, {qty} requested",
            )
        groups.setdefault(product.store_id, []).append(
            PartitionedItem(
                product_id=product.id,
                quantity=qty,
                unit_price=product.price,
                name=product.name,
                image_url=product.image_url,
            )
        )
    return groups


def generate_order_code(store_id: str, *, today: date | None = None, rng: random.Random | None = None) -> str:
    prefix = str(store_id or "").replace("-", "")[:4].upper()
    day = (today or date.today()).strftime("%Y%m%d")
    suffix = (rng or random).randint(1000, 9999)
    return f"L{prefix}-{day}-{suffix}"
