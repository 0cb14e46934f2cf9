from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from marketplace.extensions import db
from marketplace.services import cart_service, inventory_service
from marketplace.services.checkout_service import generate_order_code, partition_by_store
from marketplace.services.errors import MarketplaceError, NothingToCheckoutError, OrderCreationError
from marketplace.services.order_service import create_order_with_items, find_order_for_payment
from marketplace.utils.events import log_event
from marketplace.utils.request_context import PartyRef

logger = logging.getLogger(__name__)


@dataclass
class HookOutcome:
    hook: str
    ok: bool
    subject: str = ""
    detail: str = ""

    def to_dict(self) -> dict:
        return {"hook": self.hook, "ok": self.ok, "subject": self.subject, "detail": self.detail}


@dataclass
class CreatedOrder:
    order_id: int
    store_id: str
    code: str
    total: Decimal
    resumed: bool = False

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "store_id": self.store_id,
            "code": self.code,
            "total": str(self.total),
            "resumed": self.resumed,
        }


@dataclass
class FulfillmentResult:
    orders: list[CreatedOrder] = field(default_factory=list)
    hooks: list[HookOutcome] = field(default_factory=list)

    @property
    def order_ids(self) -> list[int]:
        return [o.order_id for o in self.orders]

    @property
    def failed_hooks(self) -> list[HookOutcome]:
        return [h for h in self.hooks if not h.ok]

    def to_dict(self) -> dict:
        return {
            "orders": [o.to_dict() for o in self.orders],
            "hooks": [h.to_dict() for h in self.hooks],
        }


def report_hook(outcome: HookOutcome, *, actor: str | None = None) -> HookOutcome:
    """Surface a failed post-commit hook to operators. Successful hooks are not recorded."""
    if outcome.ok:
        return outcome
    logger.warning(
        "post_commit_hook_failed hook=%s subject=%s detail=%s",
        outcome.hook,
        outcome.subject,
        outcome.detail,
    )
    log_event(
        f"hook_failed.{outcome.hook}",
        actor=actor,
        subject_type=outcome.hook,
        subject_id=outcome.subject,
        severity="WARN",
        metadata={"detail": outcome.detail},
    )
    db.session.commit()
    return outcome


def _run_decrement(product_id: int, quantity: int) -> HookOutcome:
    subject = f"product:{product_id}"
    try:
        inventory_service.decrement_stock(product_id, quantity)
    except MarketplaceError as exc:
        return HookOutcome("inventory_decrement", False, subject, exc.message)
    except Exception as exc:
        db.session.rollback()
        return HookOutcome("inventory_decrement", False, subject, str(exc))
    return HookOutcome("inventory_decrement", True, subject, f"-{quantity}")


def _run_cart_clear(buyer: PartyRef) -> HookOutcome:
    try:
        removed = cart_service.clear_cart(buyer)
    except Exception as exc:
        db.session.rollback()
        return HookOutcome("cart_clear", False, buyer.key, str(exc))
    return HookOutcome("cart_clear", True, buyer.key, f"removed={removed}")


def _run_cart_prune(buyer: PartyRef, store_ids: list[str]) -> HookOutcome:
    try:
        removed = cart_service.remove_store_lines(buyer, store_ids)
    except Exception as exc:
        db.session.rollback()
        return HookOutcome("cart_prune", False, buyer.key, str(exc))
    return HookOutcome("cart_prune", True, buyer.key, f"removed={removed}")


def _settled_orders(snapshot: list[cart_service.CartSnapshotLine], payment_id: str | None) -> dict:
    """Orders already created for this payment, keyed by store."""
    if not payment_id:
        return {}
    settled = {}
    for line in snapshot:
        store_id = line.product.store_id if line.product is not None else None
        if not store_id or store_id in settled:
            continue
        order = find_order_for_payment(payment_id, store_id)
        if order is not None:
            settled[store_id] = order
    return settled


def run_fulfillment(buyer: PartyRef, status: str, *, payment_id: str | None = None) -> FulfillmentResult:
    """Turn the buyer's current cart into one order per store.

    Stock is checked for the whole cart before anything is written. Each
    store's order then commits on its own; when a store fails, the orders
    already created are carried on the raised OrderCreationError.

    Orders tagged with a payment id are looked up first and their stores skip
    the stock check, so with the cart kept a retry for the same payment
    resumes at the store that failed. Without a payment id there is nothing
    to resume by, so the cart lines of stores that did get an order are
    dropped instead.
    """
    snapshot = cart_service.load_cart_snapshot(buyer)
    if not snapshot:
        raise NothingToCheckoutError("Cart is empty")
    settled = _settled_orders(snapshot, payment_id)
    groups = partition_by_store(snapshot, settled_stores=frozenset(settled))
    if not groups:
        raise NothingToCheckoutError("No purchasable items in cart")

    result = FulfillmentResult()
    for store_id, items in groups.items():
        existing = settled.get(store_id)
        if existing is not None:
            logger.info("fulfillment_store_resumed payment_id=%s store_id=%s order_id=%s", payment_id, store_id, existing.id)
            result.orders.append(
                CreatedOrder(
                    order_id=int(existing.id),
                    store_id=store_id,
                    code=existing.code,
                    total=Decimal(existing.total_price),
                    resumed=True,
                )
            )
            continue

        code = generate_order_code(store_id)
        try:
            order_id = create_order_with_items(store_id, status, buyer, items, code, payment_id=payment_id)
        except OrderCreationError as exc:
            exc.created = list(result.orders)
            if payment_id is None and result.orders:
                report_hook(_run_cart_prune(buyer, [o.store_id for o in result.orders]), actor=buyer.key)
            raise

        total = sum((item.unit_price * item.quantity for item in items), Decimal("0"))
        result.orders.append(
            CreatedOrder(order_id=order_id, store_id=store_id, code=code, total=total.quantize(Decimal("0.01")))
        )
        logger.info(
            "order_created order_id=%s store_id=%s code=%s payment_id=%s",
            order_id,
            store_id,
            code,
            payment_id or "",
        )

        for item in items:
            result.hooks.append(report_hook(_run_decrement(item.product_id, item.quantity), actor=buyer.key))

    result.hooks.append(report_hook(_run_cart_clear(buyer), actor=buyer.key))
    return result
