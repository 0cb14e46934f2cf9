from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from marketplace.extensions import db
from marketplace.models import Order, OrderLine, OrderTransition, Store
from marketplace.services.checkout_service import PartitionedItem, to_cents
from marketplace.services.errors import InvalidTransitionError, OrderCreationError
from marketplace.utils.request_context import PartyRef

logger = logging.getLogger(__name__)


class OrderStatus:
    CREATED = "created"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    CHARGEBACK = "chargeback"

    ALL = (CREATED, PAID, PROCESSING, SHIPPED, DELIVERED, COMPLETED, CANCELLED, REFUNDED, CHARGEBACK)
    FUNNEL = (CREATED, PAID, PROCESSING, SHIPPED, DELIVERED, COMPLETED)
    BLOCKED = {CANCELLED, REFUNDED, CHARGEBACK}

    ALLOWED = {
        CREATED: {PAID, CANCELLED},
        PAID: {PROCESSING, CANCELLED, REFUNDED, CHARGEBACK},
        PROCESSING: {SHIPPED, CANCELLED, REFUNDED, CHARGEBACK},
        SHIPPED: {DELIVERED, REFUNDED, CHARGEBACK},
        DELIVERED: {COMPLETED, REFUNDED, CHARGEBACK},
        COMPLETED: {REFUNDED, CHARGEBACK},
        CANCELLED: set(),
        REFUNDED: {CHARGEBACK},
        CHARGEBACK: set(),
    }

    LEGACY = {
        "criado": CREATED,
        "pago": PAID,
        "em processamento": PROCESSING,
        "em_processamento": PROCESSING,
        "enviado": SHIPPED,
        "entregue": DELIVERED,
        "concluido": COMPLETED,
        "concluído": COMPLETED,
        "cancelado": CANCELLED,
        "estornado": REFUNDED,
    }


def normalize_status(value: str | None) -> str | None:
    """Map current and legacy status strings onto OrderStatus; None when unknown."""
    status = " ".join(str(value or "").strip().lower().split())
    if status in OrderStatus.ALL:
        return status
    return OrderStatus.LEGACY.get(status)


def _build_line(order_id: int, item: PartitionedItem) -> OrderLine:
    unit_cents = to_cents(item.unit_price)
    return OrderLine(
        order_id=order_id,
        product_id=int(item.product_id),
        quantity=int(item.quantity),
        unit_price_cents=unit_cents,
        subtotal_cents=unit_cents * int(item.quantity),
        product_name=(item.name or "")[:200],
        image_url=item.image_url or None,
    )


def create_order_with_items(
    store_id: str,
    status: str,
    buyer: PartyRef,
    items: list[PartitionedItem],
    code: str,
    *,
    payment_id: str | None = None,
) -> int:
    """Insert one order header and its lines as a single transaction.

    Any failure rolls back everything this call wrote and raises
    OrderCreationError.
    """
    target = normalize_status(status)
    if target is None:
        raise OrderCreationError(store_id, f"unknown order status {status!r}")
    if not items:
        raise OrderCreationError(store_id, "order without items")

    try:
        store = db.session.get(Store, store_id)
        if store is None:
            raise OrderCreationError(store_id, f"store {store_id} not found")
        buyer_pf_id, buyer_pj_id = buyer.slots()
        seller_pf_id, seller_pj_id = store.owner.slots()

        total_cents = sum(to_cents(item.unit_price) * int(item.quantity) for item in items)
        order = Order(
            code=code,
            store_id=store_id,
            status=target,
            buyer_type=buyer.kind,
            buyer_pf_id=buyer_pf_id,
            buyer_pj_id=buyer_pj_id,
            seller_pf_id=seller_pf_id,
            seller_pj_id=seller_pj_id,
            total_price=(Decimal(total_cents) / 100).quantize(Decimal("0.01")),
            payment_id=payment_id,
        )
        db.session.add(order)
        db.session.flush()
        for item in items:
            db.session.add(_build_line(order.id, item))
        db.session.flush()
        db.session.commit()
        return int(order.id)
    except OrderCreationError:
        db.session.rollback()
        raise
    except (SQLAlchemyError, ValueError, TypeError) as exc:
        db.session.rollback()
        logger.exception("order_create_failed store_id=%s", store_id)
        raise OrderCreationError(store_id, f"order insert failed: {exc}") from exc


def find_order_for_payment(payment_id: str, store_id: str) -> Order | None:
    if not payment_id:
        return None
    return Order.query.filter_by(payment_id=str(payment_id), store_id=store_id).first()


def transition_order(
    order: Order,
    to_status: str,
    *,
    actor: str = "system",
    idempotency_key: str,
    reason: str = "",
) -> OrderTransition:
    if order is None:
        raise ValueError("order required")
    key = (idempotency_key or "").strip()
    if not key:
        raise ValueError("idempotency_key required")

    existing = OrderTransition.query.filter_by(order_id=int(order.id), idempotency_key=key[:160]).first()
    if existing:
        return existing

    current = normalize_status(order.status)
    target = normalize_status(to_status)
    if target is None:
        raise InvalidTransitionError(f"unknown status {to_status!r}")
    if current is not None and target not in OrderStatus.ALLOWED.get(current, set()):
        raise InvalidTransitionError(f"invalid_order_transition {current}->{target}")

    row = OrderTransition(
        order_id=int(order.id),
        from_status=current or str(order.status or "")[:24],
        to_status=target,
        actor=(actor or "system")[:80],
        idempotency_key=key[:160],
        reason=(reason or "")[:240],
        created_at=datetime.utcnow(),
    )
    order.status = target
    order.updated_at = datetime.utcnow()
    db.session.add(row)
    db.session.add(order)
    db.session.commit()
    return row


def next_funnel_status(current: str | None) -> str | None:
    """The status one step down the happy path.

    Unknown statuses restart at the first funnel step; the last step has no
    successor. Blocked statuses never advance.
    """
    status = normalize_status(current)
    if status in OrderStatus.BLOCKED:
        raise InvalidTransitionError(f"order in status {status} cannot advance")
    if status not in OrderStatus.FUNNEL:
        return OrderStatus.FUNNEL[0]
    idx = OrderStatus.FUNNEL.index(status)
    if idx + 1 >= len(OrderStatus.FUNNEL):
        return None
    return OrderStatus.FUNNEL[idx + 1]


def advance_order_status(order: Order, *, actor: str = "system") -> str:
    current = normalize_status(order.status)
    target = next_funnel_status(order.status)
    if target is None:
        logger.warning("order_advance_at_last_status order_id=%s status=%s", order.id, order.status)
        return str(current)
    if current is None:
        # legacy rows with an unrecognised status restart the funnel
        previous = str(order.status or "")[:24]
        logger.warning("order_status_unknown_reset order_id=%s status=%r", order.id, previous)
        order.status = target
        order.updated_at = datetime.utcnow()
        db.session.add(
            OrderTransition(
                order_id=int(order.id),
                from_status=previous,
                to_status=target,
                actor=(actor or "system")[:80],
                idempotency_key=f"reset:{order.id}:{datetime.utcnow().timestamp()}",
                reason="unknown status reset",
            )
        )
        db.session.commit()
        return target
    transition_order(
        order,
        target,
        actor=actor,
        idempotency_key=f"advance:{order.id}:{current}->{target}",
        reason="advance",
    )
    return target


def party_filter(column_pf, column_pj, party: PartyRef):
    pf_id, pj_id = party.slots()
    return column_pf == pf_id if pf_id else column_pj == pj_id


def orders_for_buyer(buyer: PartyRef) -> list[Order]:
    return (
        Order.query.filter(party_filter(Order.buyer_pf_id, Order.buyer_pj_id, buyer))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def orders_for_seller(seller: PartyRef) -> list[Order]:
    return (
        Order.query.filter(party_filter(Order.seller_pf_id, Order.seller_pj_id, seller))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def is_party_to_order(order: Order, party: PartyRef) -> bool:
    return party in (order.buyer_ref, order.seller_ref)


def load_order(order_id: int) -> Order | None:
    return db.session.get(Order, int(order_id))

