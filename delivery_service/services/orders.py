import logging

from flask import current_app

from ..db import db
from ..errors import InvalidRequest, InvalidTransition, NotFound
from ..models import MenuItem, Order, OrderStatus, PaymentStatus, utcnow
from . import lifecycle
from .store import transaction

logger = logging.getLogger(__name__)


def available_menu():
    return MenuItem.query.filter_by(available=True).order_by(MenuItem.name.asc()).all()


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound(f"order {order_id}")
    return order


def place_order(user_id: int, items: list, address: str | None = None, notes: str | None = None) -> Order:
    """Create an order in (placed, pending) with unit prices copied from the catalog."""
    if not items:
        raise InvalidRequest("order has no items")

    lines = []
    for raw in items:
        try:
            item_id = int(raw["menu_item_id"])
            quantity = int(raw.get("quantity", 1))
        except (KeyError, TypeError, ValueError):
            raise InvalidRequest("each item needs menu_item_id and an integer quantity") from None
        if quantity <= 0:
            raise InvalidRequest(f"quantity for item {item_id} must be positive")
        menu_item = db.session.get(MenuItem, item_id)
        if menu_item is None or not menu_item.available:
            raise InvalidRequest(f"menu item {item_id} is not available")
        lines.append({
            "menu_item_id": menu_item.id,
            "name": menu_item.name,
            "quantity": quantity,
            "unit_price": menu_item.price,
        })

    order = Order(
        user_id=user_id,
        items=lines,
        total_amount=sum(l["quantity"] * l["unit_price"] for l in lines),
        status=OrderStatus.PLACED,
        payment_status=PaymentStatus.PENDING,
        address=address,
        notes=notes,
    )
    with transaction():
        db.session.add(order)
    logger.info("order %s placed by user %s total=%s", order.id, user_id, order.total_amount)
    return order


def quote(order: Order) -> dict:
    cfg = current_app.config
    subtotal = sum(l["quantity"] * l["unit_price"] for l in order.items)
    return lifecycle.quote_payment(
        subtotal,
        delivery_fee=cfg["DELIVERY_FEE"],
        platform_fee_rate=cfg["PLATFORM_FEE_RATE"],
        tax_rate=cfg["TAX_RATE"],
    )


def complete_payment(order_id: int, final_amount: int) -> Order:
    """Apply the gateway's payment-completed signal: (placed, pending) -> (paid, completed).

    The final amount replaces the total and is frozen from here on.
    """
    if not isinstance(final_amount, int) or isinstance(final_amount, bool) or final_amount < 0:
        raise InvalidRequest("final_amount must be a non-negative integer")

    with transaction():
        order = get_order(order_id)
        if order.payment_status != PaymentStatus.PENDING:
            raise InvalidTransition(f"order {order_id} payment already {order.payment_status.value}")
        new_status, _ = lifecycle.next_state(order.status, None, lifecycle.PAY)
        order.status = OrderStatus(new_status)
        order.payment_status = PaymentStatus.COMPLETED
        order.total_amount = final_amount
        order.paid_at = utcnow()
    logger.info("order %s paid, total=%s", order_id, final_amount)
    return order


def orders_for_user(user_id: int):
    return (
        Order.query.filter_by(user_id=user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def recent_orders(limit: int | None = None):
    q = Order.query.order_by(Order.created_at.desc(), Order.id.desc())
    if limit:
        q = q.limit(limit)
    return q.all()
