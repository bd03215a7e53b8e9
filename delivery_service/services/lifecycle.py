"""Order lifecycle state machine.

Pure functions over the pair (order status, delivery status or None). Nothing
here touches the store; the services call in before writing so that every
status change goes through one transition table.
"""
from ..errors import InvalidTransition

PLACED, PAID, DELIVERED = "placed", "paid", "delivered"
ACCEPTED, COMPLETED = "accepted", "completed"

PAY, CLAIM, COMPLETE = "pay", "claim", "complete"

TRANSITIONS = {
    (PLACED, None, PAY): (PAID, None),
    (PAID, None, CLAIM): (PAID, ACCEPTED),
    (PAID, ACCEPTED, COMPLETE): (DELIVERED, COMPLETED),
}

ORDER_RANK = {PLACED: 0, PAID: 1, DELIVERED: 2}


def _value(status):
    return getattr(status, "value", status)


def next_state(order_status, delivery_status, action, error=InvalidTransition):
    """Return the state reached by ``action`` or raise ``error``."""
    key = (_value(order_status), _value(delivery_status), action)
    try:
        return TRANSITIONS[key]
    except KeyError:
        raise error(
            f"cannot {action} from order={key[0]} delivery={key[1] or '-'}"
        ) from None


def is_forward(old_status, new_status) -> bool:
    """True when moving from ``old_status`` to ``new_status`` never goes backwards."""
    return ORDER_RANK[_value(new_status)] >= ORDER_RANK[_value(old_status)]


def status_label(order: dict, delivery: dict | None) -> str:
    """Customer-facing status of an order row joined with its delivery row."""
    delivery_status = delivery["status"] if delivery else None
    if order["status"] == DELIVERED or delivery_status == COMPLETED:
        return "Delivered"
    if order["payment_status"] == "completed" and delivery_status == ACCEPTED:
        return "On the way"
    if order["status"] == PAID or order["payment_status"] == "completed":
        return "Paid"
    return "Placed"


def quote_payment(subtotal: int, delivery_fee: int, platform_fee_rate: float, tax_rate: float) -> dict:
    """Checkout breakdown; every amount in minor currency units."""
    platform_fee = round(subtotal * platform_fee_rate)
    tax = round((subtotal + platform_fee + delivery_fee) * tax_rate)
    return {
        "subtotal": subtotal,
        "platform_fee": platform_fee,
        "delivery_fee": delivery_fee,
        "tax": tax,
        "total": subtotal + platform_fee + delivery_fee + tax,
    }
