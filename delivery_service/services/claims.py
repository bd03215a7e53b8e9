"""Delivery claim arbitration.

Partners race for paid orders from independent processes, so nothing here
checks "is it taken?" before writing. The delivery insert itself is the
arbiter: ``deliveries.order_id`` is unique, the first commit wins and every
other insert fails with an integrity error, which is reported as a
``Rejected`` outcome instead of an exception.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from ..db import db
from ..errors import ALREADY_CLAIMED, InvalidTransition, NotFound
from ..models import Delivery, DeliveryStatus, Order, OrderStatus, PaymentStatus
from ..utils.serializers import row_to_dict
from . import lifecycle
from .notifications import notify
from .store import transaction

logger = logging.getLogger(__name__)


@dataclass
class Claimed:
    order_id: int
    delivery_id: int
    delivery: dict

    ok = True


@dataclass
class Rejected:
    order_id: int
    reason: str = ALREADY_CLAIMED

    ok = False


def claim(order_id: int, partner_id: int):
    """Claim ``order_id`` for ``partner_id``.

    Returns ``Claimed`` for the single winner and ``Rejected`` for everyone
    else. A partner repeating the claim on a delivery it still holds gets its
    ``Claimed`` outcome again. Raises ``InvalidTransition`` when the order is
    not paid yet and ``NotFound`` for unknown orders.
    """
    try:
        with transaction():
            order = db.session.get(Order, order_id)
            if order is None:
                raise NotFound(f"order {order_id}")
            if order.status == OrderStatus.DELIVERED:
                # only reachable through a delivery row, so somebody already won
                return Rejected(order_id)
            if order.payment_status != PaymentStatus.COMPLETED:
                raise InvalidTransition(f"order {order_id} is not paid")
            lifecycle.next_state(order.status, None, lifecycle.CLAIM)

            delivery = Delivery(
                order_id=order_id,
                delivery_partner_id=partner_id,
                status=DeliveryStatus.ACCEPTED,
            )
            db.session.add(delivery)
            db.session.flush()
            notify(
                order.user_id, "Order on the way",
                f"A delivery partner picked up order #{order_id}.", order_id=order_id,
            )
            snapshot = row_to_dict(delivery)
    except IntegrityError:
        held = Delivery.query.filter_by(order_id=order_id).first()
        if held is None or held.delivery_partner_id != partner_id or held.status != DeliveryStatus.ACCEPTED:
            logger.info("claim on order %s by partner %s lost: already claimed", order_id, partner_id)
            return Rejected(order_id)
        logger.info("order %s already held by partner %s, claim repeated", order_id, partner_id)
        snapshot = row_to_dict(held)
        return Claimed(order_id=order_id, delivery_id=snapshot["id"], delivery=snapshot)

    logger.info("order %s claimed by partner %s (delivery %s)", order_id, partner_id, snapshot["id"])
    return Claimed(order_id=order_id, delivery_id=snapshot["id"], delivery=snapshot)


def claimable_pool():
    """Paid orders nobody has claimed yet, oldest first."""
    return (
        Order.query.filter(
            Order.payment_status == PaymentStatus.COMPLETED,
            Order.status == OrderStatus.PAID,
            ~Order.delivery.has(),
        )
        .order_by(Order.created_at.asc(), Order.id.asc())
        .all()
    )


def deliveries_for_partner(partner_id: int):
    return (
        Delivery.query.filter_by(delivery_partner_id=partner_id)
        .order_by(Delivery.created_at.desc(), Delivery.id.desc())
        .all()
    )


def deliveries_for_order(order_id: int):
    return Delivery.query.filter_by(order_id=order_id).all()


def all_deliveries(status: DeliveryStatus | None = None):
    q = Delivery.query
    if status is not None:
        q = q.filter(Delivery.status == status)
    return q.order_by(Delivery.created_at.desc(), Delivery.id.desc()).all()
