"""Delivery completion and the earnings ledger.

Completing a delivery touches four rows (delivery, order, earning, wallet) and
they commit together or not at all, along with the notifications announcing
it. The earning row is unique per delivery and the wallet is incremented in
SQL, so the balance always equals the sum of the partner's earnings.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..db import db
from ..errors import InvalidRequest, InvalidState, NotFound, NotOwner
from ..models import Delivery, DeliveryEarning, DeliveryStatus, OrderStatus, Wallet, utcnow
from ..utils.serializers import plain
from . import lifecycle
from .notifications import notify
from .store import transaction

logger = logging.getLogger(__name__)

WINDOWS = ("all", "week", "month")


@dataclass
class Receipt:
    delivery_id: int
    order_id: int
    earning: int
    balance: int
    delivered_at: datetime

    def to_dict(self):
        return {
            "delivery_id": self.delivery_id,
            "order_id": self.order_id,
            "earning": self.earning,
            "balance": self.balance,
            "delivered_at": plain(self.delivered_at),
        }


def complete(delivery_id: int, partner_id: int, request_key: str | None = None) -> Receipt:
    """Mark a delivery as delivered and pay the partner, atomically.

    Raises ``NotOwner`` when somebody else holds the delivery and
    ``InvalidState`` when it is no longer ``accepted`` (including a second
    completion of the same delivery). A request repeated with the
    ``request_key`` that completed the delivery gets the original receipt
    back instead.
    """
    try:
        receipt = _complete(delivery_id, partner_id, request_key)
    except InvalidState:
        receipt = _replayed(delivery_id, partner_id, request_key)
        if receipt is None:
            raise
        logger.info("delivery %s completion repeated with key %s", delivery_id, request_key)
        return receipt

    logger.info(
        "delivery %s completed by partner %s: earning=%s balance=%s",
        delivery_id, partner_id, receipt.earning, receipt.balance,
    )
    return receipt


def _complete(delivery_id, partner_id, request_key):
    amount = current_app.config["DELIVERY_EARNING"]
    try:
        with transaction(on_stale=InvalidState):
            delivery = db.session.get(Delivery, delivery_id)
            if delivery is None:
                raise NotFound(f"delivery {delivery_id}")
            if delivery.delivery_partner_id != partner_id:
                raise NotOwner(f"delivery {delivery_id} belongs to another partner")
            if delivery.status != DeliveryStatus.ACCEPTED:
                raise InvalidState(f"delivery {delivery_id} is {delivery.status.value}")
            order = delivery.order
            order_status, delivery_status = lifecycle.next_state(
                order.status, delivery.status, lifecycle.COMPLETE, error=InvalidState
            )

            now = utcnow()
            delivery.status = DeliveryStatus(delivery_status)
            delivery.delivered_at = now
            order.status = OrderStatus(order_status)
            db.session.add(DeliveryEarning(
                delivery_partner_id=partner_id,
                order_id=order.id,
                delivery_id=delivery.id,
                earning=amount,
                created_at=now,
                request_key=request_key,
            ))

            wallet = Wallet.query.filter_by(user_id=partner_id).first()
            if wallet is None:
                wallet = Wallet(user_id=partner_id, balance=0)
                db.session.add(wallet)
                db.session.flush()
            wallet.balance = Wallet.balance + amount
            wallet.updated_at = now

            notify(order.user_id, "Order delivered", f"Order #{order.id} has been delivered.", order_id=order.id)
            notify(partner_id, "Earnings credited", f"{amount} added for order #{order.id}.", order_id=order.id)
            db.session.flush()
            db.session.refresh(wallet)

            return Receipt(
                delivery_id=delivery.id,
                order_id=order.id,
                earning=amount,
                balance=wallet.balance,
                delivered_at=now,
            )
    except IntegrityError as e:
        # earning for this delivery already written by a concurrent completion
        raise InvalidState(f"delivery {delivery_id} already completed") from e


def _replayed(delivery_id, partner_id, request_key):
    """Receipt of the completion that ``request_key`` already performed, if any."""
    if not request_key:
        return None
    earning = DeliveryEarning.query.filter_by(delivery_id=delivery_id, request_key=request_key).first()
    if earning is None or earning.delivery_partner_id != partner_id:
        return None
    delivery = db.session.get(Delivery, delivery_id)
    wallet = Wallet.query.filter_by(user_id=partner_id).first()
    return Receipt(
        delivery_id=delivery_id,
        order_id=earning.order_id,
        earning=earning.earning,
        balance=wallet.balance if wallet else 0,
        delivered_at=delivery.delivered_at,
    )


def window_bounds(window: str, now: datetime | None = None):
    """[start, end) for an earnings window; (None, None) for all-time.

    Weeks start on Sunday, months on the 1st, both at 00:00 UTC.
    """
    if window not in WINDOWS:
        raise InvalidRequest(f"window must be one of {', '.join(WINDOWS)}")
    if window == "all":
        return None, None
    now = now or utcnow()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if window == "week":
        start = midnight - timedelta(days=(now.weekday() + 1) % 7)
        return start, start + timedelta(days=7)
    start = midnight.replace(day=1)
    end = (start + timedelta(days=32)).replace(day=1)
    return start, end


def earnings_for_partner(partner_id: int, start=None, end=None):
    q = DeliveryEarning.query.filter(DeliveryEarning.delivery_partner_id == partner_id)
    if start is not None:
        q = q.filter(DeliveryEarning.created_at >= start)
    if end is not None:
        q = q.filter(DeliveryEarning.created_at < end)
    return q.order_by(DeliveryEarning.created_at.desc(), DeliveryEarning.id.desc()).all()


def earnings_summary(partner_id: int, window: str = "all", now: datetime | None = None) -> dict:
    start, end = window_bounds(window, now)
    rows = earnings_for_partner(partner_id, start, end)

    daily = OrderedDict()
    for row in reversed(rows):
        day = row.created_at.date().isoformat()
        daily[day] = daily.get(day, 0) + row.earning

    wallet = Wallet.query.filter_by(user_id=partner_id).first()
    return {
        "window": window,
        "start": plain(start),
        "end": plain(end),
        "total": sum(r.earning for r in rows),
        "entries": [
            {
                "id": r.id,
                "amount": r.earning,
                "timestamp": plain(r.created_at),
                "order_id": r.order_id,
                "delivery_id": r.delivery_id,
            }
            for r in rows
        ],
        "daily": [{"date": d, "amount": a} for d, a in daily.items()],
        "balance": wallet.balance if wallet else 0,
    }
