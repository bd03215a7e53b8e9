from flask import Blueprint, g, request

from ..auth_mw import require_role
from ..errors import NotOwner
from ..models import OrderStatus, Role
from ..services import orders as order_svc
from ..utils.responses import ok
from ..utils.serializers import order_json

bp = Blueprint("orders", __name__, url_prefix="/orders")


def _visible(order):
    """Eaters see their own orders, partners see paid ones, admins see all."""
    user = g.user
    if user.role == Role.ADMIN:
        return True
    if user.role == Role.EATER:
        return order.user_id == user.id
    if order.delivery is not None:
        return order.delivery.delivery_partner_id == user.id
    return order.status == OrderStatus.PAID


@bp.post("")
@require_role(Role.EATER)
def create_order():
    d = request.get_json(silent=True) or {}
    order = order_svc.place_order(
        g.user.id,
        d.get("items") or [],
        address=d.get("address"),
        notes=d.get("notes"),
    )
    return ok({"order": order_json(order)}, 201)


@bp.get("/mine")
@require_role(Role.EATER)
def my_orders():
    data = [order_json(o, o.delivery) for o in order_svc.orders_for_user(g.user.id)]
    return ok({"data": data})


@bp.get("/<int:order_id>")
@require_role(Role.EATER, Role.DELIVERY_PARTNER, Role.ADMIN)
def get_order(order_id):
    order = order_svc.get_order(order_id)
    if not _visible(order):
        raise NotOwner(f"order {order_id}")
    return ok({"order": order_json(order, order.delivery)})


@bp.get("/<int:order_id>/quote")
@require_role(Role.EATER, Role.ADMIN)
def get_quote(order_id):
    order = order_svc.get_order(order_id)
    if not _visible(order):
        raise NotOwner(f"order {order_id}")
    return ok({"order_id": order.id, "quote": order_svc.quote(order)})
