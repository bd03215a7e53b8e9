from flask import Blueprint, request

from ..auth_mw import require_role
from ..models import Role
from ..services.claims import all_deliveries
from ..services.orders import recent_orders
from ..utils.responses import ok
from ..utils.serializers import delivery_json, order_json
from .deliveries import parse_status

bp = Blueprint("admin", __name__, url_prefix="/admin")


@bp.get("/orders")
@require_role(Role.ADMIN)
def orders():
    limit = request.args.get("limit", type=int)
    return ok({"data": [order_json(o, o.delivery) for o in recent_orders(limit)]})


@bp.get("/deliveries")
@require_role(Role.ADMIN)
def deliveries():
    status = parse_status(request.args.get("status"))
    return ok({"data": [delivery_json(d, d.order) for d in all_deliveries(status)]})
