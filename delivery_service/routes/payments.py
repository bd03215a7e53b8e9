from flask import Blueprint, current_app, request

from ..auth_mw import GATEWAY, require_role
from ..errors import InvalidRequest
from ..models import Role
from ..services.orders import complete_payment
from ..utils.responses import ok
from ..utils.serializers import order_json

bp = Blueprint("payments", __name__, url_prefix="/payments")


@bp.post("/complete")
@require_role(GATEWAY, Role.ADMIN)
def payment_completed():
    """Payment gateway callback: the order is paid and its final amount is known."""
    d = request.get_json(silent=True) or {}
    try:
        order_id = int(d["order_id"])
    except (KeyError, TypeError, ValueError):
        raise InvalidRequest("order_id is required") from None
    order = complete_payment(order_id, d.get("final_amount"))
    current_app.logger.info("payment completed for order %s", order_id)
    return ok({"order": order_json(order)})
