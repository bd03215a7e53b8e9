from flask import Blueprint, g, request

from ..auth_mw import require_role
from ..errors import InvalidRequest, NotOwner
from ..models import DeliveryStatus, Role
from ..services import claims, ledger
from ..services.orders import get_order
from ..utils.responses import err, ok
from ..utils.serializers import delivery_json, order_json, row_to_dict

bp = Blueprint("deliveries", __name__, url_prefix="/deliveries")


def parse_status(raw):
    if not raw:
        return None
    try:
        return DeliveryStatus(raw)
    except ValueError:
        raise InvalidRequest(f"unknown delivery status {raw!r}") from None


@bp.get("/pool")
@require_role(Role.DELIVERY_PARTNER)
def pool():
    return ok({"data": [order_json(o) for o in claims.claimable_pool()]})


@bp.post("/claim")
@require_role(Role.DELIVERY_PARTNER)
def claim():
    d = request.get_json(silent=True) or {}
    try:
        order_id = int(d["order_id"])
    except (KeyError, TypeError, ValueError):
        raise InvalidRequest("order_id is required") from None

    outcome = claims.claim(order_id, g.user.id)
    if not outcome.ok:
        return err(outcome.reason, 409, order_id=order_id)
    return ok({"delivery": outcome.delivery}, 201)


@bp.post("/<int:delivery_id>/complete")
@require_role(Role.DELIVERY_PARTNER)
def complete(delivery_id):
    key = request.headers.get("Idempotency-Key") or None
    if key is not None and len(key) > 64:
        raise InvalidRequest("Idempotency-Key is limited to 64 characters")
    receipt = ledger.complete(delivery_id, g.user.id, request_key=key)
    return ok({"receipt": receipt.to_dict()})


@bp.get("/mine")
@require_role(Role.DELIVERY_PARTNER)
def my_deliveries():
    status = parse_status(request.args.get("status"))
    rows = claims.deliveries_for_partner(g.user.id)
    if status is not None:
        rows = [r for r in rows if r.status == status]
    return ok({"data": [delivery_json(r, r.order) for r in rows]})


@bp.get("/for-order/<int:order_id>")
@require_role(Role.EATER, Role.DELIVERY_PARTNER, Role.ADMIN)
def for_order(order_id):
    order = get_order(order_id)
    if g.user.role == Role.EATER and order.user_id != g.user.id:
        raise NotOwner(f"order {order_id}")
    return ok({"data": [row_to_dict(r) for r in claims.deliveries_for_order(order_id)]})

