from flask import Blueprint, g, request

from ..auth_mw import require_role
from ..models import Role
from ..services import notifications
from ..utils.responses import ok
from ..utils.serializers import row_to_dict

bp = Blueprint("notifications", __name__, url_prefix="/notifications")

ANY_ROLE = (Role.EATER, Role.DELIVERY_PARTNER, Role.ADMIN)


@bp.get("")
@require_role(*ANY_ROLE)
def feed():
    limit = request.args.get("limit", default=notifications.FEED_SIZE, type=int)
    rows = notifications.latest(g.user.id, max(1, min(limit, 100)))
    return ok({
        "data": [row_to_dict(n) for n in rows],
        "unread": notifications.unread_count(g.user.id),
    })


@bp.post("/<int:notification_id>/read")
@require_role(*ANY_ROLE)
def mark_read(notification_id):
    note = notifications.mark_read(notification_id, g.user.id)
    return ok({"notification": row_to_dict(note)})


@bp.post("/read-all")
@require_role(*ANY_ROLE)
def mark_all_read():
    return ok({"updated": notifications.mark_all_read(g.user.id)})
