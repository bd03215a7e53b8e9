from flask import Blueprint, g, request

from ..auth_mw import require_role
from ..models import Role
from ..services.ledger import earnings_for_partner, earnings_summary
from ..services.users import get_wallet
from ..utils.responses import ok
from ..utils.serializers import row_to_dict

bp = Blueprint("earnings", __name__)


@bp.get("/earnings")
@require_role(Role.DELIVERY_PARTNER)
def earnings():
    window = request.args.get("window", "all")
    return ok(earnings_summary(g.user.id, window))


@bp.get("/wallet")
@require_role(Role.DELIVERY_PARTNER)
def wallet():
    w = get_wallet(g.user.id)
    return ok({
        "wallet": row_to_dict(w) if w else None,
        "earnings": [row_to_dict(e) for e in earnings_for_partner(g.user.id)],
    })
