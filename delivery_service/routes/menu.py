from flask import Blueprint

from ..services.orders import available_menu
from ..utils.responses import ok
from ..utils.serializers import row_to_dict

bp = Blueprint("menu", __name__, url_prefix="/menu")


@bp.get("")
def list_menu():
    return ok({"data": [row_to_dict(m) for m in available_menu()]})
