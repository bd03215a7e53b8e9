import json

from flask import Blueprint, Response, current_app, g, request

from ..auth_mw import require_role
from ..errors import InvalidRequest, NotFound, NotOwner
from ..models import Delivery, Order, Role
from ..realtime.bus import BusDisconnected, RowFilter
from ..realtime.capture import WATCHED_TABLES
from ..utils.responses import ok

bp = Blueprint("events", __name__, url_prefix="/events")

ANY_ROLE = (Role.EATER, Role.DELIVERY_PARTNER, Role.ADMIN)

# table -> column that must be pinned to the caller's own id
_OWN_ROWS = {
    Role.EATER: {"orders": "user_id", "notifications": "user_id"},
    Role.DELIVERY_PARTNER: {
        "delivery_earnings": "delivery_partner_id",
        "wallet": "user_id",
        "notifications": "user_id",
    },
}
_TABLES = {
    Role.EATER: {"orders", "deliveries", "notifications", "menu"},
    Role.DELIVERY_PARTNER: {"orders", "deliveries", "delivery_earnings", "wallet", "notifications", "menu"},
    Role.ADMIN: set(WATCHED_TABLES),
}
POOL_FILTER = "status=eq.paid"


def _ids(filter: RowFilter | None, column: str):
    """Integer ids named by an ``eq``/``in`` filter on ``column``, or None."""
    if filter is None or filter.column != column or filter.op not in ("eq", "in"):
        return None
    try:
        return {int(v) for v in filter.values}
    except ValueError:
        return None


def _own_orders(user, ids) -> bool:
    if ids is None:
        return False
    return not ids or Order.query.filter(Order.id.in_(ids), Order.user_id == user.id).count() == len(ids)


def _delivered_by(user, ids) -> bool:
    if ids is None:
        return False
    held = Delivery.query.filter(Delivery.order_id.in_(ids), Delivery.delivery_partner_id == user.id)
    return not ids or held.count() == len(ids)


def authorize_subscription(user, table: str, filter: RowFilter | None) -> None:
    """Raise unless ``user`` may watch ``table`` through ``filter``.

    Eaters see deliveries of their own orders only. Partners see the paid
    pool plus the orders they deliver.
    """
    if table not in WATCHED_TABLES:
        raise InvalidRequest(f"unknown table {table!r}")
    if table not in _TABLES[user.role]:
        raise NotOwner(f"{user.role.value} cannot watch {table}")
    column = _OWN_ROWS.get(user.role, {}).get(table)
    if column is not None:
        pinned = filter is not None and filter.column == column and filter.op == "eq" \
            and filter.values == (str(user.id),)
        if not pinned:
            raise NotOwner(f"{table} subscriptions must filter {column}=eq.{user.id}")
    elif user.role == Role.EATER and table == "deliveries":
        if not _own_orders(user, _ids(filter, "order_id")):
            raise NotOwner("deliveries subscriptions must filter order_id to your own orders")
    elif user.role == Role.DELIVERY_PARTNER and table == "orders":
        pool = filter is not None and str(filter) == POOL_FILTER
        if not (pool or _delivered_by(user, _ids(filter, "id"))):
            raise NotOwner(f"orders subscriptions must filter {POOL_FILTER} or ids of orders you deliver")


def _parse_filter(raw):
    return RowFilter.parse(raw) if raw else None


def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data, separators=(',', ':'))}\n\n"


def _connection(connection_id):
    conn = current_app.extensions["change_bus"].get(connection_id)
    if conn is None:
        raise NotFound(f"connection {connection_id}")
    if conn.owner != g.user.id:
        raise NotOwner(f"connection {connection_id}")
    return conn


@bp.get("/stream")
@require_role(*ANY_ROLE)
def stream():
    """Server-sent change events. Optional ``sub=table`` / ``sub=table:filter`` params."""
    initial = []
    for raw in request.args.getlist("sub"):
        table, _, expr = raw.partition(":")
        flt = _parse_filter(expr)
        authorize_subscription(g.user, table, flt)
        initial.append((table, flt))

    conn = current_app.extensions["change_bus"].connect(owner=g.user.id)
    subs = [conn.subscribe(table, flt) for table, flt in initial]
    heartbeat = current_app.config["STREAM_HEARTBEAT_SEC"]
    logger = current_app.logger
    logger.info("event stream %s opened for user %s", conn.id, g.user.id)

    def generate():
        try:
            yield _sse("connected", {
                "connection_id": conn.id,
                "subscriptions": [{"id": s.id, "table": s.table} for s in subs],
            })
            while True:
                try:
                    ev = conn.poll(timeout=heartbeat)
                except BusDisconnected as e:
                    yield _sse("disconnected", {"reason": str(e)})
                    return
                if ev is None:
                    yield ": keepalive\n\n"
                    continue
                yield _sse("change", ev.to_dict())
        finally:
            conn.close()
            logger.info("event stream %s closed", conn.id)

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@bp.post("/<connection_id>/subscriptions")
@require_role(*ANY_ROLE)
def subscribe(connection_id):
    conn = _connection(connection_id)
    d = request.get_json(silent=True) or {}
    table = d.get("table")
    flt = _parse_filter(d.get("filter"))
    authorize_subscription(g.user, table, flt)
    sub = conn.subscribe(table, flt)
    return ok({"subscription": {"id": sub.id, "table": sub.table, "filter": str(flt) if flt else None}}, 201)


@bp.delete("/<connection_id>/subscriptions/<subscription_id>")
@require_role(*ANY_ROLE)
def unsubscribe(connection_id, subscription_id):
    conn = _connection(connection_id)
    conn.unsubscribe(subscription_id)
    return ok({"unsubscribed": subscription_id})
