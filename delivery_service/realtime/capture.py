"""Turn committed ORM changes into bus events.

Changes are collected per flush, snapshotted right before the commit and only
handed to the bus once the commit went through. A rollback throws them away,
so subscribers never observe a half-finished unit of work.
"""
import logging

from flask import current_app, has_app_context
from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from ..utils.serializers import plain, row_to_dict
from .bus import DELETE, INSERT, UPDATE, ChangeEvent

logger = logging.getLogger(__name__)

WATCHED_TABLES = frozenset(
    {"orders", "deliveries", "delivery_earnings", "wallet", "notifications", "users", "menu"}
)

_PENDING = "change_capture.pending"
_OUTGOING = "change_capture.outgoing"


def _table(obj):
    return getattr(obj, "__tablename__", None)


def _old_snapshot(obj) -> dict:
    state = inspect(obj)
    old = {}
    for attr in state.mapper.column_attrs:
        hist = state.attrs[attr.key].history
        if hist.deleted:
            old[attr.key] = plain(hist.deleted[0])
        elif hist.unchanged:
            old[attr.key] = plain(hist.unchanged[0])
    return old


def _after_flush(session, flush_context):
    pending = session.info.setdefault(_PENDING, {})
    for obj in session.new:
        if _table(obj) in WATCHED_TABLES:
            pending.setdefault(inspect(obj), (INSERT, None, obj))
    for obj in session.dirty:
        if _table(obj) in WATCHED_TABLES and session.is_modified(obj, include_collections=False):
            pending.setdefault(inspect(obj), (UPDATE, _old_snapshot(obj), obj))
    for obj in session.deleted:
        if _table(obj) in WATCHED_TABLES:
            state = inspect(obj)
            op, old, _ = pending.get(state, (DELETE, None, None))
            if op == INSERT:
                # never visible outside this transaction
                pending.pop(state, None)
            else:
                pending[state] = (DELETE, old or _old_snapshot(obj), obj)


def _before_commit(session):
    if session.info.get(_PENDING) or session.new or session.dirty or session.deleted:
        session.flush()
    pending = session.info.pop(_PENDING, None)
    if not pending:
        return
    events = []
    for state, (op, old, obj) in pending.items():
        table = state.mapper.local_table.name
        if op == DELETE:
            events.append(ChangeEvent(table=table, operation=DELETE, row=old or {}, old=None))
        else:
            events.append(ChangeEvent(table=table, operation=op, row=row_to_dict(obj), old=old))
    session.info.setdefault(_OUTGOING, []).extend(events)


def _after_commit(session):
    events = session.info.pop(_OUTGOING, None)
    if not events or not has_app_context():
        return
    bus = current_app.extensions.get("change_bus")
    if bus is None:
        return
    bus.publish(events)
    logger.debug("published %d change(s)", len(events))


def _after_rollback(session):
    session.info.pop(_PENDING, None)
    session.info.pop(_OUTGOING, None)


_HOOKS = (
    ("after_flush", _after_flush),
    ("before_commit", _before_commit),
    ("after_commit", _after_commit),
    ("after_rollback", _after_rollback),
    ("after_soft_rollback", lambda session, previous_transaction: _after_rollback(session)),
)


def install_capture():
    """Register the session hooks once per process."""
    for name, fn in _HOOKS:
        if not event.contains(Session, name, fn):
            event.listen(Session, name, fn)
