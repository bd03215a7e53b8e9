"""Per-user notification feed.

``notify`` only adds the row to the current session: callers invoke it inside
their own transaction so the notification commits (and is published) together
with the change it announces.
"""
import logging

from ..db import db
from ..errors import NotFound, NotOwner
from ..models import Notification
from .store import transaction

logger = logging.getLogger(__name__)

FEED_SIZE = 10


def notify(user_id: int, title: str, message: str, order_id: int | None = None) -> Notification:
    note = Notification(user_id=user_id, order_id=order_id, title=title, message=message, read=False)
    db.session.add(note)
    return note


def latest(user_id: int, limit: int = FEED_SIZE):
    return (
        Notification.query.filter_by(user_id=user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )


def unread_count(user_id: int) -> int:
    return Notification.query.filter_by(user_id=user_id, read=False).count()


def mark_read(notification_id: int, user_id: int) -> Notification:
    with transaction():
        note = db.session.get(Notification, notification_id)
        if note is None:
            raise NotFound(f"notification {notification_id}")
        if note.user_id != user_id:
            raise NotOwner(f"notification {notification_id}")
        note.read = True
    return note


def mark_all_read(user_id: int) -> int:
    """Mark every unread notification of ``user_id`` as read; returns how many changed."""
    # row by row, so each update is captured and published
    with transaction():
        unread = Notification.query.filter_by(user_id=user_id, read=False).all()
        for note in unread:
            note.read = True
    if unread:
        logger.info("marked %d notification(s) read for user %s", len(unread), user_id)
    return len(unread)
