from ..realtime.bus import DELETE
from .base import merge


class NotificationFeed:
    """One user's notifications, seeded with the latest few and grown by live inserts."""

    TABLE = "notifications"

    def __init__(self, user_id: int):
        self.user_id = user_id
        self.rows = {}

    def subscription(self):
        return ("notifications", self.TABLE, f"user_id=eq.{self.user_id}")

    def seed(self, rows):
        self.rows = {n["id"]: n for n in rows}

    def apply(self, event) -> bool:
        """Fold a notifications event in; returns True when it was a new notification."""
        row = event.row
        if event.operation == DELETE or not event.filter_matched:
            self.rows.pop(row.get("id"), None)
            return False
        is_new = row["id"] not in self.rows
        merge(self.rows, row["id"], row)
        return is_new

    def latest(self, limit: int = 10):
        rows = sorted(self.rows.values(), key=lambda n: (n["created_at"], n["id"]), reverse=True)
        return rows[:limit]

    @property
    def unread(self) -> int:
        return sum(1 for n in self.rows.values() if not n["read"])
