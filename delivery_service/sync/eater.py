from ..realtime.bus import DELETE
from ..services.lifecycle import status_label
from .base import Synchronizer, merge, merge_order
from .notifications import NotificationFeed


class EaterSynchronizer(Synchronizer):
    """Live view of one eater's orders, the deliveries attached to them and their notifications."""

    def __init__(self, connect, reader, user_id: int):
        super().__init__(connect, reader)
        self.user_id = user_id
        self.orders = {}
        self.deliveries = {}  # order_id -> delivery row
        self.feed = NotificationFeed(user_id)

    def subscriptions(self):
        return [("orders", "orders", f"user_id=eq.{self.user_id}"), self.feed.subscription()]

    def _watch_deliveries(self):
        ids = ",".join(str(i) for i in sorted(self.orders))
        self.watch("deliveries", "deliveries", f"order_id=in.({ids})")

    def seed(self):
        snap = self.reader.eater_snapshot(self.user_id)
        self.orders = {}
        self.deliveries = {}
        for row in snap["orders"]:
            self.orders[row["id"]] = row
        self._watch_deliveries()
        # read again now that the deliveries filter covers every known order
        snap = self.reader.eater_snapshot(self.user_id)
        for row in snap["orders"]:
            merge_order(self.orders, row["id"], row)
        for row in snap["deliveries"]:
            merge(self.deliveries, row["order_id"], row)
        self.feed.seed(self.reader.notifications(self.user_id))

    def handle(self, event):
        if event.table == "orders":
            self._handle_order(event)
        elif event.table == "deliveries":
            row = event.row
            if event.operation == DELETE:
                self.deliveries.pop(row.get("order_id"), None)
            elif row.get("order_id") in self.orders:
                merge(self.deliveries, row["order_id"], row)
        elif event.table == NotificationFeed.TABLE:
            if self.feed.apply(event):
                self.notice(event.row["title"])

    def _handle_order(self, event):
        row = event.row
        if event.operation == DELETE or not event.filter_matched:
            self.orders.pop(row.get("id"), None)
            self.deliveries.pop(row.get("id"), None)
            return
        is_new = row["id"] not in self.orders
        merge_order(self.orders, row["id"], row)
        if is_new:
            self._watch_deliveries()
            for d in self.reader.deliveries_for_order(row["id"]):
                merge(self.deliveries, d["order_id"], d)

    def status_label(self, order_id: int) -> str:
        return status_label(self.orders[order_id], self.deliveries.get(order_id))

    def view(self):
        """Orders newest first, each with its delivery and customer-facing label."""
        rows = sorted(self.orders.values(), key=lambda o: (o["created_at"], o["id"]), reverse=True)
        return [
            {**o, "delivery": self.deliveries.get(o["id"]), "label": self.status_label(o["id"])}
            for o in rows
        ]
