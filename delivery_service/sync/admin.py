from collections import Counter

from ..realtime.bus import DELETE
from ..services.lifecycle import status_label
from .base import Synchronizer, merge, merge_order


class AdminSynchronizer(Synchronizer):
    def __init__(self, connect, reader, limit: int | None = None):
        super().__init__(connect, reader)
        self.limit = limit
        self.orders = {}
        self.deliveries = {}

    def subscriptions(self):
        return [("orders", "orders", None), ("deliveries", "deliveries", None)]

    def seed(self):
        snap = self.reader.admin_snapshot(self.limit)
        self.orders = {o["id"]: o for o in snap["orders"]}
        self.deliveries = {d["id"]: d for d in snap["deliveries"]}

    def handle(self, event):
        rows = self.orders if event.table == "orders" else self.deliveries
        if event.operation == DELETE:
            rows.pop(event.row.get("id"), None)
        elif event.table == "orders":
            merge_order(rows, event.row["id"], event.row)
        else:
            merge(rows, event.row["id"], event.row)

    def recent_orders(self, limit: int = 20):
        rows = sorted(self.orders.values(), key=lambda o: (o["created_at"], o["id"]), reverse=True)
        return rows[:limit]

    def active_deliveries(self):
        rows = [d for d in self.deliveries.values() if d["status"] == "accepted"]
        return sorted(rows, key=lambda d: (d["created_at"], d["id"]))

    def delivery_for_order(self, order_id: int):
        return next((d for d in self.deliveries.values() if d["order_id"] == order_id), None)

    def status_counts(self) -> dict:
        counts = Counter(
            status_label(o, self.delivery_for_order(o["id"])) for o in self.orders.values()
        )
        return {label: counts.get(label, 0) for label in ("Placed", "Paid", "On the way", "Delivered")}
