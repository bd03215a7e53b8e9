import logging

from ..errors import InvalidTransition
from ..realtime.bus import DELETE
from .base import Synchronizer, merge
from .notifications import NotificationFeed

logger = logging.getLogger(__name__)

NO_LONGER_AVAILABLE = "order no longer available"


class PartnerSynchronizer(Synchronizer):
    """Delivery partner dashboard: the claimable pool, own deliveries, earnings and notifications.

    ``actions`` provides ``claim(order_id)`` and ``complete(delivery_id)``;
    ``LocalActions`` or a ``DispatchClient`` both fit.
    """

    def __init__(self, connect, reader, actions, partner_id: int):
        super().__init__(connect, reader)
        self.actions = actions
        self.partner_id = partner_id
        self._pool = {}
        self.claimed = set()  # paid orders that already have a delivery
        self.deliveries = {}
        self.earnings = {}
        self.wallet = None
        self.feed = NotificationFeed(partner_id)

    def subscriptions(self):
        return [
            ("pool", "orders", "status=eq.paid"),
            ("deliveries", "deliveries", None),
            ("earnings", "delivery_earnings", f"delivery_partner_id=eq.{self.partner_id}"),
            ("wallet", "wallet", f"user_id=eq.{self.partner_id}"),
            self.feed.subscription(),
        ]

    def seed(self):
        snap = self.reader.partner_snapshot(self.partner_id)
        self._pool = {o["id"]: o for o in snap["pool"]}
        self.claimed = set()
        self.deliveries = {d["id"]: d for d in snap["deliveries"]}
        self.earnings = {e["id"]: e for e in snap["earnings"]}
        self.wallet = snap["wallet"]
        self.feed.seed(self.reader.notifications(self.partner_id))

    def handle(self, event):
        row = event.row
        if event.table == "orders":
            oid = row.get("id")
            if event.operation == DELETE or not event.filter_matched:
                # left the paid set for good
                self._pool.pop(oid, None)
                self.claimed.discard(oid)
            elif row.get("payment_status") != "completed" or oid in self.claimed:
                self._pool.pop(oid, None)
            else:
                merge(self._pool, oid, row)
        elif event.table == "deliveries":
            if event.operation == DELETE:
                self.deliveries.pop(row.get("id"), None)
                return
            # any delivery row means the order is taken, by us or by someone else
            if row.get("status") == "accepted":
                self.claimed.add(row["order_id"])
            else:
                self.claimed.discard(row["order_id"])
            self._pool.pop(row["order_id"], None)
            if row["delivery_partner_id"] == self.partner_id:
                merge(self.deliveries, row["id"], row)
        elif event.table == "delivery_earnings":
            if event.operation != DELETE:
                self.earnings[row["id"]] = row
        elif event.table == "wallet":
            if event.operation != DELETE and row.get("user_id") == self.partner_id:
                self.wallet = row
        elif event.table == NotificationFeed.TABLE:
            if self.feed.apply(event):
                self.notice(row["title"])

    # -- views
    def pool(self):
        return sorted(self._pool.values(), key=lambda o: (o["created_at"], o["id"]))

    def active_deliveries(self):
        rows = [d for d in self.deliveries.values() if d["status"] == "accepted"]
        return sorted(rows, key=lambda d: (d["created_at"], d["id"]))

    def completed_deliveries(self):
        rows = [d for d in self.deliveries.values() if d["status"] == "completed"]
        return sorted(rows, key=lambda d: (d["delivered_at"] or "", d["id"]), reverse=True)

    @property
    def balance(self) -> int:
        return self.wallet["balance"] if self.wallet else 0

    @property
    def total_earned(self) -> int:
        return sum(e["earning"] for e in self.earnings.values())

    # -- actions
    def claim(self, order_id: int):
        """Claim from the pool. Losing the race is not an error: the order just disappears."""
        try:
            outcome = self.actions.claim(order_id)
        except InvalidTransition:
            self.seed()
            self._notify(None)
            raise
        self._pool.pop(order_id, None)
        if outcome.ok:
            self.claimed.add(order_id)
            merge(self.deliveries, outcome.delivery_id, outcome.delivery)
        else:
            logger.info("partner %s lost order %s", self.partner_id, order_id)
            self.notice(NO_LONGER_AVAILABLE)
        self._notify(None)
        return outcome

    def complete(self, delivery_id: int):
        try:
            receipt = self.actions.complete(delivery_id)
        except InvalidTransition:
            self.seed()
            self._notify(None)
            raise
        # the delivery, earning and wallet rows arrive as change events
        return receipt
