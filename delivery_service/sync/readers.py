"""Snapshot readers and claim/complete actions used by the synchronizers.

Every reader returns plain row dicts, the same shape change events carry, so a
synchronizer can merge a seed and a live event the same way. The local variants
query the store directly inside an app context; the HTTP variants go through
``DispatchClient``.
"""
from ..services import claims, ledger
from ..services.orders import orders_for_user, recent_orders
from ..services.notifications import latest as latest_notifications
from ..services.users import get_wallet
from ..utils.serializers import row_to_dict


class LocalStoreReader:
    def __init__(self, app):
        self.app = app

    def eater_snapshot(self, user_id: int) -> dict:
        with self.app.app_context():
            orders = orders_for_user(user_id)
            return {
                "orders": [row_to_dict(o) for o in orders],
                "deliveries": [row_to_dict(o.delivery) for o in orders if o.delivery is not None],
            }

    def partner_snapshot(self, partner_id: int) -> dict:
        with self.app.app_context():
            wallet = get_wallet(partner_id)
            return {
                "pool": [row_to_dict(o) for o in claims.claimable_pool()],
                "deliveries": [row_to_dict(d) for d in claims.deliveries_for_partner(partner_id)],
                "earnings": [row_to_dict(e) for e in ledger.earnings_for_partner(partner_id)],
                "wallet": row_to_dict(wallet) if wallet else None,
            }

    def admin_snapshot(self, limit: int | None = None) -> dict:
        with self.app.app_context():
            return {
                "orders": [row_to_dict(o) for o in recent_orders(limit)],
                "deliveries": [row_to_dict(d) for d in claims.all_deliveries()],
            }

    def deliveries_for_order(self, order_id: int) -> list:
        with self.app.app_context():
            return [row_to_dict(d) for d in claims.deliveries_for_order(order_id)]

    def notifications(self, user_id: int) -> list:
        with self.app.app_context():
            return [row_to_dict(n) for n in latest_notifications(user_id)]


def _strip(row: dict, key: str) -> dict:
    return {k: v for k, v in row.items() if k != key}


class HttpStoreReader:
    def __init__(self, client):
        self.client = client

    def eater_snapshot(self, user_id: int) -> dict:
        orders = self.client.my_orders()
        return {
            "orders": [_strip(o, "delivery") for o in orders],
            "deliveries": [o["delivery"] for o in orders if o.get("delivery")],
        }

    def partner_snapshot(self, partner_id: int) -> dict:
        wallet = self.client.wallet()
        return {
            "pool": self.client.pool(),
            "deliveries": [_strip(d, "order") for d in self.client.my_deliveries()],
            "earnings": wallet["earnings"],
            "wallet": wallet["wallet"],
        }

    def admin_snapshot(self, limit: int | None = None) -> dict:
        return {
            "orders": [_strip(o, "delivery") for o in self.client.admin_orders(limit)],
            "deliveries": [_strip(d, "order") for d in self.client.admin_deliveries()],
        }

    def deliveries_for_order(self, order_id: int) -> list:
        return self.client.deliveries_for_order(order_id)

    def notifications(self, user_id: int) -> list:
        return self.client.notifications()["data"]


class LocalActions:
    """Claim/complete for one partner against the local store. ``DispatchClient`` is the HTTP equivalent."""

    def __init__(self, app, partner_id: int):
        self.app = app
        self.partner_id = partner_id

    def claim(self, order_id: int):
        with self.app.app_context():
            return claims.claim(order_id, self.partner_id)

    def complete(self, delivery_id: int):
        with self.app.app_context():
            return ledger.complete(delivery_id, self.partner_id)
