"""HTTP client for the delivery service, used by apps and the synchronizers.

Connection errors, timeouts and 503 answers are retried with exponential
backoff; domain errors (403/404/409) come back as the same exception types the
service raised and are never retried.
"""
import logging
import time
import uuid

import requests

from .errors import ALREADY_CLAIMED, ERRORS_BY_CODE, DispatchError, TransientUnavailable
from .realtime.stream import StreamConnection
from .services.claims import Claimed, Rejected
from .services.ledger import Receipt

logger = logging.getLogger(__name__)

RETRY_STATUS = {502, 503, 504}


class DispatchClient:
    def __init__(self, base_url: str, token: str | None = None, timeout: float = 8,
                 retries: int = 3, backoff: float = 0.2, max_backoff: float = 2.0, session=None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self.max_backoff = max_backoff
        self.session = session or requests.Session()

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def _sleep(self, attempt: int) -> None:
        time.sleep(min(self.max_backoff, self.backoff * (2 ** attempt)))

    @staticmethod
    def raise_for_error(resp):
        try:
            body = resp.json()
        except ValueError:
            body = {}
        code = body.get("error") if isinstance(body, dict) else None
        detail = body.get("detail") if isinstance(body, dict) else None
        exc = ERRORS_BY_CODE.get(code)
        if exc is not None:
            raise exc(detail)
        if resp.status_code in RETRY_STATUS:
            raise TransientUnavailable(f"HTTP {resp.status_code}")
        err = DispatchError(detail or code or f"HTTP {resp.status_code}")
        err.code = code or "error"
        err.http_status = resp.status_code
        raise err

    def request(self, method: str, path: str, headers=None, **kwargs):
        """Send a request, retrying transient failures; returns the decoded JSON body.

        Every attempt carries the same ``headers``, so an ``Idempotency-Key``
        lets the service recognise a retry of a request it already applied.
        """
        headers = {**self.headers(), **(headers or {})}
        last = None
        for attempt in range(self.retries + 1):
            try:
                resp = self.session.request(
                    method, self.url(path), headers=headers, timeout=self.timeout, **kwargs
                )
            except (requests.ConnectionError, requests.Timeout) as e:
                last = TransientUnavailable(str(e))
            else:
                if resp.ok:
                    return resp.json() if resp.content else {}
                if resp.status_code not in RETRY_STATUS:
                    self.raise_for_error(resp)
                last = TransientUnavailable(f"HTTP {resp.status_code} from {path}")
            if attempt < self.retries:
                logger.warning("%s %s failed (%s), retrying", method, path, last)
                self._sleep(attempt)
        raise last

    # catalog / eater
    def menu(self):
        return self.request("GET", "/menu")["data"]

    def place_order(self, items, address=None, notes=None):
        return self.request("POST", "/orders", json={"items": items, "address": address, "notes": notes})["order"]

    def my_orders(self):
        return self.request("GET", "/orders/mine")["data"]

    def order(self, order_id: int):
        return self.request("GET", f"/orders/{order_id}")["order"]

    def quote(self, order_id: int):
        return self.request("GET", f"/orders/{order_id}/quote")["quote"]

    # payment gateway
    def complete_payment(self, order_id: int, final_amount: int):
        return self.request(
            "POST", "/payments/complete", json={"order_id": order_id, "final_amount": final_amount}
        )["order"]

    # delivery partner
    def pool(self):
        return self.request("GET", "/deliveries/pool")["data"]

    def claim(self, order_id: int):
        try:
            data = self.request("POST", "/deliveries/claim", json={"order_id": order_id})
        except DispatchError as e:
            if e.code == ALREADY_CLAIMED:
                return Rejected(order_id)
            raise
        delivery = data["delivery"]
        return Claimed(order_id=order_id, delivery_id=delivery["id"], delivery=delivery)

    def complete(self, delivery_id: int) -> Receipt:
        data = self.request(
            "POST", f"/deliveries/{delivery_id}/complete", headers={"Idempotency-Key": uuid.uuid4().hex}
        )["receipt"]
        return Receipt(
            delivery_id=data["delivery_id"],
            order_id=data["order_id"],
            earning=data["earning"],
            balance=data["balance"],
            delivered_at=data["delivered_at"],
        )

    def my_deliveries(self):
        return self.request("GET", "/deliveries/mine")["data"]

    def deliveries_for_order(self, order_id: int):
        return self.request("GET", f"/deliveries/for-order/{order_id}")["data"]

    def earnings(self, window: str = "all"):
        return self.request("GET", "/earnings", params={"window": window})

    def wallet(self):
        return self.request("GET", "/wallet")

    # every role
    def notifications(self, limit: int | None = None):
        params = {"limit": limit} if limit else None
        return self.request("GET", "/notifications", params=params)

    def mark_read(self, notification_id: int):
        return self.request("POST", f"/notifications/{notification_id}/read")["notification"]

    def mark_all_read(self) -> int:
        return self.request("POST", "/notifications/read-all")["updated"]

    # admin
    def admin_orders(self, limit: int | None = None):
        params = {"limit": limit} if limit else None
        return self.request("GET", "/admin/orders", params=params)["data"]

    def admin_deliveries(self, status: str | None = None):
        params = {"status": status} if status else None
        return self.request("GET", "/admin/deliveries", params=params)["data"]

    def stream(self):
        return StreamConnection(self)
