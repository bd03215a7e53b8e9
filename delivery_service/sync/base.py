"""Shared machinery of the client-side synchronizers.

A synchronizer keeps a local view that converges to the store: it subscribes
first and reads second, so nothing committed between the two is lost, then
applies change events as they arrive. Losing the connection means events were
lost too, so recovery always reconnects, resubscribes and re-reads everything.
"""
import logging

from ..realtime.bus import DELETE, BusDisconnected
from ..services.lifecycle import is_forward

logger = logging.getLogger(__name__)


def merge(rows: dict, key, row: dict) -> bool:
    """Upsert ``row`` unless the held copy carries a newer ``version_id``."""
    held = rows.get(key)
    if held is not None and held.get("version_id") is not None and row.get("version_id") is not None:
        if row["version_id"] < held["version_id"]:
            return False
    rows[key] = row
    return True


def merge_order(rows: dict, key, row: dict) -> bool:
    """``merge`` for order rows; also refuses a row whose status is behind the held one."""
    held = rows.get(key)
    if held is not None and not is_forward(held["status"], row["status"]):
        return False
    return merge(rows, key, row)


class Synchronizer:
    def __init__(self, connect, reader):
        self._connect = connect
        self.reader = reader
        self.conn = None
        self._subs = {}
        self._listeners = []
        self.notices = []
        self.reconnects = 0

    # -- subclass hooks
    def subscriptions(self):
        """Iterable of ``(key, table, filter)`` opened before the seed read."""
        return ()

    def seed(self):
        raise NotImplementedError

    def handle(self, event):
        raise NotImplementedError

    # -- lifecycle
    def start(self):
        self.conn = self._connect()
        for key, table, flt in self.subscriptions():
            self._subs[key] = self.conn.subscribe(table, flt)
        self.seed()
        self._notify(None)
        return self

    def watch(self, key, table, flt=None):
        """Replace (or open) subscription ``key``; the new one is live before the old one goes."""
        old = self._subs.get(key)
        self._subs[key] = self.conn.subscribe(table, flt)
        if old is not None:
            self.conn.unsubscribe(old)

    def pump(self, timeout: float = 0) -> int:
        """Apply every event already delivered, waiting up to ``timeout`` for the first one."""
        if self.conn is None:
            self.recover()
        handled = 0
        while True:
            try:
                ev = self.conn.poll(timeout if handled == 0 else 0)
            except BusDisconnected as e:
                logger.warning("%s lost its connection (%s), re-seeding", type(self).__name__, e)
                self.recover()
                return handled + 1
            if ev is None:
                return handled
            if ev.operation == DELETE or ev.row:
                self.handle(ev)
            handled += 1
            self._notify(ev)

    def recover(self):
        self._release()
        self.conn = self._connect()
        for key, table, flt in self.subscriptions():
            self._subs[key] = self.conn.subscribe(table, flt)
        self.seed()
        self.reconnects += 1
        self._notify(None)
        logger.info("%s re-seeded after reconnect #%d", type(self).__name__, self.reconnects)

    def _release(self):
        conn, self.conn = self.conn, None
        subs, self._subs = self._subs, {}
        if conn is None:
            return
        if conn.connected:
            for sub in subs.values():
                conn.unsubscribe(sub)
        conn.close()

    def close(self):
        self._release()

    def __enter__(self):
        return self.start()

    def __exit__(self, *exc):
        self.close()

    # -- listeners
    def on_change(self, fn):
        self._listeners.append(fn)
        return fn

    def notice(self, message: str):
        self.notices.append(message)

    def _notify(self, event):
        for fn in list(self._listeners):
            fn(self, event)
