"""In-process change broker.

Committed row changes are fanned out to every open ``BusConnection`` whose
subscriptions match them. Each connection owns a bounded queue that its
client drains from its own loop; when the queue overflows or the bus drops the
connection, the next ``poll`` raises ``BusDisconnected`` and the client is
expected to reconnect and re-read everything, because nothing is replayed.
"""
import itertools
import logging
import queue
import threading
import uuid
from dataclasses import dataclass, field, replace

from ..errors import InvalidRequest

logger = logging.getLogger(__name__)

INSERT, UPDATE, DELETE = "insert", "update", "delete"
OPERATIONS = (INSERT, UPDATE, DELETE)

_DROPPED = object()


class BusDisconnected(Exception):
    """The connection lost events; reconnect and re-seed."""


@dataclass
class ChangeEvent:
    table: str
    operation: str
    row: dict
    old: dict | None = None
    seq: int = 0
    filter_matched: bool = True
    subscription_id: str | None = None

    @property
    def pk(self):
        return self.row.get("id")

    def to_dict(self):
        return {
            "table": self.table,
            "operation": self.operation,
            "row": self.row,
            "old": self.old,
            "seq": self.seq,
            "filter_matched": self.filter_matched,
            "subscription_id": self.subscription_id,
        }

    @classmethod
    def from_dict(cls, data: dict):
        return cls(
            table=data["table"],
            operation=data["operation"],
            row=data["row"],
            old=data.get("old"),
            seq=data.get("seq", 0),
            filter_matched=data.get("filter_matched", True),
            subscription_id=data.get("subscription_id"),
        )


class RowFilter:
    """Single-column predicate written as ``column=op.value``.

    Supported operators: ``eq``, ``neq`` and ``in`` (``order_id=in.(1,2,3)``).
    Values are compared in their string form, as they travel over the wire.
    """

    OPS = ("eq", "neq", "in")

    def __init__(self, column: str, op: str, values: tuple):
        self.column = column
        self.op = op
        self.values = values

    @classmethod
    def parse(cls, expr: str):
        column, sep, rest = (expr or "").partition("=")
        op, dot, raw = rest.partition(".")
        if not sep or not dot or not column or op not in cls.OPS:
            raise InvalidRequest(f"bad filter {expr!r}")
        if op == "in":
            raw = raw.strip()
            if not (raw.startswith("(") and raw.endswith(")")):
                raise InvalidRequest(f"bad filter {expr!r}")
            values = tuple(v.strip() for v in raw[1:-1].split(",") if v.strip())
        else:
            values = (raw,)
        return cls(column.strip(), op, values)

    def matches(self, row: dict | None) -> bool:
        if row is None or self.column not in row:
            return False
        value = row[self.column]
        value = "" if value is None else str(value)
        if self.op == "neq":
            return value != self.values[0]
        return value in self.values

    def __str__(self):
        if self.op == "in":
            return f"{self.column}=in.({','.join(self.values)})"
        return f"{self.column}={self.op}.{self.values[0]}"

    def __repr__(self):
        return f"RowFilter({str(self)!r})"


@dataclass
class Subscription:
    table: str
    filter: RowFilter | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def route(self, event: ChangeEvent):
        """Return the event as this subscription sees it, or None if it does not concern it.

        An event concerns the subscription when the new row or the old row
        matches, so rows leaving the filtered set are still reported with
        ``filter_matched=False``.
        """
        if event.table != self.table:
            return None
        if self.filter is None:
            return replace(event, filter_matched=True, subscription_id=self.id)
        new_match = event.operation != DELETE and self.filter.matches(event.row)
        old_match = self.filter.matches(event.old if event.operation != DELETE else event.row)
        if not (new_match or old_match):
            return None
        return replace(event, filter_matched=new_match, subscription_id=self.id)


class BusConnection:
    def __init__(self, bus, queue_size: int, owner=None):
        self.id = uuid.uuid4().hex
        self.owner = owner
        self._bus = bus
        self._queue = queue.Queue(maxsize=queue_size)
        self._subs = {}
        self._lock = threading.Lock()
        self._closed = False
        self.lost_reason = None

    @property
    def connected(self) -> bool:
        return not self._closed and self.lost_reason is None

    @property
    def subscriptions(self):
        with self._lock:
            return list(self._subs.values())

    def subscribe(self, table: str, filter: str | RowFilter | None = None) -> Subscription:
        if isinstance(filter, str):
            filter = RowFilter.parse(filter)
        sub = Subscription(table=table, filter=filter)
        with self._lock:
            self._subs[sub.id] = sub
        return sub

    def unsubscribe(self, subscription) -> None:
        sub_id = getattr(subscription, "id", subscription)
        with self._lock:
            self._subs.pop(sub_id, None)

    def poll(self, timeout: float | None = None) -> ChangeEvent | None:
        """Next event, or None when nothing arrives within ``timeout`` seconds."""
        if self._closed:
            raise BusDisconnected("connection closed")
        if self.lost_reason is not None:
            raise BusDisconnected(self.lost_reason)
        try:
            if timeout == 0:
                item = self._queue.get_nowait()
            else:
                item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _DROPPED:
            raise BusDisconnected(self.lost_reason or "connection dropped")
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with self._lock:
            self._subs.clear()
        self._bus._release(self)
        self._wake()

    def drop(self, reason: str) -> None:
        """Lose the connection: queued events are discarded, the client must re-seed."""
        if self.lost_reason is not None or self._closed:
            return
        self.lost_reason = reason
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
        self._bus._release(self)
        self._wake()
        logger.warning("bus connection %s dropped: %s", self.id, reason)

    def _wake(self):
        try:
            self._queue.put_nowait(_DROPPED)
        except queue.Full:
            pass

    def _offer(self, event: ChangeEvent) -> None:
        with self._lock:
            routed = [r for r in (s.route(event) for s in self._subs.values()) if r is not None]
        for item in routed:
            try:
                self._queue.put_nowait(item)
            except queue.Full:
                self.drop("queue overflow")
                return


class ChangeBus:
    def __init__(self, queue_size: int = 1000):
        self.queue_size = queue_size
        self._connections = {}
        self._lock = threading.RLock()
        self._seq = itertools.count(1)

    def connect(self, owner=None) -> BusConnection:
        conn = BusConnection(self, self.queue_size, owner=owner)
        with self._lock:
            self._connections[conn.id] = conn
        return conn

    def get(self, connection_id: str) -> BusConnection | None:
        with self._lock:
            return self._connections.get(connection_id)

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def publish(self, events) -> None:
        # every connection sees events in seq order
        with self._lock:
            for event in events:
                event.seq = next(self._seq)
                for conn in list(self._connections.values()):
                    conn._offer(event)

    def drop_all(self, reason: str = "bus restarted") -> None:
        with self._lock:
            conns = list(self._connections.values())
        for conn in conns:
            conn.drop(reason)

    def _release(self, conn: BusConnection) -> None:
        with self._lock:
            self._connections.pop(conn.id, None)
