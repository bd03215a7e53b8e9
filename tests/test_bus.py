import gc

import pytest

from delivery_service.db import db
from delivery_service.errors import InvalidRequest
from delivery_service.models import MenuItem
from delivery_service.realtime.bus import (
    BusDisconnected,
    ChangeBus,
    ChangeEvent,
    RowFilter,
)
from delivery_service.services import claims, ledger, lifecycle
from delivery_service.services.orders import complete_payment


def drain(conn):
    events = []
    while True:
        ev = conn.poll(0)
        if ev is None:
            return events
        events.append(ev)


@pytest.mark.parametrize("expr,row,expected", [
    ("user_id=eq.7", {"user_id": 7}, True),
    ("user_id=eq.7", {"user_id": 8}, False),
    ("status=neq.paid", {"status": "placed"}, True),
    ("status=neq.paid", {"status": "paid"}, False),
    ("order_id=in.(1,2,3)", {"order_id": 2}, True),
    ("order_id=in.(1,2,3)", {"order_id": 4}, False),
    ("order_id=in.()", {"order_id": 4}, False),
    ("user_id=eq.7", {"other": 7}, False),
])
def test_row_filter(expr, row, expected):
    assert RowFilter.parse(expr).matches(row) is expected


@pytest.mark.parametrize("expr", ["user_id", "user_id=gt.4", "=eq.1", "order_id=in.1,2"])
def test_row_filter_rejects_garbage(expr):
    with pytest.raises(InvalidRequest):
        RowFilter.parse(expr)


def test_row_filter_round_trips_to_text():
    assert str(RowFilter.parse("order_id=in.(3,1)")) == "order_id=in.(3,1)"


def test_events_follow_filters_and_report_leaving_rows():
    bus = ChangeBus()
    conn = bus.connect()
    conn.subscribe("orders", "status=eq.paid")

    bus.publish([
        ChangeEvent("orders", "update", {"id": 1, "status": "paid"}, old={"id": 1, "status": "placed"}),
        ChangeEvent("orders", "update", {"id": 2, "status": "placed"}, old={"id": 2, "status": "placed"}),
        ChangeEvent("orders", "update", {"id": 1, "status": "delivered"}, old={"id": 1, "status": "paid"}),
        ChangeEvent("deliveries", "insert", {"id": 5, "order_id": 1}),
    ])
    events = drain(conn)
    assert [(e.row["id"], e.filter_matched) for e in events] == [(1, True), (1, False)]
    assert events[0].seq < events[1].seq


def test_unfiltered_subscription_and_unsubscribe():
    bus = ChangeBus()
    conn = bus.connect()
    sub = conn.subscribe("deliveries")
    bus.publish([ChangeEvent("deliveries", "insert", {"id": 1, "order_id": 9})])
    assert len(drain(conn)) == 1
    conn.unsubscribe(sub)
    bus.publish([ChangeEvent("deliveries", "insert", {"id": 2, "order_id": 10})])
    assert drain(conn) == []


def test_every_connection_sees_the_same_order():
    bus = ChangeBus()
    a, b = bus.connect(), bus.connect()
    a.subscribe("orders")
    b.subscribe("orders")
    bus.publish([ChangeEvent("orders", "insert", {"id": i}) for i in range(5)])
    assert [e.row["id"] for e in drain(a)] == [e.row["id"] for e in drain(b)] == list(range(5))


def test_overflow_drops_the_connection():
    bus = ChangeBus(queue_size=3)
    conn = bus.connect()
    conn.subscribe("orders")
    bus.publish([ChangeEvent("orders", "insert", {"id": i}) for i in range(10)])
    with pytest.raises(BusDisconnected):
        conn.poll(0)
    assert not conn.connected
    assert bus.connection_count == 0


def test_drop_all_disconnects_waiting_pollers():
    bus = ChangeBus()
    conn = bus.connect()
    conn.subscribe("orders")
    bus.drop_all("maintenance")
    with pytest.raises(BusDisconnected, match="maintenance"):
        conn.poll(1)


def test_close_releases_the_connection():
    bus = ChangeBus()
    conn = bus.connect()
    assert bus.get(conn.id) is conn
    conn.close()
    assert bus.get(conn.id) is None
    with pytest.raises(BusDisconnected):
        conn.poll(0)


def test_event_serialises_for_the_wire():
    ev = ChangeEvent("wallet", "update", {"id": 1, "balance": 5000}, old={"id": 1, "balance": 0}, seq=4)
    assert ChangeEvent.from_dict(ev.to_dict()) == ev


# -- capture from the store

def test_committed_changes_are_published(app, bus, users, paid_order):
    conn = bus.connect()
    conn.subscribe("orders", f"user_id=eq.{users['eater']}")
    order_id = paid_order()

    events = drain(conn)
    assert [(e.operation, e.row["status"]) for e in events] == [("insert", "placed"), ("update", "paid")]
    assert events[1].old["status"] == "placed"
    assert events[1].row["id"] == order_id


def test_rolled_back_changes_are_never_published(app, bus):
    conn = bus.connect()
    conn.subscribe("menu")
    with app.app_context():
        db.session.add(MenuItem(name="Ghost", price=1))
        db.session.flush()
        db.session.rollback()
    assert drain(conn) == []


def test_losing_claim_publishes_nothing(app, bus, users, paid_order):
    order_id = paid_order()
    conn = bus.connect()
    conn.subscribe("deliveries")
    with app.app_context():
        claims.claim(order_id, users["p1"])
        claims.claim(order_id, users["p2"])
    events = drain(conn)
    assert len(events) == 1
    assert events[0].row["delivery_partner_id"] == users["p1"]


def test_completion_publishes_all_rows_together(app, bus, users, paid_order):
    order_id = paid_order()
    with app.app_context():
        delivery_id = claims.claim(order_id, users["p1"]).delivery_id
    tables = ("orders", "deliveries", "delivery_earnings", "wallet", "notifications")
    conn = bus.connect()
    for table in tables:
        conn.subscribe(table)
    with app.app_context():
        ledger.complete(delivery_id, users["p1"])

    events = drain(conn)
    by_table = {e.table: e for e in events}
    assert set(by_table) == set(tables)
    assert by_table["delivery_earnings"].row["delivery_id"] == delivery_id
    notified = sorted(e.row["user_id"] for e in events if e.table == "notifications")
    assert notified == sorted([users["eater"], users["p1"]])
    assert by_table["orders"].row["status"] == "delivered"
    assert by_table["deliveries"].row["status"] == "completed"
    assert by_table["wallet"].row["balance"] == 5000
    assert by_table["wallet"].old["balance"] == 0
    seqs = [e.seq for e in events]
    assert seqs == list(range(seqs[0], seqs[0] + len(events)))


def test_rows_added_without_a_reference_are_published(app, bus):
    conn = bus.connect()
    conn.subscribe("menu")
    with app.app_context():
        db.session.add(MenuItem(name="Che", price=1000))
        db.session.flush()
        gc.collect()
        db.session.commit()
    events = drain(conn)
    assert [(e.operation, e.row["name"]) for e in events] == [("insert", "Che")]


def test_observed_order_statuses_never_go_backwards(app, bus, users, new_order):
    conn = bus.connect()
    conn.subscribe("orders")
    delivered, on_the_way = new_order(), new_order("eater2")
    with app.app_context():
        complete_payment(delivered, 30000)
        complete_payment(on_the_way, 30000)
        delivery_id = claims.claim(delivered, users["p1"]).delivery_id
        claims.claim(on_the_way, users["p2"])
        ledger.complete(delivery_id, users["p1"])

    seen = {}
    for ev in drain(conn):
        seen.setdefault(ev.row["id"], []).append(ev.row["status"])
    assert seen[delivered] == ["placed", "paid", "delivered"]
    assert seen[on_the_way] == ["placed", "paid"]
    for statuses in seen.values():
        ranks = [lifecycle.ORDER_RANK[s] for s in statuses]
        assert ranks == sorted(ranks)
