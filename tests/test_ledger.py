import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from delivery_service.db import db
from delivery_service.errors import InvalidRequest, InvalidState, NotOwner
from delivery_service.models import (
    Delivery,
    DeliveryEarning,
    DeliveryStatus,
    Order,
    OrderStatus,
    Wallet,
    utcnow,
)
from delivery_service.services import claims, ledger


@pytest.fixture
def claimed(app, users, paid_order):
    """Paid order claimed by partner p1; returns (order_id, delivery_id)."""
    def make(partner="p1"):
        order_id = paid_order()
        with app.app_context():
            return order_id, claims.claim(order_id, users[partner]).delivery_id
    return make


def wallet_balance(partner_id):
    return db.session.execute(select(Wallet.balance).where(Wallet.user_id == partner_id)).scalar() or 0


def earnings_sum(partner_id):
    q = select(func.coalesce(func.sum(DeliveryEarning.earning), 0)).where(
        DeliveryEarning.delivery_partner_id == partner_id
    )
    return db.session.execute(q).scalar()


def test_complete_updates_all_four_rows(app, users, claimed):
    order_id, delivery_id = claimed()
    with app.app_context():
        receipt = ledger.complete(delivery_id, users["p1"])
        assert receipt.earning == 5000
        assert receipt.balance == 5000

        delivery = db.session.get(Delivery, delivery_id)
        assert delivery.status == DeliveryStatus.COMPLETED
        assert delivery.delivered_at is not None
        assert db.session.get(Order, order_id).status == OrderStatus.DELIVERED
        earning = DeliveryEarning.query.filter_by(delivery_id=delivery_id).one()
        assert (earning.order_id, earning.earning) == (order_id, 5000)
        assert wallet_balance(users["p1"]) == 5000


def test_complete_twice_is_invalid_state(app, users, claimed):
    _, delivery_id = claimed()
    with app.app_context():
        ledger.complete(delivery_id, users["p1"])
        with pytest.raises(InvalidState):
            ledger.complete(delivery_id, users["p1"])
        assert DeliveryEarning.query.count() == 1
        assert wallet_balance(users["p1"]) == 5000


def test_completion_repeated_with_its_key_returns_the_receipt(app, users, claimed):
    order_id, delivery_id = claimed()
    with app.app_context():
        first = ledger.complete(delivery_id, users["p1"], request_key="k-1")
        again = ledger.complete(delivery_id, users["p1"], request_key="k-1")
        assert again == first
        assert (again.order_id, again.earning, again.balance) == (order_id, 5000, 5000)

        with pytest.raises(InvalidState):
            ledger.complete(delivery_id, users["p1"], request_key="k-2")
        with pytest.raises(InvalidState):
            ledger.complete(delivery_id, users["p1"])
        with pytest.raises(NotOwner):
            ledger.complete(delivery_id, users["p2"], request_key="k-1")
        assert DeliveryEarning.query.filter_by(delivery_id=delivery_id).count() == 1
        assert wallet_balance(users["p1"]) == 5000


def test_only_the_holder_can_complete(app, users, claimed):
    _, delivery_id = claimed("p1")
    with app.app_context():
        with pytest.raises(NotOwner):
            ledger.complete(delivery_id, users["p2"])
        assert db.session.get(Delivery, delivery_id).status == DeliveryStatus.ACCEPTED
        assert DeliveryEarning.query.count() == 0


def test_concurrent_completion_pays_once(app, users, claimed):
    _, delivery_id = claimed()
    barrier = threading.Barrier(2)
    outcomes = []

    def run():
        with app.app_context():
            barrier.wait()
            try:
                outcomes.append(ledger.complete(delivery_id, users["p1"]))
            except InvalidState as e:
                outcomes.append(e)

    threads = [threading.Thread(target=run) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    receipts = [o for o in outcomes if isinstance(o, ledger.Receipt)]
    assert len(outcomes) == 2
    assert len(receipts) == 1
    with app.app_context():
        assert DeliveryEarning.query.filter_by(delivery_id=delivery_id).count() == 1
        assert wallet_balance(users["p1"]) == 5000


def test_readers_never_see_partial_completion(app, users, claimed):
    pairs = [claimed() for _ in range(5)]
    stop = threading.Event()
    violations = []

    def reader():
        with app.app_context():
            while not stop.is_set():
                for _, delivery_id in pairs:
                    status = db.session.execute(
                        select(Delivery.status).where(Delivery.id == delivery_id)
                    ).scalar()
                    if status != DeliveryStatus.COMPLETED:
                        continue
                    has_earning = db.session.execute(
                        select(DeliveryEarning.id).where(DeliveryEarning.delivery_id == delivery_id)
                    ).first() is not None
                    if not has_earning or wallet_balance(users["p1"]) < 5000:
                        violations.append(delivery_id)
                db.session.rollback()

    t = threading.Thread(target=reader)
    t.start()
    try:
        with app.app_context():
            for _, delivery_id in pairs:
                ledger.complete(delivery_id, users["p1"])
    finally:
        stop.set()
        t.join(timeout=60)

    assert violations == []


def test_wallet_equals_sum_of_earnings(app, users, claimed):
    for partner in ("p1", "p1", "p2", "p1"):
        _, delivery_id = claimed(partner)
        with app.app_context():
            ledger.complete(delivery_id, users[partner])
    with app.app_context():
        for partner in ("p1", "p2"):
            assert wallet_balance(users[partner]) == earnings_sum(users[partner])
        assert wallet_balance(users["p1"]) == 15000


def test_earning_amount_comes_from_config(app, users, claimed):
    app.config["DELIVERY_EARNING"] = 7500
    _, delivery_id = claimed()
    with app.app_context():
        assert ledger.complete(delivery_id, users["p1"]).earning == 7500
        assert earnings_sum(users["p1"]) == 7500


@pytest.mark.parametrize("now,start,end", [
    # Wednesday -> previous Sunday
    (datetime(2026, 10, 21, 15, 30), datetime(2026, 10, 18), datetime(2026, 10, 25)),
    # Sunday is its own week start
    (datetime(2026, 10, 18, 0, 0), datetime(2026, 10, 18), datetime(2026, 10, 25)),
    # Saturday night
    (datetime(2026, 10, 24, 23, 59), datetime(2026, 10, 18), datetime(2026, 10, 25)),
])
def test_week_window_starts_sunday(now, start, end):
    assert ledger.window_bounds("week", now) == (start, end)


def test_month_window():
    assert ledger.window_bounds("month", datetime(2026, 12, 31, 23, 0)) == (
        datetime(2026, 12, 1), datetime(2027, 1, 1)
    )
    assert ledger.window_bounds("all") == (None, None)
    with pytest.raises(InvalidRequest):
        ledger.window_bounds("year")


def test_earnings_summary_windows(app, users, claimed):
    for _ in range(3):
        _, delivery_id = claimed()
        with app.app_context():
            ledger.complete(delivery_id, users["p1"])

    now = utcnow()
    with app.app_context():
        oldest = DeliveryEarning.query.order_by(DeliveryEarning.id).first()
        oldest.created_at = now - timedelta(days=45)
        db.session.commit()

        everything = ledger.earnings_summary(users["p1"], "all", now)
        this_month = ledger.earnings_summary(users["p1"], "month", now)

    assert everything["total"] == 15000
    assert everything["balance"] == 15000
    assert len(everything["entries"]) == 3
    stamps = [e["timestamp"] for e in everything["entries"]]
    assert stamps == sorted(stamps, reverse=True)
    assert sum(d["amount"] for d in everything["daily"]) == 15000
    assert [d["date"] for d in everything["daily"]] == sorted(d["date"] for d in everything["daily"])

    assert this_month["total"] == 10000
    assert {e["order_id"] for e in this_month["entries"]} <= {e["order_id"] for e in everything["entries"]}
