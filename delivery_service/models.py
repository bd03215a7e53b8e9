from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import Enum, Index, UniqueConstraint

from .db import db


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every table stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _values(enum_cls):
    return [m.value for m in enum_cls]


class Role(PyEnum):
    EATER = "eater"
    DELIVERY_PARTNER = "delivery_partner"
    ADMIN = "admin"


class OrderStatus(PyEnum):
    PLACED = "placed"
    PAID = "paid"
    DELIVERED = "delivered"


class PaymentStatus(PyEnum):
    PENDING = "pending"
    COMPLETED = "completed"


class DeliveryStatus(PyEnum):
    ACCEPTED = "accepted"
    COMPLETED = "completed"


def _enum_column(enum_cls, name, **kwargs):
    return db.Column(
        Enum(enum_cls, name=name, native_enum=False, values_callable=_values, validate_strings=True),
        **kwargs,
    )


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    subject = db.Column(db.String(120), unique=True, nullable=False, index=True)  # id from the identity provider
    role = _enum_column(Role, "user_role", nullable=False, default=Role.EATER)
    display_name = db.Column(db.String(120))
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    wallet = db.relationship("Wallet", uselist=False, back_populates="user")

    def __repr__(self):
        return f"<User {self.subject} ({self.role.value})>"


class MenuItem(db.Model):
    """Catalog entry; only read here to snapshot prices into orders."""
    __tablename__ = "menu"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text)
    price = db.Column(db.Integer, nullable=False)
    available = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    # [{"menu_item_id", "name", "quantity", "unit_price"}], prices snapshotted at order time
    items = db.Column(db.JSON, nullable=False)
    total_amount = db.Column(db.Integer, nullable=False)
    status = _enum_column(OrderStatus, "order_status", nullable=False, default=OrderStatus.PLACED)
    payment_status = _enum_column(PaymentStatus, "payment_status", nullable=False, default=PaymentStatus.PENDING)
    address = db.Column(db.String(255))
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    paid_at = db.Column(db.DateTime)
    version_id = db.Column(db.Integer, nullable=False)

    delivery = db.relationship("Delivery", uselist=False, back_populates="order")

    __table_args__ = (
        Index("ix_orders_status_created", "status", "payment_status", "created_at"),
    )
    __mapper_args__ = {"version_id_col": version_id}


class Delivery(db.Model):
    __tablename__ = "deliveries"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    delivery_partner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    status = _enum_column(DeliveryStatus, "delivery_status", nullable=False, default=DeliveryStatus.ACCEPTED)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    delivered_at = db.Column(db.DateTime)
    version_id = db.Column(db.Integer, nullable=False)

    order = db.relationship("Order", back_populates="delivery")

    # One delivery row per order: the claim arbitration relies on this constraint
    __table_args__ = (
        UniqueConstraint("order_id", name="uq_deliveries_order_id"),
    )
    __mapper_args__ = {"version_id_col": version_id}


class DeliveryEarning(db.Model):
    """Append-only; never updated or deleted."""
    __tablename__ = "delivery_earnings"

    id = db.Column(db.Integer, primary_key=True)
    delivery_partner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=False)
    earning = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    # Idempotency-Key of the completion request that wrote this row
    request_key = db.Column(db.String(64))

    __table_args__ = (
        UniqueConstraint("delivery_id", name="uq_delivery_earnings_delivery_id"),
    )


class Wallet(db.Model):
    __tablename__ = "wallet"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)
    balance = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    user = db.relationship("User", back_populates="wallet")


class Notification(db.Model):
    """Per-user feed entry written alongside the change it announces."""
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"))
    title = db.Column(db.String(120), nullable=False)
    message = db.Column(db.Text, nullable=False)
    read = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
    )


__all__ = [
    "db",
    "utcnow",
    "Role",
    "OrderStatus",
    "PaymentStatus",
    "DeliveryStatus",
    "User",
    "MenuItem",
    "Order",
    "Delivery",
    "DeliveryEarning",
    "Wallet",
    "Notification",
]
