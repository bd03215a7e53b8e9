from datetime import datetime
from enum import Enum

from sqlalchemy import inspect


def plain(value):
    """JSON-ready form of a column value."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat(timespec="microseconds")
    return value


def row_to_dict(obj) -> dict:
    """Full column snapshot of a mapped row; the shape used by the API and by change events."""
    mapper = inspect(obj).mapper
    return {attr.key: plain(getattr(obj, attr.key)) for attr in mapper.column_attrs}


def order_json(order, delivery=None) -> dict:
    data = row_to_dict(order)
    data["delivery"] = row_to_dict(delivery) if delivery is not None else None
    return data


def delivery_json(delivery, order=None) -> dict:
    data = row_to_dict(delivery)
    if order is not None:
        data["order"] = row_to_dict(order)
    return data
