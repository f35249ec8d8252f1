from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable

from sqlalchemy import inspect


def serialize_value(value):
    """Convert column values to JSON-friendly types"""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def serialize_row(obj, exclude: Iterable[str] = ()) -> dict:
    """Convert a mapped row to a JSON-serializable dict (columns only)"""
    if obj is None:
        return None
    excluded = set(exclude)
    data = {}
    for attr in inspect(obj).mapper.column_attrs:
        if attr.key in excluded:
            continue
        data[attr.key] = serialize_value(getattr(obj, attr.key))
    return data


def serialize_user(user) -> dict:
    return serialize_row(user, exclude=("password_hash",))


def public_user(user) -> dict:
    """Minimal user card shown next to courses and progress rows"""
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "email": user.email, "username": user.username}
