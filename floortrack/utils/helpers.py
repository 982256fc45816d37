"""Shared helpers for services and blueprints.

get_or_raise:   primary-key lookup that raises NotFoundError
parse_datetime: lenient ISO-8601 parsing for query params (None on bad input)
as_utc:         normalise naive datetimes read back from SQLite to UTC
"""
from datetime import date, datetime, time, timezone

from floortrack.core.exceptions import NotFoundError
from floortrack.models import db


def get_or_raise(model, pk, label=None):
    """Fetch a model instance by primary key or raise ``NotFoundError``."""
    obj = db.session.get(model, pk) if pk is not None else None
    if obj is None:
        raise NotFoundError(resource=label or model.__name__, resource_id=pk)
    return obj


def as_utc(value):
    """Return *value* as an aware UTC datetime.

    SQLite drops tzinfo on round-trip; every stored timestamp is UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value):
    """Parse an ISO date or datetime string to an aware UTC datetime.

    Returns None for empty/invalid input. A bare date means midnight UTC.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        pass
    try:
        return datetime.combine(date.fromisoformat(text), time.min, tzinfo=timezone.utc)
    except ValueError:
        return None
