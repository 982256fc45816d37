"""
Read side of the location audit trail.

LocationHistory rows are written only by the location-move engine; this
module just queries them. Ordering is newest first except for the item
timeline, which reads oldest first.
"""

from datetime import datetime, timedelta, timezone

from floortrack.models import db
from floortrack.models.location import LocationHistory
from floortrack.services import location_service
from floortrack.utils.helpers import as_utc

DEFAULT_RECENT_LIMIT = 50
MAX_RECENT_LIMIT = 500


def _newest_first(q):
    return q.order_by(LocationHistory.moved_at.desc(), LocationHistory.id.desc())


def get_recent(limit: int = DEFAULT_RECENT_LIMIT) -> list[LocationHistory]:
    limit = max(1, min(int(limit or DEFAULT_RECENT_LIMIT), MAX_RECENT_LIMIT))
    return _newest_first(LocationHistory.query).limit(limit).all()


def get_by_item(item_code: str) -> list[LocationHistory]:
    return _newest_first(LocationHistory.query.filter_by(item_code=item_code)).all()


def get_by_location(location_id: int) -> list[LocationHistory]:
    """Moves *into* a location."""
    return _newest_first(LocationHistory.query.filter_by(to_location_id=location_id)).all()


def get_by_user(user_id: str) -> list[LocationHistory]:
    return _newest_first(LocationHistory.query.filter_by(moved_by=user_id)).all()


def get_by_date_range(start: datetime, end: datetime) -> list[LocationHistory]:
    q = LocationHistory.query.filter(
        LocationHistory.moved_at >= start,
        LocationHistory.moved_at <= end,
    )
    return _newest_first(q).all()


def get_location_stats(location_id: int, now: datetime | None = None) -> dict:
    """Move counters for one location; ``recent_moves`` covers the last 24 hours."""
    location = location_service.get_by_id(location_id)
    now = as_utc(now) or datetime.now(timezone.utc)

    history = get_by_location(location.id)
    day_ago = now - timedelta(hours=24)
    recent = [h for h in history if as_utc(h.moved_at) >= day_ago]
    unique_items = (
        db.session.query(db.func.count(db.distinct(LocationHistory.item_code)))
        .filter(LocationHistory.to_location_id == location.id)
        .scalar()
    )
    return {
        "location_id": location.id,
        "total_moves": len(history),
        "unique_items": unique_items or 0,
        "recent_moves": len(recent),
        "last_move": as_utc(history[0].moved_at).isoformat() if history else None,
        "current_occupancy": location.current_occupancy,
        "capacity": location.capacity,
    }


def get_item_timeline(item_code: str) -> list[dict]:
    """Oldest-first move list for one item, each with its dwell time in hours."""
    entries = (
        LocationHistory.query
        .filter_by(item_code=item_code)
        .order_by(LocationHistory.moved_at, LocationHistory.id)
        .all()
    )
    timeline = []
    for idx, entry in enumerate(entries):
        row = entry.to_dict()
        if idx + 1 < len(entries):
            left = as_utc(entries[idx + 1].moved_at) - as_utc(entry.moved_at)
            row["dwell_hours"] = round(left.total_seconds() / 3600, 2)
        else:
            row["dwell_hours"] = None
        timeline.append(row)
    return timeline
