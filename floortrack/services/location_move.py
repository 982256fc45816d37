"""
Location-Move Engine.

Moves items between physical locations while keeping every location's
``current_occupancy`` within ``[0, capacity]``:

    1. Target occupancy is incremented by a single conditional UPDATE
       (``capacity IS NULL OR current_occupancy < capacity``). Zero rows
       matched means the location is full: nothing changes.
    2. The previous location is decremented, floored at 0.
    3. The item's ``current_location_id`` is written through its version
       column, so a concurrent move of the same item is detected.
    4. Exactly one LocationHistory row is appended.

All four happen in one transaction. The ``apply_*`` helpers only flush so
the stage-transition engine can compose them into its own transaction;
the public functions commit.

Usage:
    from floortrack.services import location_move

    entry = location_move.move_to_location(item_id=7, location_id=3, moved_by="op-12")
"""

import logging

from sqlalchemy import case, or_, update
from sqlalchemy.orm.exc import StaleDataError

from floortrack.core.exceptions import (
    CapacityExceededError,
    ConcurrentModificationError,
    NotFoundError,
    ValidationError,
)
from floortrack.models import db
from floortrack.models.item import Item
from floortrack.models.location import Location, LocationHistory
from floortrack.utils.helpers import get_or_raise

logger = logging.getLogger(__name__)


# ── Occupancy primitives ─────────────────────────────────────────────────────

def _try_increment(location: Location) -> bool:
    """Atomically take one slot in *location*. Returns False when full."""
    result = db.session.execute(
        update(Location)
        .where(
            Location.id == location.id,
            or_(Location.capacity.is_(None), Location.current_occupancy < Location.capacity),
        )
        .values(current_occupancy=Location.current_occupancy + 1)
        .execution_options(synchronize_session=False)
    )
    db.session.refresh(location)
    return result.rowcount == 1


def _decrement(location_id: int) -> None:
    """Release one slot, never going below zero."""
    db.session.execute(
        update(Location)
        .where(Location.id == location_id)
        .values(
            current_occupancy=case(
                (Location.current_occupancy > 0, Location.current_occupancy - 1),
                else_=0,
            )
        )
        .execution_options(synchronize_session=False)
    )
    previous = db.session.get(Location, location_id)
    if previous is not None:
        db.session.refresh(previous)


def _resolve_location(location_id) -> Location:
    location = db.session.get(Location, location_id) if location_id is not None else None
    if location is None or location.lifecycle_state == "deleted":
        raise NotFoundError(resource="Location", resource_id=location_id)
    return location


# ── In-transaction helpers ───────────────────────────────────────────────────

def apply_move(
    item: Item,
    location: Location,
    moved_by: str,
    notes: str | None = None,
    metadata: dict | None = None,
) -> LocationHistory:
    """Move *item* into *location* within the caller's transaction (flush only)."""
    if item.status == "completed":
        raise ValidationError(f"Item {item.item_code} is completed and cannot be moved")
    if not location.is_active:
        raise ValidationError(f"Location {location.name} is {location.lifecycle_state}")
    if item.current_location_id == location.id:
        raise ValidationError(f"Item {item.item_code} is already in location {location.name}")

    if not _try_increment(location):
        logger.warning("Move refused: location %s full (%s/%s)",
                       location.name, location.current_occupancy, location.capacity,
                       extra={"item_code": item.item_code, "location_id": location.id})
        raise CapacityExceededError(location.id, location.capacity, name=location.name)

    previous_id = item.current_location_id
    if previous_id is not None:
        _decrement(previous_id)

    item.current_location_id = location.id
    entry = LocationHistory(
        item_id=item.id,
        item_code=item.item_code,
        from_location_id=previous_id,
        to_location_id=location.id,
        stage_id=item.current_stage_id,
        moved_by=moved_by,
        notes=notes,
        details={
            "location_name": location.name,
            "location_type": location.type,
            **(metadata or {}),
        },
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def candidate_locations(stage) -> list[Location]:
    """Locations a stage routes to: its own list, else locations bound to its key."""
    if stage.assigned_location_ids:
        by_id = {
            loc.id: loc for loc in Location.query.filter(
                Location.id.in_(stage.assigned_location_ids)
            ).all()
        }
        ordered = [by_id[i] for i in stage.assigned_location_ids if i in by_id]
    else:
        ordered = (
            Location.query
            .filter_by(assigned_stage_id=stage.stage_key)
            .order_by(Location.id)
            .all()
        )
    return [loc for loc in ordered if loc.is_active]


def apply_auto_assign(item: Item, stage, assigned_by: str):
    """Place *item* in the first candidate location of *stage* with room.

    Returns ``(location, entry)``; ``entry`` is None when the item already
    sits in one of the stage's locations. Returns ``(None, None)`` when no
    candidate has room.
    """
    candidates = candidate_locations(stage)
    for loc in candidates:
        if loc.id == item.current_location_id:
            return loc, None

    for loc in candidates:
        if not loc.has_available_capacity():
            continue
        try:
            entry = apply_move(
                item, loc, assigned_by,
                notes=f"Auto-assigned to stage {stage.name}",
                metadata={"auto_assigned": True},
            )
        except CapacityExceededError:
            # Filled up since it was read; try the next one
            continue
        return loc, entry
    return None, None


def release_location(item: Item) -> int | None:
    """Free the item's slot (flush only). Returns the released location id."""
    previous_id = item.current_location_id
    if previous_id is None:
        return None
    _decrement(previous_id)
    item.current_location_id = None
    db.session.flush()
    return previous_id


# ── Public API ───────────────────────────────────────────────────────────────

def move_to_location(
    item_id: int,
    location_id: int,
    moved_by: str,
    notes: str | None = None,
    metadata: dict | None = None,
) -> LocationHistory:
    """Move an item to a location and record the move.

    Raises:
        NotFoundError: item or location does not resolve.
        ValidationError: item completed, location inactive, or no-op move.
        CapacityExceededError: target is full; nothing changed.
        ConcurrentModificationError: the item was changed by another writer.
    """
    item = get_or_raise(Item, item_id)
    location = _resolve_location(location_id)
    try:
        entry = apply_move(item, location, moved_by, notes=notes, metadata=metadata)
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise ConcurrentModificationError("Item", item_id) from exc
    except Exception:
        db.session.rollback()
        raise

    logger.info("Item %s moved %s → %s", entry.item_code, entry.from_location_id, entry.to_location_id,
                extra={"item_code": entry.item_code, "location_id": entry.to_location_id, "actor": moved_by})
    return entry


def auto_assign_to_stage_location(item_id: int, stage_id: str, assigned_by: str):
    """Place an item in the first available location for a stage of its workflow.

    Returns ``(location, entry)`` as :func:`apply_auto_assign`.

    Raises:
        NotFoundError: item, workflow or stage does not resolve.
        CapacityExceededError: no candidate location has room.
    """
    item = get_or_raise(Item, item_id)
    stage = item.workflow.stage_by_key(stage_id) if item.workflow else None
    if stage is None:
        raise NotFoundError(resource="Stage", resource_id=stage_id)

    try:
        location, entry = apply_auto_assign(item, stage, assigned_by)
        if location is None:
            raise CapacityExceededError(
                None, None,
                message=f"No location with free capacity is assigned to stage {stage.name}",
            )
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise ConcurrentModificationError("Item", item_id) from exc
    except Exception:
        db.session.rollback()
        raise

    if entry is not None:
        logger.info("Item %s auto-assigned to %s for stage %s", item.item_code, location.name, stage_id,
                    extra={"item_code": item.item_code, "location_id": location.id, "stage_id": stage_id})
    return location, entry
