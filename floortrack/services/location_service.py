"""
Location Registry.

CRUD for physical locations plus stage routing bindings. Occupancy is
read-only here: only ``floortrack.services.location_move`` changes it.

Usage:
    from floortrack.services import location_service

    loc = location_service.create("Rack A1", "rack", "LOC-A1", capacity=4, created_by="admin")
    location_service.assign_to_stage(loc.id, "weld", assigned_by="admin")
"""

import logging

from sqlalchemy.exc import IntegrityError

from floortrack.core.exceptions import ConflictError, NotFoundError, ValidationError
from floortrack.models import db
from floortrack.models.activity import write_activity
from floortrack.models.item import Item
from floortrack.models.location import LOCATION_TYPES, Location
from floortrack.models.workflow import Workflow, WorkflowStage

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("name", "description", "type", "capacity", "parent_location_id")


# ── Validation helpers ───────────────────────────────────────────────────────

def _validate_type(location_type):
    if location_type not in LOCATION_TYPES:
        raise ValidationError(
            f"Invalid location type: {location_type!r}",
            details={"allowed_types": sorted(LOCATION_TYPES)},
        )
    return location_type


def _validate_capacity(capacity):
    if capacity is None:
        return None
    if isinstance(capacity, bool) or not isinstance(capacity, int):
        raise ValidationError("capacity must be an integer or null")
    if capacity < 0:
        raise ValidationError("capacity must not be negative")
    return capacity


def _validate_qr(qr_code, exclude_id=None):
    code = (qr_code or "").strip() if isinstance(qr_code, str) else ""
    if not code:
        raise ValidationError("qr_code is required")
    q = Location.query.filter(Location.qr_code == code)
    if exclude_id is not None:
        q = q.filter(Location.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("Location", "qr_code", code)
    return code


def _validate_parent(parent_id, location_id=None):
    if parent_id is None:
        return None
    parent = get_by_id(parent_id)
    # Walk up from the proposed parent; reaching ourselves means a cycle
    node = parent
    while node is not None:
        if location_id is not None and node.id == location_id:
            raise ValidationError("A location cannot be nested inside itself")
        node = node.parent
    return parent.id


def _stage_exists(stage_id: str) -> bool:
    return (
        db.session.query(WorkflowStage.id)
        .join(Workflow, Workflow.id == WorkflowStage.workflow_id)
        .filter(WorkflowStage.stage_key == stage_id, Workflow.lifecycle_state != "deleted")
        .first()
        is not None
    )


def _commit(conflict_value=None):
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if conflict_value is None:
            raise
        raise ConflictError("Location", "qr_code", conflict_value) from exc
    except Exception:
        db.session.rollback()
        raise


# ── Mutations ────────────────────────────────────────────────────────────────

def create(
    name: str,
    type: str,
    qr_code: str,
    capacity: int | None = None,
    created_by: str = "system",
    description: str | None = None,
    parent_location_id: int | None = None,
    assigned_stage_id: str | None = None,
) -> Location:
    """Register a new active location with zero occupancy."""
    label = (name or "").strip() if isinstance(name, str) else ""
    if not label:
        raise ValidationError("name is required")
    if assigned_stage_id is not None and not _stage_exists(assigned_stage_id):
        raise NotFoundError(resource="Stage", resource_id=assigned_stage_id)

    code = _validate_qr(qr_code)
    location = Location(
        name=label,
        description=description,
        type=_validate_type(type),
        qr_code=code,
        capacity=_validate_capacity(capacity),
        current_occupancy=0,
        assigned_stage_id=assigned_stage_id,
        parent_location_id=_validate_parent(parent_location_id),
        lifecycle_state="active",
        created_by=created_by or "system",
    )
    db.session.add(location)
    try:
        db.session.flush()
        write_activity(
            entity_type="location", entity_id=location.id, action="location.create",
            actor=location.created_by, description=f"Created location {location.name}",
        )
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("Location", "qr_code", code) from exc
    except Exception:
        db.session.rollback()
        raise
    logger.info("Location created: %s (%s, capacity=%s)", location.name, location.type, location.capacity,
                extra={"location_id": location.id, "actor": location.created_by})
    return location


def update(location_id: int, data: dict, updated_by: str = "system") -> Location:
    """Update descriptive fields. Capacity may not drop below current occupancy."""
    location = get_by_id(location_id)
    changes = {}

    for field in _UPDATABLE_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field == "name":
            value = (value or "").strip() if isinstance(value, str) else ""
            if not value:
                raise ValidationError("name is required")
        elif field == "type":
            value = _validate_type(value)
        elif field == "capacity":
            value = _validate_capacity(value)
            if value is not None and value < location.current_occupancy:
                raise ValidationError(
                    f"Capacity {value} is below current occupancy {location.current_occupancy}",
                    details={"current_occupancy": location.current_occupancy},
                )
        elif field == "parent_location_id":
            value = _validate_parent(value, location.id)
        changes[field] = value

    if "qr_code" in data:
        changes["qr_code"] = _validate_qr(data["qr_code"], exclude_id=location.id)

    for field, value in changes.items():
        setattr(location, field, value)
    write_activity(
        entity_type="location", entity_id=location.id, action="location.update",
        actor=updated_by, details={k: v for k, v in changes.items()},
    )
    _commit(changes.get("qr_code"))
    logger.info("Location updated: %s fields=%s", location.name, sorted(changes),
                extra={"location_id": location.id, "actor": updated_by})
    return location


def set_qr_code(location_id: int, qr_code: str, updated_by: str = "system") -> Location:
    return update(location_id, {"qr_code": qr_code}, updated_by=updated_by)


def remove(location_id: int, removed_by: str = "system") -> Location:
    """Mark a location deleted. Refused while items are still stored in it."""
    location = get_by_id(location_id)
    occupants = [i.item_code for i in get_items_in_location(location.id)]
    if occupants:
        raise ValidationError(
            f"Location {location.name} still holds {len(occupants)} item(s)",
            details={"item_codes": occupants},
        )
    location.lifecycle_state = "deleted"
    write_activity(
        entity_type="location", entity_id=location.id, action="location.remove",
        actor=removed_by, description=f"Deleted location {location.name}",
    )
    _commit()
    logger.info("Location deleted: %s", location.name,
                extra={"location_id": location.id, "actor": removed_by})
    return location


def assign_to_stage(location_id: int, stage_id: str, assigned_by: str) -> Location:
    """Bind a location to a stage key (replacing any previous binding)."""
    location = get_by_id(location_id)
    if not stage_id or not _stage_exists(stage_id):
        raise NotFoundError(resource="Stage", resource_id=stage_id)
    previous = location.assigned_stage_id
    location.assigned_stage_id = stage_id
    write_activity(
        entity_type="location", entity_id=location.id, action="location.assign_stage",
        actor=assigned_by, details={"from": previous, "to": stage_id},
    )
    _commit()
    logger.info("Location %s bound to stage %s", location.name, stage_id,
                extra={"location_id": location.id, "stage_id": stage_id, "actor": assigned_by})
    return location


def unassign_from_stage(location_id: int, unassigned_by: str) -> Location:
    location = get_by_id(location_id)
    previous = location.assigned_stage_id
    location.assigned_stage_id = None
    write_activity(
        entity_type="location", entity_id=location.id, action="location.unassign_stage",
        actor=unassigned_by, details={"from": previous},
    )
    _commit()
    logger.info("Location %s unbound from stage %s", location.name, previous,
                extra={"location_id": location.id, "actor": unassigned_by})
    return location


# ── Queries ──────────────────────────────────────────────────────────────────

def get_by_id(location_id: int) -> Location:
    location = db.session.get(Location, location_id) if location_id is not None else None
    if location is None or location.lifecycle_state == "deleted":
        raise NotFoundError(resource="Location", resource_id=location_id)
    return location


def _live():
    return Location.query.filter(Location.lifecycle_state != "deleted")


def get_all() -> list[Location]:
    return _live().order_by(Location.name).all()


def get_active() -> list[Location]:
    return Location.query.filter_by(lifecycle_state="active").order_by(Location.name).all()


def get_by_qr_code(qr_code: str) -> Location | None:
    return _live().filter(Location.qr_code == qr_code).first()


def get_by_type(location_type: str) -> list[Location]:
    return _live().filter(Location.type == location_type).order_by(Location.name).all()


def get_by_stage(stage_id: str) -> list[Location]:
    return _live().filter(Location.assigned_stage_id == stage_id).order_by(Location.name).all()


def get_available_for_stage(stage_id: str) -> list[Location]:
    """Active locations bound to *stage_id* that still have room."""
    return [
        loc for loc in get_by_stage(stage_id)
        if loc.is_active and loc.has_available_capacity()
    ]


def get_at_capacity() -> list[Location]:
    return (
        _live()
        .filter(Location.capacity.isnot(None), Location.current_occupancy >= Location.capacity)
        .order_by(Location.name)
        .all()
    )


def has_available_capacity(location_id: int) -> bool:
    return get_by_id(location_id).has_available_capacity()


def get_items_in_location(location_id: int) -> list[Item]:
    return Item.query.filter_by(current_location_id=location_id).order_by(Item.id).all()


def get_hierarchy(location_id: int) -> dict:
    """Ancestors (root first) and the nested subtree of a location."""
    location = get_by_id(location_id)

    ancestors = []
    node = location.parent
    while node is not None:
        ancestors.insert(0, {"id": node.id, "name": node.name, "type": node.type})
        node = node.parent

    def _subtree(loc):
        return {
            **loc.to_dict(),
            "children": [
                _subtree(child) for child in sorted(loc.children, key=lambda c: c.id)
                if child.lifecycle_state != "deleted"
            ],
        }

    return {"ancestors": ancestors, "location": _subtree(location)}
