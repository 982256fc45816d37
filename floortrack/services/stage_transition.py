"""
Stage-Transition Engine.

Moves items through their workflow's stage graph:

    advance_item  — validate the target stage's required actions, then
                    either advance to the target or, from a terminal
                    stage, complete the item.
    create_item   — instantiate an item at the workflow's first stage.
    pause / resume / assign / flag — item status bookkeeping.

Target selection: the first entry of the current stage's
``allowed_next_stage_ids`` unless the caller names one explicitly with
``target_stage_id`` (which must be in that list).

Every mutation is one transaction. The item row is versioned, so two
actors advancing the same item concurrently cannot both win: the loser
gets ``ConcurrentModificationError`` and nothing of theirs is written.

Usage:
    from floortrack.services import stage_transition

    result = stage_transition.advance_item(
        item_id=7,
        actor_id="op-12",
        completed_actions=[{"id": "weigh", "data": {"value": 12.4}}],
    )
    result["status"]      # "advanced" | "completed"
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from floortrack.core.exceptions import (
    ConcurrentModificationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from floortrack.models import db
from floortrack.models.activity import write_activity
from floortrack.models.item import (
    ITEM_STATUSES,
    CompletedItem,
    Item,
    ItemHistory,
    item_qr_code,
)
from floortrack.services import location_move, workflow_service
from floortrack.services.action_rules import (
    check_completion,
    normalize_completed_actions,
    parse_action_config,
)
from floortrack.utils.helpers import get_or_raise

logger = logging.getLogger(__name__)


# Status transitions outside of advance/complete
ITEM_TRANSITIONS = {
    "pause": {"from": ["active"], "to": "paused", "history": "paused"},
    "resume": {"from": ["paused"], "to": "active", "history": "resumed"},
}


def _now():
    return datetime.now(timezone.utc)


@contextmanager
def _item_write(item_id):
    """Commit the block's writes, or roll all of them back."""
    try:
        yield
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise ConcurrentModificationError("Item", item_id) from exc
    except Exception:
        db.session.rollback()
        raise


def _resolve_stages(item: Item):
    workflow = item.workflow
    if workflow is None:
        raise NotFoundError(resource="Workflow", resource_id=item.workflow_id)
    current = workflow.stage_by_key(item.current_stage_id)
    if current is None:
        raise NotFoundError(resource="Stage", resource_id=item.current_stage_id)

    next_stages = []
    for key in current.allowed_next_stage_ids or []:
        stage = workflow.stage_by_key(key)
        if stage is None:
            raise NotFoundError(resource="Stage", resource_id=key)
        next_stages.append(stage)
    return workflow, current, next_stages


def _validate_actions(stage, done: dict) -> None:
    """Raise ValidationError unless *done* satisfies *stage*'s actions."""
    missing = [a.label for a in stage.required_actions() if a.action_key not in done]

    invalid = []
    for action in stage.actions:
        entry = done.get(action.action_key)
        if entry is None:
            continue
        config = parse_action_config(action.type, action.config)
        problem = check_completion(config, entry.get("data"))
        if problem:
            invalid.append({"id": action.action_key, "label": action.label, "reason": problem})

    if not (missing or invalid):
        return

    details = {"stage_id": stage.stage_key}
    parts = []
    if missing:
        details["missing_actions"] = missing
        parts.append(f"Missing required actions: {', '.join(missing)}")
    if invalid:
        details["invalid_actions"] = invalid
        parts.append("; ".join(f"{i['label']}: {i['reason']}" for i in invalid))
    raise ValidationError(". ".join(parts), details=details)


# ═════════════════════════════════════════════════════════════════════════
# Advance / complete
# ═════════════════════════════════════════════════════════════════════════


def _complete(item: Item, stage, actor_id: str, done: dict, notes: str | None) -> CompletedItem:
    now = _now()
    item.status = "completed"
    item.completed_at = now
    item.final_stage_name = stage.name
    item.history.append(ItemHistory(
        stage_id=stage.stage_key,
        stage_name=stage.name,
        action="completed",
        actor=actor_id,
        at=now,
        notes=notes,
        completed_actions=list(done.values()),
    ))

    final_location_id = location_move.release_location(item)
    record = CompletedItem(
        item_id=item.id,
        item_code=item.item_code,
        workflow_id=item.workflow_id,
        final_stage_id=stage.stage_key,
        final_stage_name=stage.name,
        final_location_id=final_location_id,
        started_at=item.started_at,
        completed_at=now,
        completed_by=actor_id,
        completion_notes=notes,
        is_defective=item.is_defective,
        annotations=[],
    )
    db.session.add(record)
    db.session.flush()
    return record


def advance_item(
    item_id: int,
    actor_id: str,
    completed_actions=None,
    notes: str | None = None,
    target_stage_id: str | None = None,
    auto_assign_location: bool = False,
) -> dict:
    """
    Advance an active item to its next stage, or complete it from a terminal stage.

    Args:
        item_id: Item primary key.
        actor_id: Who performs the transition (recorded, not verified).
        completed_actions: ``[{"id", "completed"?, "data"?}]`` for the
            target stage's actions.
        notes: Free text stored on the history entry.
        target_stage_id: Explicit branch choice; must be an allowed next stage.
        auto_assign_location: Also place the item in the first free
            location routed to the new stage (no location is not an error).

    Returns:
        {"status": "advanced"|"completed", "item", "next_stage",
         "completed_record", "location"}

    Raises:
        NotFoundError, ValidationError, ConcurrentModificationError
    """
    item = get_or_raise(Item, item_id)
    if item.status != "active":
        raise ValidationError(
            f"Item {item.item_code} is {item.status}; only active items can advance",
            details={"status": item.status},
        )
    _, current, next_stages = _resolve_stages(item)
    done = normalize_completed_actions(completed_actions)

    if not next_stages:
        with _item_write(item_id):
            record = _complete(item, current, actor_id, done, notes)
        logger.info("Item %s completed at stage %s", item.item_code, current.stage_key,
                    extra={"item_code": item.item_code, "stage_id": current.stage_key, "actor": actor_id})
        return {
            "status": "completed",
            "item": item,
            "next_stage": None,
            "completed_record": record,
            "location": None,
        }

    if target_stage_id is None:
        target = next_stages[0]
    else:
        target = next((s for s in next_stages if s.stage_key == target_stage_id), None)
        if target is None:
            raise ValidationError(
                f"Stage {target_stage_id!r} is not an allowed next stage of {current.stage_key!r}",
                details={"allowed_next_stage_ids": [s.stage_key for s in next_stages]},
            )

    try:
        _validate_actions(target, done)
    except ValidationError:
        logger.warning("Advance rejected for %s → %s", item.item_code, target.stage_key,
                       extra={"item_code": item.item_code, "stage_id": target.stage_key, "actor": actor_id})
        raise

    location = None
    with _item_write(item_id):
        item.current_stage_id = target.stage_key
        item.history.append(ItemHistory(
            stage_id=target.stage_key,
            stage_name=target.name,
            action="advanced",
            actor=actor_id,
            at=_now(),
            notes=notes,
            completed_actions=list(done.values()),
        ))
        db.session.flush()
        if auto_assign_location:
            location, _ = location_move.apply_auto_assign(item, target, actor_id)

    logger.info("Item %s advanced %s → %s", item.item_code, current.stage_key, target.stage_key,
                extra={"item_code": item.item_code, "stage_id": target.stage_key, "actor": actor_id})
    return {
        "status": "advanced",
        "item": item,
        "next_stage": target,
        "completed_record": None,
        "location": location,
    }


# ═════════════════════════════════════════════════════════════════════════
# Item lifecycle
# ═════════════════════════════════════════════════════════════════════════


def create_item(
    item_code: str,
    workflow_id: int,
    created_by: str,
    assigned_to: str | None = None,
    metadata: dict | None = None,
) -> Item:
    """Instantiate an item at the first stage of an active workflow."""
    code = (item_code or "").strip()
    if not code:
        raise ValidationError("item_code is required")
    workflow = workflow_service.get_by_id(workflow_id)
    if not workflow.is_active:
        raise ValidationError(
            f"Workflow {workflow.name} is {workflow.lifecycle_state}; new items need an active workflow",
        )
    first = workflow.first_stage()
    if first is None:
        raise ValidationError(f"Workflow {workflow.name} has no stages")
    if Item.query.filter_by(item_code=code).first() is not None:
        raise ConflictError("Item", "item_code", code)

    item = Item(
        item_code=code,
        qr_code=item_qr_code(code),
        workflow_id=workflow.id,
        current_stage_id=first.stage_key,
        status="active",
        assigned_to=assigned_to,
        details=metadata or {},
        started_at=_now(),
        created_by=created_by or "system",
    )
    db.session.add(item)
    try:
        db.session.flush()
        write_activity(
            entity_type="item", entity_id=item.item_code, action="item.create",
            actor=item.created_by, details={"workflow_id": workflow.id, "stage_id": first.stage_key},
        )
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("Item", "item_code", code) from exc
    except Exception:
        db.session.rollback()
        raise

    logger.info("Item %s created in workflow %s at %s", code, workflow.name, first.stage_key,
                extra={"item_code": code, "workflow_id": workflow.id, "actor": item.created_by})
    return item


def _status_transition(item_id: int, action: str, actor_id: str, notes: str | None) -> Item:
    rule = ITEM_TRANSITIONS[action]
    item = get_or_raise(Item, item_id)
    if item.status not in rule["from"]:
        raise ValidationError(
            f"Cannot {action} item {item.item_code} (status={item.status})",
            details={"status": item.status, "allowed_from": rule["from"]},
        )
    stage = item.workflow.stage_by_key(item.current_stage_id) if item.workflow else None

    with _item_write(item_id):
        item.status = rule["to"]
        item.history.append(ItemHistory(
            stage_id=item.current_stage_id,
            stage_name=stage.name if stage else None,
            action=rule["history"],
            actor=actor_id,
            at=_now(),
            notes=notes,
            completed_actions=[],
        ))
    logger.info("Item %s %s", item.item_code, rule["history"],
                extra={"item_code": item.item_code, "actor": actor_id})
    return item


def pause_item(item_id: int, actor_id: str, notes: str | None = None) -> Item:
    return _status_transition(item_id, "pause", actor_id, notes)


def resume_item(item_id: int, actor_id: str, notes: str | None = None) -> Item:
    return _status_transition(item_id, "resume", actor_id, notes)


def assign_item(item_id: int, assigned_to: str | None, assigned_by: str) -> Item:
    """Set (or clear, with None) the operator responsible for an item."""
    item = get_or_raise(Item, item_id)
    previous = item.assigned_to
    with _item_write(item_id):
        item.assigned_to = assigned_to or None
        write_activity(
            entity_type="item", entity_id=item.item_code, action="item.assign",
            actor=assigned_by, details={"from": previous, "to": item.assigned_to},
        )
    logger.info("Item %s assigned to %s", item.item_code, item.assigned_to,
                extra={"item_code": item.item_code, "actor": assigned_by})
    return item


def flag_item(item_id: int, flagged_by: str, defective: bool = True, notes: str | None = None) -> Item:
    """Mark an item defective (or clear the mark)."""
    item = get_or_raise(Item, item_id)
    with _item_write(item_id):
        item.is_defective = bool(defective)
        item.flag_notes = notes
        if defective:
            item.flagged_by = flagged_by
            item.flagged_at = _now()
        else:
            item.flagged_by = None
            item.flagged_at = None

        if item.status == "completed":
            record = CompletedItem.query.filter_by(item_id=item.id).first()
            if record is not None:
                record.is_defective = item.is_defective

        write_activity(
            entity_type="item", entity_id=item.item_code,
            action="item.flag" if defective else "item.unflag",
            actor=flagged_by, details={"notes": notes},
        )
    logger.info("Item %s %s", item.item_code, "flagged defective" if defective else "unflagged",
                extra={"item_code": item.item_code, "actor": flagged_by})
    return item


def annotate_completed_item(completed_id: int, note: str, author: str) -> CompletedItem:
    """Append a post-hoc annotation; the only change a completed record accepts."""
    text = (note or "").strip()
    if not text:
        raise ValidationError("note is required")
    record = get_or_raise(CompletedItem, completed_id, label="CompletedItem")
    record.annotations = list(record.annotations or []) + [
        {"note": text, "author": author, "at": _now().isoformat()}
    ]
    write_activity(
        entity_type="item", entity_id=record.item_code, action="item.annotate",
        actor=author, details={"note": text},
    )
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return record


# ═════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════


def get_item(item_id: int) -> Item:
    return get_or_raise(Item, item_id)


def get_by_item_code(item_code: str) -> Item | None:
    return Item.query.filter_by(item_code=item_code).first()


def build_item_query(
    status: str | None = None,
    workflow_id: int | None = None,
    location_id: int | None = None,
    defective: bool | None = None,
    flagged: bool | None = None,
    stage_id: str | None = None,
):
    q = Item.query
    if status:
        if status not in ITEM_STATUSES:
            raise ValidationError(
                f"Unknown item status: {status!r}",
                details={"allowed_statuses": sorted(ITEM_STATUSES)},
            )
        q = q.filter(Item.status == status)
    if workflow_id is not None:
        q = q.filter(Item.workflow_id == workflow_id)
    if location_id is not None:
        q = q.filter(Item.current_location_id == location_id)
    if stage_id:
        q = q.filter(Item.current_stage_id == stage_id)
    if defective is not None:
        q = q.filter(Item.is_defective.is_(bool(defective)))
    if flagged is not None:
        q = q.filter(Item.flagged_at.isnot(None) if flagged else Item.flagged_at.is_(None))
    return q.order_by(Item.id)


def list_items(**filters) -> list[Item]:
    return build_item_query(**filters).all()


def get_history(item_id: int) -> list[ItemHistory]:
    return list(get_or_raise(Item, item_id).history)


def get_completed_items(workflow_id: int | None = None, since: datetime | None = None):
    q = CompletedItem.query
    if workflow_id is not None:
        q = q.filter(CompletedItem.workflow_id == workflow_id)
    if since is not None:
        q = q.filter(CompletedItem.completed_at >= since)
    return q.order_by(CompletedItem.completed_at.desc()).all()


def get_available_transitions(item_id: int) -> list:
    """Stages the item may advance to next (empty for terminal or not-active items)."""
    item = get_or_raise(Item, item_id)
    if item.status != "active":
        return []
    _, _, next_stages = _resolve_stages(item)
    return next_stages
