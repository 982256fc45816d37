"""
Workflow Definition Store.

Authoring and lookup of workflows. Stage graphs are validated as a whole
on create/update: stage ids unique, ``order`` unique, every
``allowed_next_stage_ids`` entry names a sibling stage (never itself),
action configs parse into their typed variants.

Lifecycle: ``active`` → ``archived`` (toggle) → ``deleted`` (remove).
Removal is refused while any in-progress item still references the
workflow.

Usage:
    from floortrack.services import workflow_service

    wf = workflow_service.create("Cabinet", stages=[...], created_by="alice")
    workflow_service.remove(wf.id, removed_by="alice")
"""

import logging
from collections import Counter

from floortrack.core.exceptions import (
    NotFoundError,
    ReferentialIntegrityError,
    ValidationError,
)
from floortrack.models import db
from floortrack.models.activity import write_activity
from floortrack.models.item import IN_PROGRESS_STATUSES, CompletedItem, Item
from floortrack.models.location import Location
from floortrack.models.workflow import StageAction, Workflow, WorkflowStage
from floortrack.services.action_rules import config_to_json, parse_action_config
from floortrack.utils.helpers import as_utc

logger = logging.getLogger(__name__)


# ── Stage graph validation ───────────────────────────────────────────────────

def _require_text(value, label):
    text = (value or "").strip() if isinstance(value, str) else ""
    if not text:
        raise ValidationError(f"{label} is required")
    return text


def _build_actions(stage_key: str, raw_actions) -> list[StageAction]:
    if raw_actions is None:
        return []
    if not isinstance(raw_actions, list):
        raise ValidationError(f"Stage {stage_key}: actions must be a list")

    actions = []
    seen = set()
    for position, raw in enumerate(raw_actions):
        if not isinstance(raw, dict):
            raise ValidationError(f"Stage {stage_key}: each action must be an object")
        action_key = _require_text(raw.get("id"), f"Stage {stage_key}: action id")
        if action_key in seen:
            raise ValidationError(f"Stage {stage_key}: duplicate action id {action_key!r}")
        seen.add(action_key)

        action_type = raw.get("type")
        config = parse_action_config(action_type, raw.get("config"))
        actions.append(StageAction(
            action_key=action_key,
            type=action_type,
            label=_require_text(raw.get("label"), f"Stage {stage_key}: action label"),
            description=raw.get("description"),
            required=bool(raw.get("required", False)),
            config=config_to_json(config),
            position=position,
        ))
    return actions


def _build_stages(raw_stages) -> list[WorkflowStage]:
    """Validate a complete stage list and build (unsaved) stage rows."""
    if not isinstance(raw_stages, list) or not raw_stages:
        raise ValidationError("A workflow needs at least one stage")

    keys = []
    for raw in raw_stages:
        if not isinstance(raw, dict):
            raise ValidationError("Each stage must be an object")
        keys.append(_require_text(raw.get("id"), "Stage id"))

    dupes = sorted(k for k, n in Counter(keys).items() if n > 1)
    if dupes:
        raise ValidationError(
            f"Duplicate stage ids: {', '.join(dupes)}",
            details={"duplicate_stage_ids": dupes},
        )

    orders = [raw.get("order", idx) for idx, raw in enumerate(raw_stages)]
    if any(isinstance(o, bool) or not isinstance(o, int) for o in orders):
        raise ValidationError("Stage order must be an integer")
    if len(set(orders)) != len(orders):
        raise ValidationError("Stage order values must be unique within a workflow")

    key_set = set(keys)
    stages = []
    for raw, stage_key, order in zip(raw_stages, keys, orders):
        next_ids = raw.get("allowed_next_stage_ids") or []
        if not isinstance(next_ids, list):
            raise ValidationError(f"Stage {stage_key}: allowed_next_stage_ids must be a list")
        next_ids = [str(n) for n in next_ids]
        if stage_key in next_ids:
            raise ValidationError(f"Stage {stage_key} cannot list itself as a next stage")
        unknown = [n for n in next_ids if n not in key_set]
        if unknown:
            raise ValidationError(
                f"Stage {stage_key} references unknown next stages: {', '.join(unknown)}",
                details={"stage_id": stage_key, "unknown_stage_ids": unknown},
            )
        if len(set(next_ids)) != len(next_ids):
            raise ValidationError(f"Stage {stage_key}: allowed_next_stage_ids has duplicates")

        duration = raw.get("estimated_duration")
        if duration is not None and (isinstance(duration, bool) or not isinstance(duration, int) or duration < 0):
            raise ValidationError(f"Stage {stage_key}: estimated_duration must be a non-negative integer (minutes)")

        location_ids = raw.get("assigned_location_ids") or []
        if not isinstance(location_ids, list) or not all(
            isinstance(i, int) and not isinstance(i, bool) for i in location_ids
        ):
            raise ValidationError(f"Stage {stage_key}: assigned_location_ids must be a list of ids")
        if location_ids:
            found = {
                row.id for row in Location.query.filter(
                    Location.id.in_(location_ids),
                    Location.lifecycle_state != "deleted",
                ).all()
            }
            missing = [i for i in location_ids if i not in found]
            if missing:
                raise ValidationError(
                    f"Stage {stage_key} references unknown locations: {missing}",
                    details={"stage_id": stage_key, "unknown_location_ids": missing},
                )

        stages.append(WorkflowStage(
            stage_key=stage_key,
            name=_require_text(raw.get("name"), f"Stage {stage_key}: name"),
            description=raw.get("description"),
            order=order,
            estimated_duration=duration,
            allowed_next_stage_ids=next_ids,
            assigned_location_ids=list(location_ids),
            actions=_build_actions(stage_key, raw.get("actions")),
        ))
    return stages


def _in_progress_items(workflow_id: int):
    return (
        Item.query
        .filter(Item.workflow_id == workflow_id, Item.status.in_(IN_PROGRESS_STATUSES))
        .order_by(Item.id)
        .all()
    )


# ── Mutations ────────────────────────────────────────────────────────────────

def create(name: str, stages: list, created_by: str, description: str | None = None) -> Workflow:
    """Create an active workflow from a complete stage list."""
    workflow = Workflow(
        name=_require_text(name, "Workflow name"),
        description=description,
        created_by=created_by or "system",
        lifecycle_state="active",
        stages=_build_stages(stages),
    )
    db.session.add(workflow)
    try:
        db.session.flush()
        write_activity(
            entity_type="workflow", entity_id=workflow.id, action="workflow.create",
            actor=workflow.created_by,
            description=f"Created workflow {workflow.name}",
            details={"stage_ids": [s.stage_key for s in workflow.stages]},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Workflow created: %s (%d stages)", workflow.name, len(workflow.stages),
                extra={"workflow_id": workflow.id, "actor": workflow.created_by})
    return workflow


def update(
    workflow_id: int,
    *,
    name: str | None = None,
    description: str | None = None,
    stages: list | None = None,
    is_active: bool | None = None,
    updated_by: str = "system",
) -> Workflow:
    """Update metadata and/or replace the stage list.

    A replacement stage list must still contain every stage an in-progress
    item currently sits in.
    """
    workflow = get_by_id(workflow_id)
    changes = {}

    # Validate everything before touching the row
    new_name = _require_text(name, "Workflow name") if name is not None else None
    new_stages = None
    if stages is not None:
        new_stages = _build_stages(stages)
        new_keys = {s.stage_key for s in new_stages}
        stranded = [
            i for i in _in_progress_items(workflow.id) if i.current_stage_id not in new_keys
        ]
        if stranded:
            raise ValidationError(
                "Cannot remove stages that in-progress items are sitting in",
                details={
                    "stranded_items": [
                        {"item_code": i.item_code, "stage_id": i.current_stage_id} for i in stranded
                    ],
                },
            )

    try:
        if new_name is not None:
            workflow.name = new_name
            changes["name"] = new_name
        if description is not None:
            workflow.description = description
            changes["description"] = description
        if is_active is not None:
            workflow.lifecycle_state = "active" if is_active else "archived"
            changes["lifecycle_state"] = workflow.lifecycle_state
        if new_stages is not None:
            # Flush the orphan deletes before inserting rows that reuse stage keys
            workflow.stages = []
            db.session.flush()
            workflow.stages = new_stages
            changes["stage_ids"] = sorted(s.stage_key for s in new_stages)

        write_activity(
            entity_type="workflow", entity_id=workflow.id, action="workflow.update",
            actor=updated_by, description=f"Updated workflow {workflow.name}", details=changes,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Workflow updated: %s fields=%s", workflow.name, sorted(changes),
                extra={"workflow_id": workflow.id, "actor": updated_by})
    return workflow


def remove(workflow_id: int, removed_by: str = "system") -> dict:
    """Mark the workflow deleted, unless in-progress items still reference it.

    Raises:
        ReferentialIntegrityError: carrying the blocking item codes.
    """
    workflow = get_by_id(workflow_id)
    usage = get_usage_details(workflow.id)
    blocking = usage["active_items"] + usage["paused_items"]
    if blocking:
        logger.warning("Workflow removal blocked: %s (%d in-progress items)",
                       workflow.name, len(blocking), extra={"workflow_id": workflow.id})
        raise ReferentialIntegrityError("Workflow", workflow.id, blocking)

    workflow.lifecycle_state = "deleted"
    try:
        write_activity(
            entity_type="workflow", entity_id=workflow.id, action="workflow.remove",
            actor=removed_by, description=f"Deleted workflow {workflow.name}",
            details={"completed_items": len(usage["completed_items"])},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Workflow deleted: %s", workflow.name,
                extra={"workflow_id": workflow.id, "actor": removed_by})
    return {"workflow_id": workflow.id, "lifecycle_state": workflow.lifecycle_state}


def toggle_active(workflow_id: int, actor: str = "system") -> Workflow:
    """Flip between ``active`` and ``archived``."""
    workflow = get_by_id(workflow_id)
    workflow.lifecycle_state = "archived" if workflow.is_active else "active"
    try:
        write_activity(
            entity_type="workflow", entity_id=workflow.id, action="workflow.toggle_active",
            actor=actor, details={"lifecycle_state": workflow.lifecycle_state},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Workflow %s is now %s", workflow.name, workflow.lifecycle_state,
                extra={"workflow_id": workflow.id, "actor": actor})
    return workflow


# ── Queries ──────────────────────────────────────────────────────────────────

def get_by_id(workflow_id: int) -> Workflow:
    workflow = db.session.get(Workflow, workflow_id) if workflow_id is not None else None
    if workflow is None or workflow.is_deleted:
        raise NotFoundError(resource="Workflow", resource_id=workflow_id)
    return workflow


def get_all() -> list[Workflow]:
    return (
        Workflow.query
        .filter(Workflow.lifecycle_state != "deleted")
        .order_by(Workflow.name)
        .all()
    )


def get_active() -> list[Workflow]:
    return Workflow.query.filter_by(lifecycle_state="active").order_by(Workflow.name).all()


def get_usage_details(workflow_id: int) -> dict:
    """Enumerate every item (in progress and completed) referencing the workflow."""
    items = Item.query.filter_by(workflow_id=workflow_id).order_by(Item.id).all()
    completed = CompletedItem.query.filter_by(workflow_id=workflow_id).all()

    active = [i.item_code for i in items if i.status == "active"]
    paused = [i.item_code for i in items if i.status == "paused"]
    return {
        "workflow_id": workflow_id,
        "active_items": active,
        "paused_items": paused,
        "completed_items": [c.item_code for c in completed],
        "total_items": len(items),
        "can_delete": not (active or paused),
    }


def get_stats(workflow_id: int) -> dict:
    """Per-stage load and completion summary for one workflow."""
    workflow = get_by_id(workflow_id)
    items = Item.query.filter_by(workflow_id=workflow.id).all()
    by_status = Counter(i.status for i in items)
    by_stage = Counter(i.current_stage_id for i in items if i.is_in_progress)

    durations = []
    for rec in CompletedItem.query.filter_by(workflow_id=workflow.id).all():
        started, finished = as_utc(rec.started_at), as_utc(rec.completed_at)
        if started and finished:
            durations.append((finished - started).total_seconds() / 3600)

    return {
        "workflow_id": workflow.id,
        "name": workflow.name,
        "total_items": len(items),
        "by_status": dict(by_status),
        "stages": [
            {"stage_id": s.stage_key, "name": s.name, "order": s.order, "item_count": by_stage.get(s.stage_key, 0)}
            for s in workflow.stages
        ],
        "completed_count": len(durations),
        "avg_cycle_hours": round(sum(durations) / len(durations), 2) if durations else None,
    }
