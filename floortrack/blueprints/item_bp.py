"""
Item blueprint — item lifecycle, stage transitions and location moves.

Endpoints:
    POST /api/v1/items                           — create item at first stage
    GET  /api/v1/items                           — list (status, workflow_id, location_id, stage_id, defective, flagged)
    GET  /api/v1/items/<id>                      — detail (+history)
    GET  /api/v1/items/by-code/<code>            — lookup by human-readable code
    POST /api/v1/items/<id>/advance              — advance / complete
    POST /api/v1/items/<id>/move                 — move to location
    POST /api/v1/items/<id>/auto-assign          — place in first free stage location
    POST /api/v1/items/<id>/pause|resume         — status toggles
    POST /api/v1/items/<id>/assign               — set operator
    POST /api/v1/items/<id>/flag                 — defective flag
    GET  /api/v1/items/<id>/history              — stage history
    GET  /api/v1/items/<id>/transitions          — allowed next stages
    GET  /api/v1/items/<id>/sla                  — time-in-stage status
    GET  /api/v1/completed-items                 — completed-items store
    POST /api/v1/completed-items/<id>/annotations

Actor ids come from the JSON body; identity is verified upstream.
"""

import logging

from flask import Blueprint, jsonify, request

import floortrack.services.location_move as move_engine
import floortrack.services.stage_transition as engine
from floortrack.blueprints import (
    arg_bool,
    json_body,
    paginate_query,
    register_error_handlers,
    require_fields,
)
from floortrack.services import metrics
from floortrack.utils.errors import E, api_error
from floortrack.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)

item_bp = Blueprint("items", __name__, url_prefix="/api/v1")
register_error_handlers(item_bp)


def _advance_payload(result: dict) -> dict:
    return {
        "status": result["status"],
        "next_stage": result["next_stage"].to_dict() if result["next_stage"] else None,
        "item": result["item"].to_dict(),
        "completed_record": (
            result["completed_record"].to_dict() if result["completed_record"] else None
        ),
        "location": result["location"].to_dict() if result["location"] else None,
    }


# ═════════════════════════════════════════════════════════════════════════
# Items
# ═════════════════════════════════════════════════════════════════════════


@item_bp.route("/items", methods=["POST"])
def create_item():
    """Body: {item_code, workflow_id, created_by, assigned_to?, metadata?}"""
    data = json_body()
    err = require_fields(data, "item_code", "workflow_id", "created_by")
    if err:
        return err
    if not isinstance(data["workflow_id"], int):
        return api_error(E.VALIDATION_INVALID, "workflow_id must be an integer")
    metadata = data.get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        return api_error(E.VALIDATION_INVALID, "metadata must be an object")

    item = engine.create_item(
        item_code=str(data["item_code"]),
        workflow_id=data["workflow_id"],
        created_by=data["created_by"],
        assigned_to=data.get("assigned_to"),
        metadata=metadata,
    )
    return jsonify(item.to_dict(include_history=True)), 201


@item_bp.route("/items", methods=["GET"])
def list_items():
    query = engine.build_item_query(
        status=request.args.get("status"),
        workflow_id=request.args.get("workflow_id", type=int),
        location_id=request.args.get("location_id", type=int),
        stage_id=request.args.get("stage_id"),
        defective=arg_bool("defective"),
        flagged=arg_bool("flagged"),
    )
    items, total = paginate_query(query)
    return jsonify({"items": [i.to_dict() for i in items], "total": total})


@item_bp.route("/items/<int:item_id>", methods=["GET"])
def get_item(item_id):
    return jsonify(engine.get_item(item_id).to_dict(include_history=True))


@item_bp.route("/items/by-code/<path:item_code>", methods=["GET"])
def get_item_by_code(item_code):
    item = engine.get_by_item_code(item_code)
    if item is None:
        return api_error(E.NOT_FOUND, f"Item {item_code} not found")
    return jsonify(item.to_dict(include_history=True))


# ── Transitions ──────────────────────────────────────────────────────────


@item_bp.route("/items/<int:item_id>/advance", methods=["POST"])
def advance_item(item_id):
    """Body: {user_id, completed_actions: [{id, completed?, data?}], notes?,
    target_stage_id?, auto_assign_location?}
    """
    data = json_body()
    err = require_fields(data, "user_id")
    if err:
        return err
    completed = data.get("completed_actions", [])
    if not isinstance(completed, list):
        return api_error(E.VALIDATION_INVALID, "completed_actions must be a list")

    result = engine.advance_item(
        item_id,
        actor_id=data["user_id"],
        completed_actions=completed,
        notes=data.get("notes"),
        target_stage_id=data.get("target_stage_id"),
        auto_assign_location=bool(data.get("auto_assign_location", False)),
    )
    return jsonify(_advance_payload(result))


@item_bp.route("/items/<int:item_id>/transitions", methods=["GET"])
def available_transitions(item_id):
    stages = engine.get_available_transitions(item_id)
    return jsonify({"item_id": item_id, "next_stages": [s.to_dict() for s in stages]})


@item_bp.route("/items/<int:item_id>/pause", methods=["POST"])
def pause_item(item_id):
    data = json_body()
    err = require_fields(data, "user_id")
    if err:
        return err
    return jsonify(engine.pause_item(item_id, data["user_id"], notes=data.get("notes")).to_dict())


@item_bp.route("/items/<int:item_id>/resume", methods=["POST"])
def resume_item(item_id):
    data = json_body()
    err = require_fields(data, "user_id")
    if err:
        return err
    return jsonify(engine.resume_item(item_id, data["user_id"], notes=data.get("notes")).to_dict())


@item_bp.route("/items/<int:item_id>/assign", methods=["POST"])
def assign_item(item_id):
    """Body: {assigned_to (null clears), assigned_by}"""
    data = json_body()
    err = require_fields(data, "assigned_by")
    if err:
        return err
    item = engine.assign_item(item_id, data.get("assigned_to"), data["assigned_by"])
    return jsonify(item.to_dict())


@item_bp.route("/items/<int:item_id>/flag", methods=["POST"])
def flag_item(item_id):
    """Body: {flagged_by, defective? (default true), notes?}"""
    data = json_body()
    err = require_fields(data, "flagged_by")
    if err:
        return err
    item = engine.flag_item(
        item_id, data["flagged_by"],
        defective=bool(data.get("defective", True)),
        notes=data.get("notes"),
    )
    return jsonify(item.to_dict())


@item_bp.route("/items/<int:item_id>/history", methods=["GET"])
def item_history(item_id):
    return jsonify([h.to_dict() for h in engine.get_history(item_id)])


@item_bp.route("/items/<int:item_id>/sla", methods=["GET"])
def item_sla(item_id):
    return jsonify(metrics.item_sla(engine.get_item(item_id)))


# ── Location moves ───────────────────────────────────────────────────────


@item_bp.route("/items/<int:item_id>/move", methods=["POST"])
def move_item(item_id):
    """Body: {location_id, moved_by, notes?, metadata?}"""
    data = json_body()
    err = require_fields(data, "location_id", "moved_by")
    if err:
        return err
    if not isinstance(data["location_id"], int):
        return api_error(E.VALIDATION_INVALID, "location_id must be an integer")
    metadata = data.get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        return api_error(E.VALIDATION_INVALID, "metadata must be an object")

    entry = move_engine.move_to_location(
        item_id, data["location_id"], data["moved_by"],
        notes=data.get("notes"), metadata=metadata,
    )
    return jsonify(entry.to_dict()), 201


@item_bp.route("/items/<int:item_id>/auto-assign", methods=["POST"])
def auto_assign(item_id):
    """Body: {stage_id, assigned_by}"""
    data = json_body()
    err = require_fields(data, "stage_id", "assigned_by")
    if err:
        return err
    location, entry = move_engine.auto_assign_to_stage_location(
        item_id, data["stage_id"], data["assigned_by"],
    )
    return jsonify({
        "location": location.to_dict(),
        "moved": entry is not None,
        "entry": entry.to_dict() if entry else None,
    })


# ═════════════════════════════════════════════════════════════════════════
# Completed items
# ═════════════════════════════════════════════════════════════════════════


@item_bp.route("/completed-items", methods=["GET"])
def list_completed():
    records = engine.get_completed_items(
        workflow_id=request.args.get("workflow_id", type=int),
        since=parse_datetime(request.args.get("since")),
    )
    return jsonify([r.to_dict() for r in records])


@item_bp.route("/completed-items/<int:completed_id>/annotations", methods=["POST"])
def annotate_completed(completed_id):
    """Body: {note, author}"""
    data = json_body()
    err = require_fields(data, "note", "author")
    if err:
        return err
    record = engine.annotate_completed_item(completed_id, data["note"], data["author"])
    return jsonify(record.to_dict()), 201
