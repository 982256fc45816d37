"""
Location blueprint — location registry and stage bindings.

Endpoints:
    GET    /api/v1/locations                      — list (type, stage_id, active_only)
    POST   /api/v1/locations                      — create
    GET    /api/v1/locations/<id>                 — detail
    PUT    /api/v1/locations/<id>                 — update
    DELETE /api/v1/locations/<id>                 — mark deleted (must be empty)
    GET    /api/v1/locations/by-qr/<code>         — lookup by QR code
    POST   /api/v1/locations/<id>/assign-stage    — bind to a stage
    POST   /api/v1/locations/<id>/unassign-stage  — clear binding
    GET    /api/v1/locations/<id>/items           — items stored here
    GET    /api/v1/locations/<id>/hierarchy       — ancestors + subtree
    GET    /api/v1/locations/at-capacity          — full locations
    GET    /api/v1/locations/available?stage_id=  — free locations for a stage
"""

import logging

from flask import Blueprint, jsonify, request

import floortrack.services.location_service as registry
from floortrack.blueprints import arg_bool, json_body, register_error_handlers, require_fields
from floortrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

location_bp = Blueprint("locations", __name__, url_prefix="/api/v1/locations")
register_error_handlers(location_bp)


@location_bp.route("", methods=["GET"])
def list_locations():
    location_type = request.args.get("type")
    stage_id = request.args.get("stage_id")
    if location_type:
        locations = registry.get_by_type(location_type)
    elif stage_id:
        locations = registry.get_by_stage(stage_id)
    elif arg_bool("active_only"):
        locations = registry.get_active()
    else:
        locations = registry.get_all()
    return jsonify([loc.to_dict() for loc in locations])


@location_bp.route("", methods=["POST"])
def create_location():
    """Body: {name, type, qr_code, created_by, capacity?, description?,
    parent_location_id?, assigned_stage_id?}
    """
    data = json_body()
    err = require_fields(data, "name", "type", "qr_code", "created_by")
    if err:
        return err
    location = registry.create(
        name=data["name"],
        type=data["type"],
        qr_code=data["qr_code"],
        capacity=data.get("capacity"),
        created_by=data["created_by"],
        description=data.get("description"),
        parent_location_id=data.get("parent_location_id"),
        assigned_stage_id=data.get("assigned_stage_id"),
    )
    return jsonify(location.to_dict()), 201


@location_bp.route("/at-capacity", methods=["GET"])
def at_capacity():
    return jsonify([loc.to_dict() for loc in registry.get_at_capacity()])


@location_bp.route("/available", methods=["GET"])
def available_for_stage():
    stage_id = request.args.get("stage_id")
    if not stage_id:
        return api_error(E.VALIDATION_REQUIRED, "stage_id is required")
    return jsonify([loc.to_dict() for loc in registry.get_available_for_stage(stage_id)])


@location_bp.route("/by-qr/<path:qr_code>", methods=["GET"])
def get_by_qr(qr_code):
    location = registry.get_by_qr_code(qr_code)
    if location is None:
        return api_error(E.NOT_FOUND, f"No location with QR code {qr_code}")
    return jsonify(location.to_dict())


@location_bp.route("/<int:location_id>", methods=["GET"])
def get_location(location_id):
    return jsonify(registry.get_by_id(location_id).to_dict())


@location_bp.route("/<int:location_id>", methods=["PUT"])
def update_location(location_id):
    """Body: any of {name, description, type, capacity, parent_location_id, qr_code}, updated_by?"""
    data = json_body()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "No fields to update")
    location = registry.update(location_id, data, updated_by=data.get("updated_by", "system"))
    return jsonify(location.to_dict())


@location_bp.route("/<int:location_id>", methods=["DELETE"])
def delete_location(location_id):
    removed_by = request.args.get("user_id") or json_body().get("user_id", "system")
    registry.remove(location_id, removed_by=removed_by)
    return "", 204


@location_bp.route("/<int:location_id>/assign-stage", methods=["POST"])
def assign_stage(location_id):
    """Body: {stage_id, assigned_by}"""
    data = json_body()
    err = require_fields(data, "stage_id", "assigned_by")
    if err:
        return err
    location = registry.assign_to_stage(location_id, data["stage_id"], data["assigned_by"])
    return jsonify(location.to_dict())


@location_bp.route("/<int:location_id>/unassign-stage", methods=["POST"])
def unassign_stage(location_id):
    """Body: {unassigned_by}"""
    data = json_body()
    err = require_fields(data, "unassigned_by")
    if err:
        return err
    return jsonify(registry.unassign_from_stage(location_id, data["unassigned_by"]).to_dict())


@location_bp.route("/<int:location_id>/items", methods=["GET"])
def location_items(location_id):
    registry.get_by_id(location_id)
    return jsonify([i.to_dict() for i in registry.get_items_in_location(location_id)])


@location_bp.route("/<int:location_id>/hierarchy", methods=["GET"])
def location_hierarchy(location_id):
    return jsonify(registry.get_hierarchy(location_id))
