"""
Workflow blueprint — workflow authoring.

Endpoints:
    GET    /api/v1/workflows                       — list (active_only?)
    POST   /api/v1/workflows                       — create
    GET    /api/v1/workflows/<id>                  — detail with stages
    PUT    /api/v1/workflows/<id>                  — update / replace stages
    DELETE /api/v1/workflows/<id>                  — delete (blocked by in-progress items)
    POST   /api/v1/workflows/<id>/toggle-active    — active ↔ archived
    GET    /api/v1/workflows/<id>/usage            — items referencing the workflow
    GET    /api/v1/workflows/<id>/stats            — per-stage load
"""

from flask import Blueprint, jsonify, request

import floortrack.services.workflow_service as store
from floortrack.blueprints import arg_bool, json_body, register_error_handlers, require_fields
from floortrack.utils.errors import E, api_error

workflow_bp = Blueprint("workflows", __name__, url_prefix="/api/v1/workflows")
register_error_handlers(workflow_bp)


@workflow_bp.route("", methods=["GET"])
def list_workflows():
    workflows = store.get_active() if arg_bool("active_only") else store.get_all()
    include_stages = arg_bool("include_stages") is not False
    return jsonify([wf.to_dict(include_stages=include_stages) for wf in workflows])


@workflow_bp.route("", methods=["POST"])
def create_workflow():
    """Body: {name, stages: [...], created_by, description?}"""
    data = json_body()
    err = require_fields(data, "name", "stages", "created_by")
    if err:
        return err
    if not isinstance(data["stages"], list):
        return api_error(E.VALIDATION_INVALID, "stages must be a list")
    workflow = store.create(
        name=data["name"],
        stages=data["stages"],
        created_by=data["created_by"],
        description=data.get("description"),
    )
    return jsonify(workflow.to_dict()), 201


@workflow_bp.route("/<int:workflow_id>", methods=["GET"])
def get_workflow(workflow_id):
    return jsonify(store.get_by_id(workflow_id).to_dict())


@workflow_bp.route("/<int:workflow_id>", methods=["PUT"])
def update_workflow(workflow_id):
    """Body: any of {name, description, stages, is_active}, updated_by?"""
    data = json_body()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "No fields to update")
    if "stages" in data and not isinstance(data["stages"], list):
        return api_error(E.VALIDATION_INVALID, "stages must be a list")
    if "is_active" in data and not isinstance(data["is_active"], bool):
        return api_error(E.VALIDATION_INVALID, "is_active must be a boolean")

    workflow = store.update(
        workflow_id,
        name=data.get("name"),
        description=data.get("description"),
        stages=data.get("stages"),
        is_active=data.get("is_active"),
        updated_by=data.get("updated_by", "system"),
    )
    return jsonify(workflow.to_dict())


@workflow_bp.route("/<int:workflow_id>", methods=["DELETE"])
def delete_workflow(workflow_id):
    removed_by = request.args.get("user_id") or json_body().get("user_id", "system")
    return jsonify(store.remove(workflow_id, removed_by=removed_by))


@workflow_bp.route("/<int:workflow_id>/toggle-active", methods=["POST"])
def toggle_active(workflow_id):
    actor = json_body().get("user_id", "system")
    return jsonify(store.toggle_active(workflow_id, actor=actor).to_dict(include_stages=False))


@workflow_bp.route("/<int:workflow_id>/usage", methods=["GET"])
def workflow_usage(workflow_id):
    store.get_by_id(workflow_id)
    return jsonify(store.get_usage_details(workflow_id))


@workflow_bp.route("/<int:workflow_id>/stats", methods=["GET"])
def workflow_stats(workflow_id):
    return jsonify(store.get_stats(workflow_id))
