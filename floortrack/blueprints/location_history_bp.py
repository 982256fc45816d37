"""
Location history blueprint — read-only move audit trail.

Endpoints:
    GET /api/v1/location-history/recent?limit=
    GET /api/v1/location-history/item/<code>
    GET /api/v1/location-history/item/<code>/timeline
    GET /api/v1/location-history/location/<id>
    GET /api/v1/location-history/location/<id>/stats
    GET /api/v1/location-history/user/<user_id>
    GET /api/v1/location-history/range?start=&end=
"""

from flask import Blueprint, jsonify, request

import floortrack.services.location_history_service as history
from floortrack.blueprints import register_error_handlers
from floortrack.utils.errors import E, api_error
from floortrack.utils.helpers import parse_datetime

location_history_bp = Blueprint(
    "location_history", __name__, url_prefix="/api/v1/location-history",
)
register_error_handlers(location_history_bp)


def _dump(entries):
    return jsonify([e.to_dict() for e in entries])


@location_history_bp.route("/recent", methods=["GET"])
def recent():
    limit = request.args.get("limit", history.DEFAULT_RECENT_LIMIT, type=int)
    return _dump(history.get_recent(limit))


@location_history_bp.route("/item/<path:item_code>/timeline", methods=["GET"])
def item_timeline(item_code):
    return jsonify(history.get_item_timeline(item_code))


@location_history_bp.route("/item/<path:item_code>", methods=["GET"])
def by_item(item_code):
    return _dump(history.get_by_item(item_code))


@location_history_bp.route("/location/<int:location_id>", methods=["GET"])
def by_location(location_id):
    return _dump(history.get_by_location(location_id))


@location_history_bp.route("/location/<int:location_id>/stats", methods=["GET"])
def location_stats(location_id):
    return jsonify(history.get_location_stats(location_id))


@location_history_bp.route("/user/<user_id>", methods=["GET"])
def by_user(user_id):
    return _dump(history.get_by_user(user_id))


@location_history_bp.route("/range", methods=["GET"])
def by_range():
    start = parse_datetime(request.args.get("start"))
    end = parse_datetime(request.args.get("end"))
    if start is None or end is None:
        return api_error(E.VALIDATION_REQUIRED, "start and end are required ISO dates")
    if start > end:
        return api_error(E.VALIDATION_INVALID, "start must not be after end")
    return _dump(history.get_by_date_range(start, end))
