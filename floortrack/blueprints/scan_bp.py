"""
Scan blueprint — handheld QR scanner endpoints.

Endpoints:
    POST /api/v1/scans/resolve        — what does this QR point at?
    POST /api/v1/scans/move           — item scan + location scan → move
    GET  /api/v1/scans/recent         — recent scans (user_id?, limit?)
    GET  /api/v1/scans/item/<code>    — scans touching one item

Rate limited per operator (see middleware/rate_limiter.py).
"""

from flask import Blueprint, jsonify, request

from floortrack.blueprints import json_body, register_error_handlers, require_fields
from floortrack.services import scan_service

scan_bp = Blueprint("scans", __name__, url_prefix="/api/v1/scans")
register_error_handlers(scan_bp)


@scan_bp.route("/resolve", methods=["POST"])
def resolve():
    """Body: {qr_data, user_id}"""
    data = json_body()
    err = require_fields(data, "qr_data", "user_id")
    if err:
        return err
    found = scan_service.resolve(data["qr_data"], data["user_id"])
    kind = found["kind"]
    payload = found[kind].to_dict()
    return jsonify({"kind": kind, kind: payload})


@scan_bp.route("/move", methods=["POST"])
def scan_move():
    """Body: {item_qr, location_qr, moved_by, notes?}"""
    data = json_body()
    err = require_fields(data, "item_qr", "location_qr", "moved_by")
    if err:
        return err
    entry = scan_service.scan_move(
        data["item_qr"], data["location_qr"], data["moved_by"], notes=data.get("notes"),
    )
    return jsonify(entry.to_dict()), 201


@scan_bp.route("/recent", methods=["GET"])
def recent_scans():
    scans = scan_service.get_recent_scans(
        user_id=request.args.get("user_id"),
        limit=request.args.get("limit", 50, type=int),
    )
    return jsonify([s.to_dict() for s in scans])


@scan_bp.route("/item/<path:item_code>", methods=["GET"])
def item_scans(item_code):
    return jsonify([s.to_dict() for s in scan_service.get_item_scans(item_code)])
