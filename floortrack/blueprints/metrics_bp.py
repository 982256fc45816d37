"""
Metrics blueprint — floor dashboard aggregations.

All endpoints are read-only. Thresholds come from app config
(STUCK_THRESHOLD_HOURS, EXPECTED_STAGE_DURATION_HOURS).

Endpoints:
    GET /api/v1/metrics/dashboard      — everything below in one payload
    GET /api/v1/metrics/stages         — active/paused counts per stage (workflow_id?)
    GET /api/v1/metrics/stuck          — items idle past the stuck threshold
    GET /api/v1/metrics/completions    — today / week / month completion efficiency
    GET /api/v1/metrics/locations      — capacity utilization
    GET /api/v1/metrics/scans          — scan success rates (user_id?, window_hours?)
    GET /api/v1/metrics/sla            — time-in-stage status for in-progress items
"""

import logging

from flask import Blueprint, jsonify, request

from floortrack.blueprints import register_error_handlers
from floortrack.services import metrics

logger = logging.getLogger(__name__)

metrics_bp = Blueprint("metrics", __name__, url_prefix="/api/v1/metrics")
register_error_handlers(metrics_bp)


@metrics_bp.route("/dashboard", methods=["GET"])
def dashboard():
    return jsonify(metrics.dashboard())


@metrics_bp.route("/stages", methods=["GET"])
def stage_counts():
    workflow_id = request.args.get("workflow_id", type=int)
    return jsonify(metrics.counts_by_stage(workflow_id))


@metrics_bp.route("/stuck", methods=["GET"])
def stuck():
    items = metrics.stuck_items()
    return jsonify({"count": len(items), "items": items})


@metrics_bp.route("/completions", methods=["GET"])
def completions():
    return jsonify(metrics.completion_summary())


@metrics_bp.route("/locations", methods=["GET"])
def locations():
    return jsonify(metrics.location_utilization())


@metrics_bp.route("/scans", methods=["GET"])
def scans():
    window = request.args.get("window_hours", 24, type=float)
    if window <= 0:
        window = 24
    return jsonify(metrics.scan_stats(user_id=request.args.get("user_id"), window_hours=window))


@metrics_bp.route("/sla", methods=["GET"])
def sla():
    return jsonify(metrics.sla_overview())
