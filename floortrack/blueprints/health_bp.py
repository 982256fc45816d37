"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — 200 as soon as the process serves requests
    GET /api/v1/health/live   — database round-trip plus a floor snapshot
                                (503 when the database is unreachable)
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from floortrack.models import db
from floortrack.models.item import Item
from floortrack.models.location import Location

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


def _check_database() -> dict:
    t0 = time.perf_counter()
    db.session.execute(db.text("SELECT 1"))
    return {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}


def _floor_snapshot() -> dict:
    full = (
        Location.query
        .filter(
            Location.lifecycle_state == "active",
            Location.capacity.isnot(None),
            Location.current_occupancy >= Location.capacity,
        )
        .count()
    )
    return {
        "active_items": Item.query.filter_by(status="active").count(),
        "locations_at_capacity": full,
    }


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {"app": {"debug": current_app.debug, "testing": current_app.testing}}
    try:
        checks["database"] = _check_database()
        checks["floor"] = _floor_snapshot()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Liveness probe: database unavailable: %s", exc)
        checks["database"] = {"status": "error", "detail": str(exc)}
        return jsonify({"status": "degraded", "checks": checks}), 503

    return jsonify({"status": "healthy", "checks": checks}), 200
