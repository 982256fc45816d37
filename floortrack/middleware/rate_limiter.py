"""
Rate limiting configuration.

The Limiter instance is created in floortrack/__init__.py with no default
limits; this module applies limits per blueprint.

Scanners are throttled per operator (``user_id`` / ``moved_by`` in the
JSON body), falling back to the remote address, so one stuck trigger on a
handheld cannot flood the move engine.

Usage:
    from floortrack.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request as flask_request
from flask_limiter.util import get_remote_address

logger = logging.getLogger(__name__)


def scan_rate_limit_key():
    """Rate-limit key for scan routes: the operator id if supplied, else IP."""
    payload = flask_request.get_json(silent=True) or {}
    user = payload.get("user_id") or payload.get("moved_by") or flask_request.args.get("user_id")
    if user:
        return f"user:{user}"
    return get_remote_address() or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Scan endpoints:   SCAN_RATE_LIMIT per operator (default 10 per 5 seconds)
        - Write endpoints:  120/minute per IP
        - Metrics:          200/minute per IP
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    scan_limit = app.config.get("SCAN_RATE_LIMIT", "10 per 5 seconds")
    bp = app.blueprints.get("scans")
    if bp:
        limiter.limit(scan_limit, key_func=scan_rate_limit_key)(bp)

    for bp_name in ("items", "locations", "workflows"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("120/minute")(bp)

    for bp_name in ("metrics", "location_history"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("200/minute")(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — scans: %s per operator, write: 120/min, read: 200/min",
        scan_limit,
    )
