"""
Floortrack
Blueprint registry and shared request helpers.
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from floortrack.core.exceptions import (
    CapacityExceededError,
    ConcurrentModificationError,
    ConflictError,
    NotFoundError,
    ReferentialIntegrityError,
    ValidationError,
)
from floortrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def json_body() -> dict:
    """Request JSON as a dict (empty when absent or not an object)."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def require_fields(data: dict, *names):
    """Return a 400 response naming the first missing field, or None."""
    for name in names:
        value = data.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            return api_error(E.VALIDATION_REQUIRED, f"{name} is required")
    return None


def arg_bool(name: str):
    """Parse a tri-state boolean query param (None when absent)."""
    raw = request.args.get(name)
    if raw is None:
        return None
    return raw.strip().lower() in ("1", "true", "yes")


def register_error_handlers(bp):
    """Map the domain exception taxonomy onto HTTP responses for *bp*."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error), details={"field": error.field})

    @bp.errorhandler(CapacityExceededError)
    def _handle_capacity(error: CapacityExceededError):
        return api_error(
            E.CAPACITY_EXCEEDED, str(error),
            details={"location_id": error.location_id, "capacity": error.capacity},
        )

    @bp.errorhandler(ReferentialIntegrityError)
    def _handle_integrity(error: ReferentialIntegrityError):
        return api_error(
            E.REFERENTIAL_INTEGRITY, str(error),
            details={"blocking_item_ids": error.blocking_ids},
        )

    @bp.errorhandler(ConcurrentModificationError)
    def _handle_stale(error: ConcurrentModificationError):
        return api_error(E.CONFLICT_STALE, str(error))

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return {"error": error.name, "detail": error.description}, error.code
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp
