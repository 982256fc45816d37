"""
QR scan flow.

Printed labels carry ``item:<item_code>`` or ``location:<qr_code>``. A
handheld scans an item, then a location, and the pair becomes a
location move. Every scan attempt, successful or not, leaves one row in
the ``scans`` table; failed attempts are logged after the failed
operation has rolled back.

Usage:
    from floortrack.services import scan_service

    found = scan_service.resolve("item:CAB-0042", user_id="op-12")
    entry = scan_service.scan_move("item:CAB-0042", "location:RACK-A1", moved_by="op-12")
"""

import logging

from floortrack.core.exceptions import (
    CapacityExceededError,
    ConcurrentModificationError,
    NotFoundError,
    ValidationError,
)
from floortrack.models import db
from floortrack.models.item import QR_PREFIX as ITEM_PREFIX
from floortrack.models.scan import ScanLog
from floortrack.services import location_move, location_service, stage_transition

logger = logging.getLogger(__name__)

LOCATION_PREFIX = "location:"

_SCAN_FAILURES = (
    NotFoundError,
    ValidationError,
    CapacityExceededError,
    ConcurrentModificationError,
)


def parse_qr_payload(text: str) -> tuple[str, str]:
    """Split a decoded QR string into ``(kind, code)``.

    Unprefixed payloads are treated as location QR codes, which is how
    shelf labels printed before the prefix convention read.
    """
    raw = (text or "").strip() if isinstance(text, str) else ""
    if not raw:
        raise ValidationError("QR payload is empty")
    if raw.startswith(ITEM_PREFIX):
        code = raw[len(ITEM_PREFIX):].strip()
        kind = "item"
    elif raw.startswith(LOCATION_PREFIX):
        code = raw[len(LOCATION_PREFIX):].strip()
        kind = "location"
    else:
        return "location", raw
    if not code:
        raise ValidationError(f"QR payload {raw!r} has no code after the prefix")
    return kind, code


def _log_scan(qr_data, scan_type, user_id, *, success=True, error=None, item_code=None, location_id=None):
    db.session.add(ScanLog(
        qr_data=(qr_data or "")[:300],
        scan_type=scan_type,
        success=success,
        error_message=error,
        user_id=user_id or "unknown",
        item_code=item_code,
        location_id=location_id,
    ))
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def _lookup(text: str):
    kind, code = parse_qr_payload(text)
    if kind == "item":
        item = stage_transition.get_by_item_code(code)
        if item is None:
            raise NotFoundError(resource="Item", resource_id=code)
        return "item", item

    location = location_service.get_by_qr_code(code)
    if location is None and code != text.strip():
        # Label stored with its prefix
        location = location_service.get_by_qr_code(text.strip())
    if location is None and code == text.strip():
        item = stage_transition.get_by_item_code(code)
        if item is not None:
            return "item", item
    if location is None:
        raise NotFoundError(resource="Location", resource_id=code)
    return "location", location


def resolve(text: str, user_id: str) -> dict:
    """Look up what a QR payload points at and record the scan.

    Returns ``{"kind": "item"|"location", "item"|"location": obj}``.
    """
    try:
        kind, obj = _lookup(text)
    except (NotFoundError, ValidationError) as exc:
        _log_scan(text, "error", user_id, success=False, error=str(exc))
        logger.warning("Scan failed: %s", exc, extra={"actor": user_id})
        raise

    if kind == "item":
        _log_scan(text, "item_lookup", user_id, item_code=obj.item_code,
                  location_id=obj.current_location_id)
    else:
        _log_scan(text, "location_lookup", user_id, location_id=obj.id)
    return {"kind": kind, kind: obj}


def scan_move(item_qr: str, location_qr: str, moved_by: str, notes: str | None = None):
    """Resolve an item scan and a location scan, then move the item there."""
    item_code = None
    location_id = None
    try:
        item_kind, item = _lookup(item_qr)
        if item_kind != "item":
            raise ValidationError(f"First scan {item_qr!r} is not an item label")
        item_code = item.item_code
        loc_kind, location = _lookup(location_qr)
        if loc_kind != "location":
            raise ValidationError(f"Second scan {location_qr!r} is not a location label")
        location_id = location.id
        entry = location_move.move_to_location(
            item.id, location.id, moved_by, notes=notes, metadata={"source": "qr_scan"},
        )
    except _SCAN_FAILURES as exc:
        _log_scan(f"{item_qr} -> {location_qr}", "error", moved_by, success=False,
                  error=str(exc), item_code=item_code, location_id=location_id)
        logger.warning("Scan move failed: %s", exc,
                       extra={"item_code": item_code, "location_id": location_id, "actor": moved_by})
        raise

    _log_scan(f"{item_qr} -> {location_qr}", "move", moved_by,
              item_code=entry.item_code, location_id=entry.to_location_id)
    return entry


def get_recent_scans(user_id: str | None = None, limit: int = 50) -> list[ScanLog]:
    q = ScanLog.query
    if user_id:
        q = q.filter(ScanLog.user_id == user_id)
    limit = max(1, min(int(limit or 50), 500))
    return q.order_by(ScanLog.timestamp.desc(), ScanLog.id.desc()).limit(limit).all()


def get_item_scans(item_code: str) -> list[ScanLog]:
    return (
        ScanLog.query
        .filter(ScanLog.item_code == item_code)
        .order_by(ScanLog.timestamp.desc(), ScanLog.id.desc())
        .all()
    )
