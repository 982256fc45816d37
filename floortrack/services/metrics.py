"""
Floor Metrics — read-only aggregations over items, locations and scans.

Nothing here writes. Thresholds come in through ``MetricsConfig`` so
deployments and tests can vary them; ``MetricsConfig.from_app()`` reads
``STUCK_THRESHOLD_HOURS`` / ``EXPECTED_STAGE_DURATION_HOURS`` from the
Flask config.

Usage:
    from floortrack.services.metrics import MetricsConfig, dashboard

    report = dashboard(now=datetime.now(timezone.utc))
    report = dashboard(config=MetricsConfig(stuck_threshold_hours=2))
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from flask import current_app, has_app_context

from floortrack.models.item import IN_PROGRESS_STATUSES, CompletedItem, Item
from floortrack.models.location import Location
from floortrack.models.scan import ScanLog
from floortrack.models.workflow import Workflow
from floortrack.utils.helpers import as_utc


@dataclass(frozen=True)
class MetricsConfig:
    stuck_threshold_hours: float = 4.0
    expected_stage_duration_hours: float = 8.0

    @classmethod
    def from_app(cls) -> MetricsConfig:
        if not has_app_context():
            return cls()
        cfg = current_app.config
        return cls(
            stuck_threshold_hours=float(cfg.get("STUCK_THRESHOLD_HOURS", cls.stuck_threshold_hours)),
            expected_stage_duration_hours=float(
                cfg.get("EXPECTED_STAGE_DURATION_HOURS", cls.expected_stage_duration_hours)
            ),
        )


COMPLETION_WINDOWS = {
    "today": timedelta(hours=24),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}


# ═════════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════════

def _rag(value: float, *, green_min: float = 80, amber_min: float = 60) -> str:
    """Return RAG color based on percentage value."""
    if value >= green_min:
        return "green"
    elif value >= amber_min:
        return "amber"
    return "red"


def _safe_pct(numerator: int, denominator: int) -> float:
    """Zero-safe percentage."""
    return round((numerator / denominator) * 100, 1) if denominator else 0.0


def _hours(delta: timedelta) -> float:
    return round(delta.total_seconds() / 3600, 2)


def _resolve(now, config):
    return as_utc(now) or datetime.now(timezone.utc), config or MetricsConfig.from_app()


def _expected_hours(item: Item | None, config: MetricsConfig) -> float:
    """Per-item expectation from ``metadata.expected_duration_hours``, else the default."""
    if item is not None:
        raw = (item.details or {}).get("expected_duration_hours")
        if isinstance(raw, (int, float)) and not isinstance(raw, bool) and raw > 0:
            return float(raw)
    return config.expected_stage_duration_hours


# ═════════════════════════════════════════════════════════════════════════════
# Core Metric Functions
# ═════════════════════════════════════════════════════════════════════════════

def counts_by_stage(workflow_id: int | None = None) -> list[dict]:
    """In-progress item counts per stage, for every stage of every live workflow."""
    q = Workflow.query.filter(Workflow.lifecycle_state != "deleted")
    if workflow_id is not None:
        q = q.filter(Workflow.id == workflow_id)
    workflows = q.order_by(Workflow.id).all()

    items = Item.query.filter(Item.status.in_(IN_PROGRESS_STATUSES))
    if workflow_id is not None:
        items = items.filter(Item.workflow_id == workflow_id)
    counts = Counter((i.workflow_id, i.current_stage_id, i.status) for i in items.all())

    rows = []
    for wf in workflows:
        for stage in wf.stages:
            active = counts.get((wf.id, stage.stage_key, "active"), 0)
            paused = counts.get((wf.id, stage.stage_key, "paused"), 0)
            rows.append({
                "workflow_id": wf.id,
                "workflow_name": wf.name,
                "stage_id": stage.stage_key,
                "stage_name": stage.name,
                "order": stage.order,
                "active": active,
                "paused": paused,
                "count": active + paused,
            })
    return rows


def stuck_items(now: datetime | None = None, config: MetricsConfig | None = None) -> list[dict]:
    """Active items whose history has not moved for longer than the stuck threshold."""
    now, config = _resolve(now, config)
    threshold = timedelta(hours=config.stuck_threshold_hours)

    stuck = []
    for item in Item.query.filter_by(status="active").order_by(Item.id).all():
        idle = now - as_utc(item.last_history_at)
        if idle > threshold:
            stuck.append({
                "item_id": item.id,
                "item_code": item.item_code,
                "workflow_id": item.workflow_id,
                "stage_id": item.current_stage_id,
                "current_location_id": item.current_location_id,
                "hours_since_update": _hours(idle),
            })
    stuck.sort(key=lambda row: row["hours_since_update"], reverse=True)
    return stuck


def item_sla(item: Item, now: datetime | None = None, config: MetricsConfig | None = None) -> dict:
    """Time in the current stage against the stage estimate (or the default).

    ``status`` is ``on_track`` or ``overdue`` for in-progress items and
    ``completed`` otherwise.
    """
    now, config = _resolve(now, config)
    stage = item.workflow.stage_by_key(item.current_stage_id) if item.workflow else None
    if stage is not None and stage.estimated_duration:
        expected = stage.estimated_duration / 60
    else:
        expected = config.expected_stage_duration_hours

    if item.status == "completed":
        return {
            "item_id": item.id,
            "item_code": item.item_code,
            "stage_id": item.current_stage_id,
            "status": "completed",
            "expected_hours": round(expected, 2),
            "hours_in_stage": None,
            "remaining_hours": None,
        }

    in_stage = now - as_utc(item.stage_entered_at)
    hours_in_stage = _hours(in_stage)
    return {
        "item_id": item.id,
        "item_code": item.item_code,
        "stage_id": item.current_stage_id,
        "status": "overdue" if hours_in_stage > expected else "on_track",
        "expected_hours": round(expected, 2),
        "hours_in_stage": hours_in_stage,
        "remaining_hours": round(expected - hours_in_stage, 2),
    }


def sla_overview(now: datetime | None = None, config: MetricsConfig | None = None) -> dict:
    now, config = _resolve(now, config)
    rows = [item_sla(i, now, config) for i in Item.query.filter_by(status="active").all()]
    overdue = [r for r in rows if r["status"] == "overdue"]
    return {
        "total": len(rows),
        "on_track": len(rows) - len(overdue),
        "overdue": len(overdue),
        "overdue_items": sorted(overdue, key=lambda r: r["remaining_hours"]),
    }


def completion_summary(now: datetime | None = None, config: MetricsConfig | None = None) -> dict:
    """Completed / on-time / late counts for the last 24 hours, 7 days and 30 days."""
    now, config = _resolve(now, config)
    oldest = now - max(COMPLETION_WINDOWS.values())
    records = CompletedItem.query.filter(CompletedItem.completed_at >= oldest).all()
    items = {
        i.id: i for i in Item.query.filter(
            Item.id.in_([r.item_id for r in records if r.item_id is not None])
        ).all()
    } if records else {}

    summary = {}
    for window, span in COMPLETION_WINDOWS.items():
        start = now - span
        in_window = [r for r in records if as_utc(r.completed_at) >= start]
        on_time = 0
        for rec in in_window:
            took = as_utc(rec.completed_at) - as_utc(rec.started_at)
            if took <= timedelta(hours=_expected_hours(items.get(rec.item_id), config)):
                on_time += 1
        completed = len(in_window)
        efficiency = _safe_pct(on_time, completed)
        summary[window] = {
            "completed": completed,
            "on_time": on_time,
            "late": completed - on_time,
            "efficiency": efficiency,
            "rag": _rag(efficiency) if completed else None,
        }
    summary["in_progress"] = Item.query.filter(Item.status.in_(IN_PROGRESS_STATUSES)).count()
    return summary


def location_utilization() -> dict:
    locations = (
        Location.query
        .filter(Location.lifecycle_state == "active")
        .order_by(Location.name)
        .all()
    )
    rows = []
    for loc in locations:
        if loc.capacity is None:
            pct, status = None, "unlimited"
        else:
            pct = _safe_pct(loc.current_occupancy, loc.capacity) if loc.capacity else 100.0
            if loc.current_occupancy >= loc.capacity:
                status = "full"
            elif pct >= 80:
                status = "near_capacity"
            else:
                status = "ok"
        rows.append({
            "location_id": loc.id,
            "name": loc.name,
            "type": loc.type,
            "assigned_stage_id": loc.assigned_stage_id,
            "current_occupancy": loc.current_occupancy,
            "capacity": loc.capacity,
            "utilization_pct": pct,
            "status": status,
        })

    limited = [r for r in rows if r["capacity"] is not None]
    return {
        "locations": rows,
        "total_locations": len(rows),
        "full": sum(1 for r in rows if r["status"] == "full"),
        "occupied_slots": sum(r["current_occupancy"] for r in limited),
        "total_slots": sum(r["capacity"] for r in limited),
        "overall_utilization_pct": _safe_pct(
            sum(r["current_occupancy"] for r in limited),
            sum(r["capacity"] for r in limited),
        ),
    }


def scan_stats(
    user_id: str | None = None,
    window_hours: float = 24,
    now: datetime | None = None,
) -> dict:
    now = as_utc(now) or datetime.now(timezone.utc)
    q = ScanLog.query.filter(ScanLog.timestamp >= now - timedelta(hours=window_hours))
    if user_id:
        q = q.filter(ScanLog.user_id == user_id)
    scans = q.all()
    ok = sum(1 for s in scans if s.success)
    return {
        "user_id": user_id,
        "window_hours": window_hours,
        "total": len(scans),
        "successful": ok,
        "failed": len(scans) - ok,
        "success_rate": _safe_pct(ok, len(scans)),
        "by_type": dict(Counter(s.scan_type for s in scans)),
    }


# ═════════════════════════════════════════════════════════════════════════════
# Aggregated dashboard
# ═════════════════════════════════════════════════════════════════════════════

def dashboard(now: datetime | None = None, config: MetricsConfig | None = None) -> dict:
    """Everything the floor dashboard shows, in one call."""
    now, config = _resolve(now, config)
    stuck = stuck_items(now, config)
    return {
        "generated_at": now.isoformat(),
        "thresholds": {
            "stuck_threshold_hours": config.stuck_threshold_hours,
            "expected_stage_duration_hours": config.expected_stage_duration_hours,
        },
        "stages": counts_by_stage(),
        "stuck": {"count": len(stuck), "items": stuck},
        "sla": sla_overview(now, config),
        "completions": completion_summary(now, config),
        "locations": location_utilization(),
        "scans": scan_stats(now=now),
    }
