"""
Floortrack
Tests — Floor Metrics.

Covers:
    - Stage counts, stuck detection and SLA against an injected clock
    - Completion windows with per-item expected durations
    - Location utilization and scan statistics
"""

from datetime import datetime, timedelta, timezone

import pytest

from floortrack.core.exceptions import NotFoundError
from floortrack.models import db
from floortrack.models.item import CompletedItem
from floortrack.services import location_move, metrics, scan_service, stage_transition
from floortrack.services.metrics import MetricsConfig
from floortrack.utils.helpers import as_utc


def _finish(item_id):
    stage_transition.advance_item(item_id, "op-1", completed_actions=[{"id": "weigh", "data": {"value": 12}}])
    stage_transition.advance_item(item_id, "op-1")
    return stage_transition.advance_item(item_id, "op-1")["completed_record"]


def _hours_after_start(item, hours):
    return as_utc(item.started_at) + timedelta(hours=hours)


class TestMetricsConfig:
    def test_reads_flask_config(self, app):
        app.config["STUCK_THRESHOLD_HOURS"] = 2
        try:
            assert MetricsConfig.from_app().stuck_threshold_hours == 2.0
        finally:
            app.config.pop("STUCK_THRESHOLD_HOURS")
        assert MetricsConfig.from_app().expected_stage_duration_hours == 8.0


class TestStageCounts:
    def test_counts_every_stage(self, item, workflow):
        second = stage_transition.create_item("CAB-0002", workflow.id, created_by="op-1")
        stage_transition.pause_item(second.id, "op-1")

        rows = {r["stage_id"]: r for r in metrics.counts_by_stage(workflow.id)}
        assert list(rows) == ["cut", "weld", "pack"]
        assert rows["cut"]["active"] == 1
        assert rows["cut"]["paused"] == 1
        assert rows["cut"]["count"] == 2
        assert rows["pack"]["count"] == 0


class TestStuckAndSla:
    def test_stuck_after_threshold(self, item):
        assert metrics.stuck_items(now=_hours_after_start(item, 3)) == []

        stuck = metrics.stuck_items(now=_hours_after_start(item, 5))
        assert [row["item_code"] for row in stuck] == [item.item_code]
        assert stuck[0]["hours_since_update"] == pytest.approx(5, abs=0.01)

    def test_custom_threshold(self, item):
        cfg = MetricsConfig(stuck_threshold_hours=1)
        assert len(metrics.stuck_items(now=_hours_after_start(item, 2), config=cfg)) == 1

    def test_paused_items_are_not_stuck(self, item):
        stage_transition.pause_item(item.id, "op-1")
        later = datetime.now(timezone.utc) + timedelta(hours=10)
        assert metrics.stuck_items(now=later) == []

    def test_sla_uses_stage_estimate(self, item):
        on_track = metrics.item_sla(item, now=_hours_after_start(item, 1))
        assert on_track["status"] == "on_track"
        assert on_track["expected_hours"] == 2.0
        assert on_track["remaining_hours"] == pytest.approx(1, abs=0.01)

        overdue = metrics.item_sla(item, now=_hours_after_start(item, 3))
        assert overdue["status"] == "overdue"

    def test_sla_falls_back_to_default(self, item):
        stage_transition.advance_item(item.id, "op-1", completed_actions=[{"id": "weigh", "data": {"value": 12}}])
        entered = as_utc(stage_transition.get_item(item.id).stage_entered_at)
        row = metrics.item_sla(stage_transition.get_item(item.id), now=entered + timedelta(hours=7))
        assert row["expected_hours"] == 8.0
        assert row["status"] == "on_track"

    def test_sla_overview(self, item):
        overview = metrics.sla_overview(now=_hours_after_start(item, 3))
        assert overview["total"] == 1
        assert overview["overdue"] == 1
        assert overview["overdue_items"][0]["item_code"] == item.item_code


class TestCompletions:
    def test_windows(self, item):
        record = _finish(item.id)
        done_at = as_utc(record.completed_at)

        same_day = metrics.completion_summary(now=done_at + timedelta(hours=1))
        assert same_day["today"]["completed"] == 1
        assert same_day["today"]["on_time"] == 1
        assert same_day["today"]["rag"] == "green"
        assert same_day["in_progress"] == 0

        later = metrics.completion_summary(now=done_at + timedelta(days=2))
        assert later["today"]["completed"] == 0
        assert later["today"]["rag"] is None
        assert later["week"]["completed"] == 1
        assert later["month"]["completed"] == 1

    def test_late_completion(self, item):
        record = _finish(item.id)
        done_at = as_utc(record.completed_at)
        record.started_at = done_at - timedelta(hours=10)
        db.session.commit()

        summary = metrics.completion_summary(now=done_at + timedelta(minutes=5))
        assert summary["today"]["late"] == 1
        assert summary["today"]["efficiency"] == 0.0
        assert summary["today"]["rag"] == "red"

    def test_per_item_expected_duration(self, workflow):
        slow = stage_transition.create_item(
            "SLOW-1", workflow.id, created_by="op-1", metadata={"expected_duration_hours": 12},
        )
        record = _finish(slow.id)
        done_at = as_utc(record.completed_at)
        db.session.get(CompletedItem, record.id).started_at = done_at - timedelta(hours=10)
        db.session.commit()

        summary = metrics.completion_summary(now=done_at + timedelta(minutes=5))
        assert summary["today"]["on_time"] == 1


class TestLocationsAndScans:
    def test_location_utilization(self, workflow, item, location):
        location_move.move_to_location(item.id, location.id, "op-1")
        report = metrics.location_utilization()
        row = report["locations"][0]
        assert row["utilization_pct"] == 50.0
        assert row["status"] == "ok"

        other = stage_transition.create_item("CAB-0002", workflow.id, created_by="op-1")
        location_move.move_to_location(other.id, location.id, "op-1")
        report = metrics.location_utilization()
        assert report["locations"][0]["status"] == "full"
        assert report["full"] == 1
        assert report["overall_utilization_pct"] == 100.0

    def test_scan_stats(self, item, location):
        scan_service.resolve(item.qr_code, user_id="op-1")
        scan_service.scan_move(item.qr_code, "location:LOC-A1", moved_by="op-1")
        with pytest.raises(NotFoundError):
            scan_service.resolve("item:NOPE", user_id="op-2")

        mine = metrics.scan_stats(user_id="op-1")
        assert mine["total"] == 2
        assert mine["success_rate"] == 100.0
        assert mine["by_type"] == {"item_lookup": 1, "move": 1}

        everyone = metrics.scan_stats()
        assert everyone["failed"] == 1

    def test_dashboard(self, item, location):
        report = metrics.dashboard(now=_hours_after_start(item, 5))
        assert report["stuck"]["count"] == 1
        assert report["thresholds"]["stuck_threshold_hours"] == 4.0
        assert {"stages", "sla", "completions", "locations", "scans"} <= set(report)
