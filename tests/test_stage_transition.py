"""
Floortrack
Tests — Stage-Transition Engine.

Covers:
    - Item creation at the first stage
    - Advance with required actions satisfied / missing / out of range
    - Completion from a terminal stage (completed-items record, occupancy release)
    - Explicit branch selection
    - Pause / resume, assign, flag, annotate
    - Optimistic concurrency on the item row
"""

import pytest
from sqlalchemy import update

from floortrack.core.exceptions import (
    ConcurrentModificationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from floortrack.models import db
from floortrack.models.activity import ActivityLog
from floortrack.models.item import CompletedItem, Item, ItemHistory
from floortrack.services import location_move, location_service, stage_transition, workflow_service


WEIGH_OK = [{"id": "weigh", "completed": True, "data": {"value": 12.5}}]


BRANCHING_STAGES = [
    {"id": "inspect", "name": "Inspect", "order": 0, "allowed_next_stage_ids": ["ship", "rework"]},
    {"id": "ship", "name": "Ship", "order": 1, "allowed_next_stage_ids": []},
    {
        "id": "rework",
        "name": "Rework",
        "order": 2,
        "allowed_next_stage_ids": [],
        "actions": [
            {"id": "reason", "type": "note", "label": "Reason", "required": True},
        ],
    },
]


def _reload(item_id):
    db.session.expire_all()
    return db.session.get(Item, item_id)


# ═════════════════════════════════════════════════════════════════════════════
# CREATION
# ═════════════════════════════════════════════════════════════════════════════

class TestCreateItem:
    def test_starts_at_first_stage(self, workflow):
        item = stage_transition.create_item("CAB-1", workflow.id, created_by="op-1")
        assert item.current_stage_id == "cut"
        assert item.status == "active"
        assert item.qr_code == "item:CAB-1"
        assert item.started_at is not None
        assert item.history == []
        assert item.version == 1

    def test_first_stage_is_lowest_order(self):
        wf = workflow_service.create("Reverse", [
            {"id": "b", "name": "B", "order": 5, "allowed_next_stage_ids": []},
            {"id": "a", "name": "A", "order": 1, "allowed_next_stage_ids": ["b"]},
        ], created_by="admin")
        item = stage_transition.create_item("R-1", wf.id, created_by="op-1")
        assert item.current_stage_id == "a"

    def test_duplicate_code_conflicts(self, item, workflow):
        with pytest.raises(ConflictError):
            stage_transition.create_item(item.item_code, workflow.id, created_by="op-1")

    def test_archived_workflow_rejects_new_items(self, workflow):
        workflow_service.toggle_active(workflow.id, actor="admin")
        with pytest.raises(ValidationError):
            stage_transition.create_item("CAB-2", workflow.id, created_by="op-1")

    def test_unknown_workflow(self):
        with pytest.raises(NotFoundError):
            stage_transition.create_item("CAB-3", 999, created_by="op-1")

    def test_blank_code_rejected(self, workflow):
        with pytest.raises(ValidationError):
            stage_transition.create_item("   ", workflow.id, created_by="op-1")

    def test_writes_activity(self, item):
        row = ActivityLog.query.filter_by(action="item.create").one()
        assert row.entity_id == item.item_code


# ═════════════════════════════════════════════════════════════════════════════
# ADVANCE
# ═════════════════════════════════════════════════════════════════════════════

class TestAdvance:
    def test_advance_with_required_actions(self, item):
        result = stage_transition.advance_item(item.id, "op-1", completed_actions=WEIGH_OK)
        assert result["status"] == "advanced"
        assert result["next_stage"].stage_key == "weld"

        item = _reload(item.id)
        assert item.current_stage_id == "weld"
        assert item.status == "active"
        assert len(item.history) == 1
        entry = item.history[0]
        assert entry.action == "advanced"
        assert entry.stage_id == "weld"
        assert entry.actor == "op-1"
        assert entry.completed_actions[0]["id"] == "weigh"

    def test_missing_required_action_has_no_effect(self, item):
        with pytest.raises(ValidationError) as exc:
            stage_transition.advance_item(item.id, "op-1", completed_actions=[])
        assert exc.value.details["missing_actions"] == ["Weigh"]

        item = _reload(item.id)
        assert item.current_stage_id == "cut"
        assert item.history == []
        assert ItemHistory.query.count() == 0

    def test_completed_false_counts_as_missing(self, item):
        with pytest.raises(ValidationError) as exc:
            stage_transition.advance_item(
                item.id, "op-1",
                completed_actions=[{"id": "weigh", "completed": False, "data": {"value": 12}}],
            )
        assert "missing_actions" in exc.value.details

    def test_measurement_out_of_range(self, item):
        with pytest.raises(ValidationError) as exc:
            stage_transition.advance_item(
                item.id, "op-1",
                completed_actions=[{"id": "weigh", "data": {"value": 25}}],
            )
        invalid = exc.value.details["invalid_actions"]
        assert invalid[0]["id"] == "weigh"
        assert "too high" in invalid[0]["reason"]
        assert _reload(item.id).current_stage_id == "cut"

    def test_complete_from_terminal_stage(self, item):
        stage_transition.advance_item(item.id, "op-1", completed_actions=WEIGH_OK)
        stage_transition.advance_item(item.id, "op-1")
        result = stage_transition.advance_item(item.id, "op-2", notes="done")

        assert result["status"] == "completed"
        item = _reload(item.id)
        assert item.status == "completed"
        assert item.completed_at is not None
        assert item.final_stage_name == "Packing"
        assert [h.action for h in item.history] == ["advanced", "advanced", "completed"]

        record = CompletedItem.query.filter_by(item_id=item.id).one()
        assert record.final_stage_id == "pack"
        assert record.completed_by == "op-2"
        assert record.completion_notes == "done"

    def test_two_stage_round_trip(self):
        wf = workflow_service.create("Two", [
            {"id": "s1", "name": "S1", "order": 0, "allowed_next_stage_ids": ["s2"]},
            {
                "id": "s2", "name": "S2", "order": 1, "allowed_next_stage_ids": [],
                "actions": [{"id": "ok", "type": "approval", "label": "OK", "required": True}],
            },
        ], created_by="admin")
        item = stage_transition.create_item("RT-1", wf.id, created_by="op")

        stage_transition.advance_item(
            item.id, "op", completed_actions=[{"id": "ok", "data": {"approved": True}}],
        )
        item = _reload(item.id)
        assert item.current_stage_id == "s2"
        assert item.status == "active"

        stage_transition.advance_item(item.id, "op")
        item = _reload(item.id)
        assert item.status == "completed"
        assert item.completed_at is not None

    def test_completed_item_cannot_advance(self, item):
        stage_transition.advance_item(item.id, "op-1", completed_actions=WEIGH_OK)
        stage_transition.advance_item(item.id, "op-1")
        stage_transition.advance_item(item.id, "op-1")
        with pytest.raises(ValidationError):
            stage_transition.advance_item(item.id, "op-1")

    def test_completion_releases_location(self, item, location):
        location_move.move_to_location(item.id, location.id, "op-1")
        stage_transition.advance_item(item.id, "op-1", completed_actions=WEIGH_OK)
        stage_transition.advance_item(item.id, "op-1")
        stage_transition.advance_item(item.id, "op-1")

        db.session.expire_all()
        assert location_service.get_by_id(location.id).current_occupancy == 0
        assert _reload(item.id).current_location_id is None
        record = CompletedItem.query.filter_by(item_id=item.id).one()
        assert record.final_location_id == location.id

    def test_unknown_item(self):
        with pytest.raises(NotFoundError):
            stage_transition.advance_item(999, "op-1")

    def test_active_items_stay_on_workflow_stages(self, item, workflow):
        stage_transition.advance_item(item.id, "op-1", completed_actions=WEIGH_OK)
        keys = {s.stage_key for s in workflow_service.get_by_id(workflow.id).stages}
        for row in Item.query.filter_by(status="active").all():
            assert row.current_stage_id in keys


class TestBranching:
    @pytest.fixture()
    def branch_item(self):
        wf = workflow_service.create("Branch", BRANCHING_STAGES, created_by="admin")
        return stage_transition.create_item("BR-1", wf.id, created_by="op")

    def test_default_is_first_allowed(self, branch_item):
        result = stage_transition.advance_item(branch_item.id, "op")
        assert result["next_stage"].stage_key == "ship"

    def test_explicit_target(self, branch_item):
        result = stage_transition.advance_item(
            branch_item.id, "op", target_stage_id="rework",
            completed_actions=[{"id": "reason", "data": {}}],
        )
        assert result["next_stage"].stage_key == "rework"

    def test_explicit_target_checks_its_actions(self, branch_item):
        with pytest.raises(ValidationError):
            stage_transition.advance_item(branch_item.id, "op", target_stage_id="rework")

    def test_target_must_be_allowed(self, branch_item):
        with pytest.raises(ValidationError) as exc:
            stage_transition.advance_item(branch_item.id, "op", target_stage_id="inspect")
        assert exc.value.details["allowed_next_stage_ids"] == ["ship", "rework"]

    def test_available_transitions(self, branch_item):
        stages = stage_transition.get_available_transitions(branch_item.id)
        assert [s.stage_key for s in stages] == ["ship", "rework"]


class TestAutoAssignOnAdvance:
    def test_places_item_in_stage_location(self, item, location):
        location_service.assign_to_stage(location.id, "weld", assigned_by="admin")
        result = stage_transition.advance_item(
            item.id, "op-1", completed_actions=WEIGH_OK, auto_assign_location=True,
        )
        assert result["location"].id == location.id
        assert _reload(item.id).current_location_id == location.id

    def test_no_location_is_not_an_error(self, item):
        result = stage_transition.advance_item(
            item.id, "op-1", completed_actions=WEIGH_OK, auto_assign_location=True,
        )
        assert result["status"] == "advanced"
        assert result["location"] is None


# ═════════════════════════════════════════════════════════════════════════════
# STATUS BOOKKEEPING
# ═════════════════════════════════════════════════════════════════════════════

class TestPauseResume:
    def test_pause_blocks_advance(self, item):
        stage_transition.pause_item(item.id, "op-1", notes="waiting for parts")
        with pytest.raises(ValidationError):
            stage_transition.advance_item(item.id, "op-1", completed_actions=WEIGH_OK)
        assert _reload(item.id).status == "paused"

    def test_resume(self, item):
        stage_transition.pause_item(item.id, "op-1")
        stage_transition.resume_item(item.id, "op-1")
        item = _reload(item.id)
        assert item.status == "active"
        assert [h.action for h in item.history] == ["paused", "resumed"]

    def test_resume_requires_paused(self, item):
        with pytest.raises(ValidationError):
            stage_transition.resume_item(item.id, "op-1")


class TestAssignFlagAnnotate:
    def test_assign_and_clear(self, item):
        assert stage_transition.assign_item(item.id, "op-7", "lead").assigned_to == "op-7"
        assert stage_transition.assign_item(item.id, None, "lead").assigned_to is None

    def test_flag_and_unflag(self, item):
        flagged = stage_transition.flag_item(item.id, "qa", notes="scratch")
        assert flagged.is_defective is True
        assert flagged.flagged_by == "qa"
        assert stage_transition.list_items(defective=True)[0].id == item.id

        cleared = stage_transition.flag_item(item.id, "qa", defective=False)
        assert cleared.is_defective is False
        assert cleared.flagged_at is None

    def test_annotate_completed(self, item):
        stage_transition.advance_item(item.id, "op-1", completed_actions=WEIGH_OK)
        stage_transition.advance_item(item.id, "op-1")
        result = stage_transition.advance_item(item.id, "op-1")

        record = stage_transition.annotate_completed_item(
            result["completed_record"].id, "customer return", "qa",
        )
        assert record.annotations[0]["note"] == "customer return"
        assert record.annotations[0]["author"] == "qa"

    def test_annotate_requires_text(self, item):
        with pytest.raises(ValidationError):
            stage_transition.annotate_completed_item(1, "  ", "qa")


# ═════════════════════════════════════════════════════════════════════════════
# CONCURRENCY
# ═════════════════════════════════════════════════════════════════════════════

class TestConcurrency:
    def test_stale_item_version_is_rejected(self, item):
        stage_transition.get_item(item.id)
        # Another writer bumps the row behind this session's back
        db.session.execute(
            update(Item).where(Item.id == item.id)
            .values(version=Item.version + 1)
            .execution_options(synchronize_session=False)
        )
        with pytest.raises(ConcurrentModificationError):
            stage_transition.advance_item(item.id, "op-1", completed_actions=WEIGH_OK)

        item = _reload(item.id)
        assert item.current_stage_id == "cut"
        assert ItemHistory.query.count() == 0
