"""
Floortrack
Tests — Workflow Definition Store.

Covers:
    - Stage graph validation on create
    - Update / stage replacement (stranded in-progress items)
    - Lifecycle: toggle active ↔ archived, delete blocked by in-progress items
    - Usage and per-stage stats
"""

import pytest

from floortrack.core.exceptions import NotFoundError, ReferentialIntegrityError, ValidationError
from floortrack.models.workflow import StageAction, WorkflowStage
from floortrack.services import stage_transition, workflow_service


def _stages(base, **overrides):
    """Apply per-stage-id overrides to a stage list."""
    for stage in base:
        stage.update(overrides.get(stage["id"], {}))
    return base


# ═════════════════════════════════════════════════════════════════════════════
# CREATE / VALIDATION
# ═════════════════════════════════════════════════════════════════════════════

class TestCreateWorkflow:
    def test_create(self, workflow):
        assert workflow.is_active
        assert [s.stage_key for s in workflow.stages] == ["cut", "weld", "pack"]
        weld = workflow.stage_by_key("weld")
        assert weld.actions[0].type == "measurement"
        assert weld.actions[0].config == {"unit": "kg", "min_value": 10, "max_value": 20}
        assert workflow.stage_by_key("pack").is_terminal

    def test_to_dict_uses_stage_keys(self, workflow):
        data = workflow.to_dict()
        assert data["stages"][0]["id"] == "cut"
        assert data["stages"][0]["allowed_next_stage_ids"] == ["weld"]
        assert data["stages"][1]["actions"][0]["id"] == "weigh"

    def test_requires_stages(self):
        with pytest.raises(ValidationError):
            workflow_service.create("Empty", [], created_by="admin")

    def test_requires_name(self, linear_stages):
        with pytest.raises(ValidationError):
            workflow_service.create("  ", _stages(linear_stages), created_by="admin")

    def test_unknown_next_stage(self, linear_stages):
        with pytest.raises(ValidationError) as exc:
            workflow_service.create(
                "Bad", _stages(linear_stages, pack={"allowed_next_stage_ids": ["ship"]}), created_by="admin",
            )
        assert exc.value.details["unknown_stage_ids"] == ["ship"]

    def test_self_reference(self, linear_stages):
        with pytest.raises(ValidationError):
            workflow_service.create(
                "Loop", _stages(linear_stages, cut={"allowed_next_stage_ids": ["cut"]}), created_by="admin",
            )

    def test_duplicate_stage_ids(self, linear_stages):
        stages = _stages(linear_stages)
        stages[2]["id"] = "cut"
        with pytest.raises(ValidationError) as exc:
            workflow_service.create("Dup", stages, created_by="admin")
        assert exc.value.details["duplicate_stage_ids"] == ["cut"]

    def test_duplicate_order(self, linear_stages):
        with pytest.raises(ValidationError):
            workflow_service.create("Order", _stages(linear_stages, pack={"order": 0}), created_by="admin")

    def test_unknown_action_type(self, linear_stages):
        bad = _stages(linear_stages, pack={"actions": [{"id": "x", "type": "dance", "label": "Dance"}]})
        with pytest.raises(ValidationError):
            workflow_service.create("Bad", bad, created_by="admin")

    def test_unknown_action_config_key(self, linear_stages):
        bad = _stages(linear_stages, pack={"actions": [
            {"id": "s", "type": "scan", "label": "Scan", "config": {"min_value": 3}},
        ]})
        with pytest.raises(ValidationError) as exc:
            workflow_service.create("Bad", bad, created_by="admin")
        assert exc.value.details["unknown_keys"] == ["min_value"]

    def test_unknown_location_reference(self, linear_stages):
        with pytest.raises(ValidationError):
            workflow_service.create(
                "Bad", _stages(linear_stages, cut={"assigned_location_ids": [404]}), created_by="admin",
            )

    def test_negative_duration(self, linear_stages):
        with pytest.raises(ValidationError):
            workflow_service.create("Bad", _stages(linear_stages, cut={"estimated_duration": -5}), created_by="admin")


# ═════════════════════════════════════════════════════════════════════════════
# UPDATE
# ═════════════════════════════════════════════════════════════════════════════

class TestUpdateWorkflow:
    def test_rename(self, workflow):
        updated = workflow_service.update(workflow.id, name="Cabinet v2", updated_by="admin")
        assert updated.name == "Cabinet v2"

    def test_replace_stages(self, linear_stages, workflow):
        stages = _stages(linear_stages, pack={"name": "Boxing"})
        updated = workflow_service.update(workflow.id, stages=stages, updated_by="admin")
        assert updated.stage_by_key("pack").name == "Boxing"
        assert WorkflowStage.query.count() == 3
        assert StageAction.query.count() == 2

    def test_cannot_strand_in_progress_items(self, item, workflow):
        stages = [
            {"id": "weld", "name": "Welding", "order": 0, "allowed_next_stage_ids": []},
        ]
        with pytest.raises(ValidationError) as exc:
            workflow_service.update(workflow.id, stages=stages, updated_by="admin")
        assert exc.value.details["stranded_items"] == [{"item_code": item.item_code, "stage_id": "cut"}]
        assert workflow_service.get_by_id(workflow.id).stage_by_key("cut") is not None

    def test_archive_via_update(self, workflow):
        updated = workflow_service.update(workflow.id, is_active=False, updated_by="admin")
        assert updated.lifecycle_state == "archived"


# ═════════════════════════════════════════════════════════════════════════════
# LIFECYCLE / DELETE
# ═════════════════════════════════════════════════════════════════════════════

class TestLifecycle:
    def test_toggle(self, workflow):
        assert workflow_service.toggle_active(workflow.id).lifecycle_state == "archived"
        assert workflow_service.get_active() == []
        assert workflow_service.toggle_active(workflow.id).lifecycle_state == "active"

    def test_delete_blocked_by_active_item(self, item, workflow):
        with pytest.raises(ReferentialIntegrityError) as exc:
            workflow_service.remove(workflow.id, removed_by="admin")
        assert exc.value.blocking_ids == [item.item_code]
        assert workflow_service.get_by_id(workflow.id).is_active

    def test_delete_blocked_by_paused_item(self, item, workflow):
        stage_transition.pause_item(item.id, "op-1")
        with pytest.raises(ReferentialIntegrityError):
            workflow_service.remove(workflow.id, removed_by="admin")

    def test_delete_unused(self, workflow):
        result = workflow_service.remove(workflow.id, removed_by="admin")
        assert result["lifecycle_state"] == "deleted"
        with pytest.raises(NotFoundError):
            workflow_service.get_by_id(workflow.id)
        assert workflow_service.get_all() == []

    def test_delete_after_items_complete(self, item, workflow):
        stage_transition.advance_item(
            item.id, "op-1", completed_actions=[{"id": "weigh", "data": {"value": 11}}],
        )
        stage_transition.advance_item(item.id, "op-1")
        stage_transition.advance_item(item.id, "op-1")
        assert workflow_service.remove(workflow.id)["lifecycle_state"] == "deleted"

    def test_usage_details(self, item, workflow):
        usage = workflow_service.get_usage_details(workflow.id)
        assert usage["active_items"] == [item.item_code]
        assert usage["can_delete"] is False

    def test_stats(self, item, workflow):
        stats = workflow_service.get_stats(workflow.id)
        assert stats["total_items"] == 1
        assert stats["stages"][0] == {"stage_id": "cut", "name": "Cutting", "order": 0, "item_count": 1}
        assert stats["avg_cycle_hours"] is None
