"""
Floortrack — workflow definition models.

Models:
    - Workflow: a named, ordered graph of production stages
    - WorkflowStage: one step; lists the stage keys it may advance to
    - StageAction: a typed unit of work attached to a stage

Architecture chain: Workflow → WorkflowStage → StageAction
"""

from datetime import datetime, timezone

from floortrack.models import db


# ── Constants ────────────────────────────────────────────────────────────────

LIFECYCLE_STATES = {"active", "archived", "deleted"}

ACTION_TYPES = {"scan", "photo", "note", "measurement", "inspection", "approval"}


def _utcnow():
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
#  WORKFLOW
# ═══════════════════════════════════════════════════════════════════════════

class Workflow(db.Model):
    """
    A production workflow.

    ``lifecycle_state`` replaces separate is-active / hard-delete flags:
    active workflows accept new items, archived ones keep their items
    running but accept no new ones, deleted ones no longer resolve.
    """

    __tablename__ = "workflows"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    lifecycle_state = db.Column(db.String(20), nullable=False, default="active", index=True)
    created_by = db.Column(db.String(150), nullable=False, default="system")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    stages = db.relationship(
        "WorkflowStage",
        backref="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowStage.order",
    )

    @property
    def is_active(self) -> bool:
        return self.lifecycle_state == "active"

    @property
    def is_deleted(self) -> bool:
        return self.lifecycle_state == "deleted"

    def stage_by_key(self, stage_key):
        for stage in self.stages:
            if stage.stage_key == stage_key:
                return stage
        return None

    def first_stage(self):
        """Return the stage with the lowest ``order`` (entry point for new items)."""
        if not self.stages:
            return None
        return min(self.stages, key=lambda s: s.order)

    def to_dict(self, include_stages=True):
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "lifecycle_state": self.lifecycle_state,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_stages:
            data["stages"] = [s.to_dict() for s in self.stages]
        return data

    def __repr__(self):
        return f"<Workflow {self.id}: {self.name[:40]}>"


# ═══════════════════════════════════════════════════════════════════════════
#  STAGE
# ═══════════════════════════════════════════════════════════════════════════

class WorkflowStage(db.Model):
    """
    One stage of a workflow.

    ``stage_key`` is the author-supplied stage id; items reference stages
    by this key. An empty ``allowed_next_stage_ids`` list marks a terminal
    stage.
    """

    __tablename__ = "workflow_stages"
    __table_args__ = (
        db.UniqueConstraint("workflow_id", "stage_key", name="uq_workflow_stage_key"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    stage_key = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    order = db.Column(db.Integer, nullable=False, default=0)
    estimated_duration = db.Column(db.Integer, nullable=True, comment="minutes")
    allowed_next_stage_ids = db.Column(db.JSON, nullable=False, default=list)
    assigned_location_ids = db.Column(db.JSON, nullable=False, default=list)

    actions = db.relationship(
        "StageAction",
        backref="stage",
        cascade="all, delete-orphan",
        order_by="StageAction.position",
    )

    @property
    def is_terminal(self) -> bool:
        return not self.allowed_next_stage_ids

    def required_actions(self):
        return [a for a in self.actions if a.required]

    def to_dict(self):
        return {
            "id": self.stage_key,
            "name": self.name,
            "description": self.description,
            "order": self.order,
            "estimated_duration": self.estimated_duration,
            "allowed_next_stage_ids": list(self.allowed_next_stage_ids or []),
            "assigned_location_ids": list(self.assigned_location_ids or []),
            "actions": [a.to_dict() for a in self.actions],
            "is_terminal": self.is_terminal,
        }

    def __repr__(self):
        return f"<WorkflowStage {self.stage_key}: {self.name[:40]}>"


# ═══════════════════════════════════════════════════════════════════════════
#  ACTION
# ═══════════════════════════════════════════════════════════════════════════

class StageAction(db.Model):
    """A typed unit of work on a stage. ``config`` shape depends on ``type``."""

    __tablename__ = "stage_actions"

    id = db.Column(db.Integer, primary_key=True)
    stage_id = db.Column(
        db.Integer, db.ForeignKey("workflow_stages.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    action_key = db.Column(db.String(64), nullable=False)
    type = db.Column(db.String(20), nullable=False, comment="scan | photo | note | measurement | inspection | approval")
    label = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    required = db.Column(db.Boolean, nullable=False, default=False)
    config = db.Column(db.JSON, nullable=False, default=dict)
    position = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {
            "id": self.action_key,
            "type": self.type,
            "label": self.label,
            "description": self.description,
            "required": self.required,
            "config": dict(self.config or {}),
        }

    def __repr__(self):
        return f"<StageAction {self.action_key} ({self.type})>"
