"""
Floortrack — production item models.

Models:
    - Item: a unit of production instantiated against a workflow
    - ItemHistory: append-only stage log of an item
    - CompletedItem: terminal record written once when an item completes

``Item.version`` is the optimistic-concurrency token. SQLAlchemy appends
``WHERE version = :old`` to every UPDATE of an item row and raises
``StaleDataError`` when another writer got there first; the engines
translate that into ``ConcurrentModificationError``.
"""

from datetime import datetime, timezone

from floortrack.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ITEM_STATUSES = {"active", "paused", "completed", "error"}

# Statuses that pin an item to its workflow (block workflow removal).
IN_PROGRESS_STATUSES = ("active", "paused")

QR_PREFIX = "item:"


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


def item_qr_code(item_code: str) -> str:
    return f"{QR_PREFIX}{item_code}"


class Item(db.Model):
    """A tracked unit of production sitting in one stage and, optionally, one location."""

    __tablename__ = "items"
    __table_args__ = (
        db.Index("idx_items_workflow_status", "workflow_id", "status"),
        db.Index("idx_items_stage", "current_stage_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    item_code = db.Column(db.String(100), nullable=False, unique=True, index=True)
    qr_code = db.Column(db.String(120), nullable=False, unique=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("workflows.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    current_stage_id = db.Column(db.String(64), nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default="active",
        comment="active | paused | completed | error",
    )
    current_location_id = db.Column(
        db.Integer, db.ForeignKey("locations.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    assigned_to = db.Column(db.String(150), nullable=True)
    details = db.Column("metadata", db.JSON, nullable=False, default=dict)

    started_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    final_stage_name = db.Column(db.String(200), nullable=True)

    # Quality flags
    is_defective = db.Column(db.Boolean, nullable=False, default=False)
    flag_notes = db.Column(db.Text, nullable=True)
    flagged_by = db.Column(db.String(150), nullable=True)
    flagged_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.String(150), nullable=False, default="system")
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    version = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    workflow = db.relationship("Workflow")
    current_location = db.relationship("Location", foreign_keys=[current_location_id])
    history = db.relationship(
        "ItemHistory",
        backref="item",
        cascade="all, delete-orphan",
        order_by="ItemHistory.id",
    )

    @property
    def is_in_progress(self) -> bool:
        return self.status in IN_PROGRESS_STATUSES

    @property
    def last_history_at(self):
        """Time of the latest history entry (falls back to ``started_at``)."""
        if self.history:
            return self.history[-1].at
        return self.started_at

    @property
    def stage_entered_at(self):
        """Time the item entered its current stage; pause/resume do not reset it."""
        for entry in reversed(self.history):
            if entry.action == "advanced":
                return entry.at
        return self.started_at

    def to_dict(self, include_history=False):
        data = {
            "id": self.id,
            "item_code": self.item_code,
            "qr_code": self.qr_code,
            "workflow_id": self.workflow_id,
            "current_stage_id": self.current_stage_id,
            "status": self.status,
            "current_location_id": self.current_location_id,
            "assigned_to": self.assigned_to,
            "metadata": dict(self.details or {}),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "final_stage_name": self.final_stage_name,
            "is_defective": self.is_defective,
            "flag_notes": self.flag_notes,
            "flagged_by": self.flagged_by,
            "flagged_at": _iso(self.flagged_at),
            "created_by": self.created_by,
            "updated_at": _iso(self.updated_at),
            "version": self.version,
        }
        if include_history:
            data["history"] = [h.to_dict() for h in self.history]
        return data

    def __repr__(self):
        return f"<Item {self.item_code} @ {self.current_stage_id} ({self.status})>"


class ItemHistory(db.Model):
    """One stage-log entry. Rows are only ever inserted."""

    __tablename__ = "item_history"

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(
        db.Integer, db.ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    stage_id = db.Column(db.String(64), nullable=False)
    stage_name = db.Column(db.String(200), nullable=True)
    action = db.Column(db.String(20), nullable=False, comment="advanced | completed | paused | resumed")
    actor = db.Column(db.String(150), nullable=False)
    at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    notes = db.Column(db.Text, nullable=True)
    completed_actions = db.Column(db.JSON, nullable=False, default=list)

    def to_dict(self):
        return {
            "id": self.id,
            "item_id": self.item_id,
            "stage_id": self.stage_id,
            "stage_name": self.stage_name,
            "action": self.action,
            "actor": self.actor,
            "at": _iso(self.at),
            "notes": self.notes,
            "completed_actions": list(self.completed_actions or []),
        }

    def __repr__(self):
        return f"<ItemHistory item={self.item_id} {self.action} → {self.stage_id}>"


class CompletedItem(db.Model):
    """
    Terminal record of a finished item.

    Written once by the stage-transition engine. Only ``annotations`` may
    change afterwards.
    """

    __tablename__ = "completed_items"

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(
        db.Integer, db.ForeignKey("items.id", ondelete="SET NULL"), nullable=True, unique=True,
    )
    item_code = db.Column(db.String(100), nullable=False, index=True)
    workflow_id = db.Column(db.Integer, db.ForeignKey("workflows.id", ondelete="SET NULL"), nullable=True, index=True)
    final_stage_id = db.Column(db.String(64), nullable=False)
    final_stage_name = db.Column(db.String(200), nullable=True)
    final_location_id = db.Column(
        db.Integer, db.ForeignKey("locations.id", ondelete="SET NULL"), nullable=True,
    )
    started_at = db.Column(db.DateTime(timezone=True), nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    completed_by = db.Column(db.String(150), nullable=False)
    completion_notes = db.Column(db.Text, nullable=True)
    is_defective = db.Column(db.Boolean, nullable=False, default=False)
    annotations = db.Column(db.JSON, nullable=False, default=list)

    def to_dict(self):
        return {
            "id": self.id,
            "item_id": self.item_id,
            "item_code": self.item_code,
            "workflow_id": self.workflow_id,
            "final_stage_id": self.final_stage_id,
            "final_stage_name": self.final_stage_name,
            "final_location_id": self.final_location_id,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "completed_by": self.completed_by,
            "completion_notes": self.completion_notes,
            "is_defective": self.is_defective,
            "annotations": list(self.annotations or []),
        }

    def __repr__(self):
        return f"<CompletedItem {self.item_code} @ {self.final_stage_id}>"
