"""
Floortrack — activity log model.

Models:
    - ActivityLog: immutable, append-only trail of administrative actions
      (workflow authoring, item assignment and flagging, stage bindings).
"""

from datetime import datetime, timezone

from floortrack.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ACTIVITY_ENTITY_TYPES = {"workflow", "item", "location"}

ACTIVITY_ACTIONS = {
    "workflow.create",
    "workflow.update",
    "workflow.remove",
    "workflow.toggle_active",
    "item.create",
    "item.assign",
    "item.flag",
    "item.unflag",
    "item.annotate",
    "location.create",
    "location.update",
    "location.remove",
    "location.assign_stage",
    "location.unassign_stage",
}


class ActivityLog(db.Model):
    """One row per administrative action. Never updated."""

    __tablename__ = "activity_log"
    __table_args__ = (
        db.Index("idx_activity_entity", "entity_type", "entity_id"),
        db.Index("idx_activity_actor", "actor"),
        db.Index("idx_activity_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(30), nullable=False, comment="workflow | item | location")
    entity_id = db.Column(db.String(100), nullable=False)
    action = db.Column(db.String(60), nullable=False)
    actor = db.Column(db.String(150), nullable=False, default="system")
    description = db.Column(db.Text, nullable=True)
    details = db.Column(db.JSON, nullable=False, default=dict)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "description": self.description,
            "details": dict(self.details or {}),
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<ActivityLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_activity(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor: str = "system",
    description: str | None = None,
    details: dict | None = None,
) -> ActivityLog:
    """
    Append a single activity row.  Uses ``flush`` so callers keep
    transaction control.
    """
    log = ActivityLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor or "system",
        description=description,
        details=details or {},
    )
    db.session.add(log)
    db.session.flush()
    return log
