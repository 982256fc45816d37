"""
Floortrack — physical location models.

Models:
    - Location: a bin / shelf / rack / area / zone with optional capacity
    - LocationHistory: immutable, append-only record of every item move

``Location.current_occupancy`` is written only by the location-move
engine (``floortrack.services.location_move``) through conditional
UPDATE statements.
"""

from datetime import datetime, timezone

from floortrack.models import db


# ── Constants ────────────────────────────────────────────────────────────────

LOCATION_TYPES = {"bin", "shelf", "rack", "area", "zone"}


def _utcnow():
    return datetime.now(timezone.utc)


class Location(db.Model):
    """
    A physical storage point on the factory floor.

    ``capacity`` NULL means unlimited. ``assigned_stage_id`` binds the
    location to at most one stage key for routing guidance.
    """

    __tablename__ = "locations"
    __table_args__ = (
        db.CheckConstraint("current_occupancy >= 0", name="ck_locations_occupancy_non_negative"),
        db.CheckConstraint(
            "capacity IS NULL OR current_occupancy <= capacity",
            name="ck_locations_occupancy_within_capacity",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    type = db.Column(db.String(20), nullable=False, comment="bin | shelf | rack | area | zone")
    qr_code = db.Column(db.String(200), nullable=False, unique=True, index=True)
    capacity = db.Column(db.Integer, nullable=True)
    current_occupancy = db.Column(db.Integer, nullable=False, default=0)
    assigned_stage_id = db.Column(db.String(64), nullable=True, index=True)
    parent_location_id = db.Column(
        db.Integer, db.ForeignKey("locations.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    lifecycle_state = db.Column(db.String(20), nullable=False, default="active", index=True)
    created_by = db.Column(db.String(150), nullable=False, default="system")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    parent = db.relationship("Location", remote_side=[id], backref="children")

    @property
    def is_active(self) -> bool:
        return self.lifecycle_state == "active"

    @property
    def has_capacity_limit(self) -> bool:
        return self.capacity is not None

    def has_available_capacity(self) -> bool:
        if not self.has_capacity_limit:
            return True
        return (self.current_occupancy or 0) < self.capacity

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "qr_code": self.qr_code,
            "capacity": self.capacity,
            "current_occupancy": self.current_occupancy,
            "available": self.has_available_capacity(),
            "assigned_stage_id": self.assigned_stage_id,
            "parent_location_id": self.parent_location_id,
            "lifecycle_state": self.lifecycle_state,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Location {self.id}: {self.name[:40]} ({self.current_occupancy}/{self.capacity})>"


class LocationHistory(db.Model):
    """
    Audit trail of item moves between locations.

    One row per move. Never updated or deleted. Independent of the item's
    own stage history.
    """

    __tablename__ = "location_history"
    __table_args__ = (
        db.Index("idx_location_history_item", "item_code"),
        db.Index("idx_location_history_to", "to_location_id"),
        db.Index("idx_location_history_moved_by", "moved_by"),
        db.Index("idx_location_history_moved_at", "moved_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(
        db.Integer, db.ForeignKey("items.id", ondelete="SET NULL"), nullable=True,
    )
    item_code = db.Column(db.String(100), nullable=False)
    from_location_id = db.Column(
        db.Integer, db.ForeignKey("locations.id", ondelete="SET NULL"), nullable=True,
    )
    to_location_id = db.Column(
        db.Integer, db.ForeignKey("locations.id", ondelete="SET NULL"), nullable=True,
    )
    stage_id = db.Column(db.String(64), nullable=True)
    moved_by = db.Column(db.String(150), nullable=False)
    moved_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    notes = db.Column(db.Text, nullable=True)
    details = db.Column("metadata", db.JSON, nullable=False, default=dict)

    def to_dict(self):
        return {
            "id": self.id,
            "item_id": self.item_id,
            "item_code": self.item_code,
            "from_location_id": self.from_location_id,
            "to_location_id": self.to_location_id,
            "stage_id": self.stage_id,
            "moved_by": self.moved_by,
            "moved_at": self.moved_at.isoformat() if self.moved_at else None,
            "notes": self.notes,
            "metadata": dict(self.details or {}),
        }

    def __repr__(self):
        return f"<LocationHistory {self.item_code}: {self.from_location_id} → {self.to_location_id}>"
