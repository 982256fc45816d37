"""
Floortrack — QR scan log.

Every scan handled by ``floortrack.services.scan_service`` writes one row,
successful or not.
"""

from datetime import datetime, timezone

from floortrack.models import db

SCAN_TYPES = {"item_lookup", "location_lookup", "move", "error"}


class ScanLog(db.Model):
    __tablename__ = "scans"
    __table_args__ = (
        db.Index("idx_scans_user_ts", "user_id", "timestamp"),
        db.Index("idx_scans_item", "item_code"),
    )

    id = db.Column(db.Integer, primary_key=True)
    qr_data = db.Column(db.String(300), nullable=False)
    scan_type = db.Column(db.String(20), nullable=False, comment="item_lookup | location_lookup | move | error")
    success = db.Column(db.Boolean, nullable=False, default=True)
    error_message = db.Column(db.Text, nullable=True)
    user_id = db.Column(db.String(150), nullable=False)
    item_code = db.Column(db.String(100), nullable=True)
    location_id = db.Column(db.Integer, nullable=True)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "qr_data": self.qr_data,
            "scan_type": self.scan_type,
            "success": self.success,
            "error_message": self.error_message,
            "user_id": self.user_id,
            "item_code": self.item_code,
            "location_id": self.location_id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<ScanLog {self.id}: {self.scan_type} {'ok' if self.success else 'fail'}>"
