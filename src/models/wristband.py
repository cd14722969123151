"""
Wristband Model (reusable credential, independent of orders)
Status: PENDING | ACTIVE | EXPIRED | REVOKED
"""

import uuid
from datetime import datetime, timezone
from src.extensions import db
from src.timeutil import isoformat

WRISTBAND_STATUSES = ("PENDING", "ACTIVE", "EXPIRED", "REVOKED")


class Wristband(db.Model):
    __tablename__ = "wristbands"

    wristband_id = db.Column(db.UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = db.Column(db.UUID(as_uuid=True), db.ForeignKey("events.event_id"), nullable=False, index=True)
    organizer_id = db.Column(db.UUID(as_uuid=True), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.Enum(*WRISTBAND_STATUSES, name="wristband_status"),
        nullable=False,
        default="ACTIVE"
    )
    is_reusable = db.Column(db.Boolean, nullable=False, default=True)
    scan_count = db.Column(db.Integer, nullable=False, default=0)
    max_scans = db.Column(db.Integer, nullable=True)  # NULL = unlimited
    valid_from = db.Column(db.DateTime(timezone=True), nullable=True)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=True)
    credential = db.Column(db.Text, nullable=True)
    credential_checksum = db.Column(db.String(16), nullable=True)
    credential_issued_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by = db.Column(db.UUID(as_uuid=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=True,
        onupdate=lambda: datetime.now(timezone.utc)
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deletion_reason = db.Column(db.Text, nullable=True)

    event = db.relationship("Event", lazy=True)
    scan_logs = db.relationship("ScanLog", backref="wristband", lazy="dynamic")

    @property
    def scan_limit(self):
        """Single-use wristbands behave as max_scans=1."""
        if not self.is_reusable:
            return 1 if self.max_scans is None else min(self.max_scans, 1)
        return self.max_scans

    def to_dict(self):
        return {
            "wristband_id":  str(self.wristband_id),
            "event_id":      str(self.event_id),
            "organizer_id":  str(self.organizer_id),
            "name":          self.name,
            "description":   self.description,
            "status":        self.status,
            "is_reusable":   self.is_reusable,
            "scan_count":    self.scan_count,
            "max_scans":     self.max_scans,
            "valid_from":    isoformat(self.valid_from),
            "valid_until":   isoformat(self.valid_until),
            "created_at":    isoformat(self.created_at),
            "deleted_at":    isoformat(self.deleted_at),
        }
