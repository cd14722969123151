"""
ScanLog Model. Append-only ledger of wristband scan attempts, successful or not.
"""

import uuid
from datetime import datetime, timezone
from src.extensions import db
from src.timeutil import isoformat


class ScanLog(db.Model):
    __tablename__ = "wristband_scan_logs"

    scan_log_id = db.Column(db.UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    wristband_id = db.Column(
        db.UUID(as_uuid=True),
        db.ForeignKey("wristbands.wristband_id"),
        nullable=False,
        index=True
    )
    scanned_by = db.Column(db.String(255), nullable=False)
    scan_location = db.Column(db.String(255), nullable=True)
    scan_device = db.Column(db.String(255), nullable=True)
    scan_result = db.Column(db.String(40), nullable=False)  # SUCCESS or an ErrorCode value
    notes = db.Column(db.Text, nullable=True)
    scanned_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )

    @property
    def succeeded(self):
        return self.scan_result == "SUCCESS"

    def to_dict(self):
        return {
            "scan_log_id":   str(self.scan_log_id),
            "wristband_id":  str(self.wristband_id),
            "scanned_by":    self.scanned_by,
            "scan_location": self.scan_location,
            "scan_device":   self.scan_device,
            "scan_result":   self.scan_result,
            "notes":         self.notes,
            "scanned_at":    isoformat(self.scanned_at),
        }
