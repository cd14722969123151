"""
Ticket Model
Status: PENDING | ACTIVE | USED | CANCELLED | EXPIRED | REFUNDED

PENDING -> ACTIVE -> USED
PENDING -> CANCELLED
ACTIVE  -> EXPIRED
PENDING/ACTIVE -> REFUNDED
"""

import uuid
from datetime import datetime, timezone
from src.extensions import db
from src.timeutil import isoformat

TICKET_STATUSES = ("PENDING", "ACTIVE", "USED", "CANCELLED", "EXPIRED", "REFUNDED")


class Ticket(db.Model):
    __tablename__ = "tickets"

    ticket_id = db.Column(db.UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = db.Column(db.UUID(as_uuid=True), db.ForeignKey("orders.order_id"), nullable=False, index=True)
    ticket_type_id = db.Column(
        db.UUID(as_uuid=True),
        db.ForeignKey("ticket_types.ticket_type_id"),
        nullable=False
    )
    owner_id = db.Column(db.UUID(as_uuid=True), nullable=False)
    status = db.Column(
        db.Enum(*TICKET_STATUSES, name="ticket_status"),
        nullable=False,
        default="PENDING"
    )
    checked_in = db.Column(db.Boolean, nullable=False, default=False)
    check_in_time = db.Column(db.DateTime(timezone=True), nullable=True)
    checked_in_by = db.Column(db.String(255), nullable=True)
    credential = db.Column(db.Text, nullable=True)  # encrypted payload, what the QR encodes
    credential_checksum = db.Column(db.String(16), nullable=True)
    credential_issued_at = db.Column(db.DateTime(timezone=True), nullable=True)
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

    ticket_type = db.relationship("TicketType", lazy=True)

    def to_dict(self):
        return {
            "ticket_id":            str(self.ticket_id),
            "order_id":             str(self.order_id),
            "ticket_type_id":       str(self.ticket_type_id),
            "owner_id":             str(self.owner_id),
            "status":               self.status,
            "checked_in":           self.checked_in,
            "check_in_time":        isoformat(self.check_in_time),
            "checked_in_by":        self.checked_in_by,
            "has_credential":       self.credential is not None,
            "credential_issued_at": isoformat(self.credential_issued_at),
        }
