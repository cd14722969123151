"""
Event Model. Owned by one organizer; ticket types and wristbands hang off it.
"""

import uuid
from datetime import datetime, timezone
from src.extensions import db
from src.timeutil import isoformat


class Event(db.Model):
    __tablename__ = "events"

    event_id = db.Column(db.UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organizer_id = db.Column(db.UUID(as_uuid=True), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )

    ticket_types = db.relationship("TicketType", backref="event", lazy=True)

    def to_dict(self):
        return {
            "event_id": str(self.event_id),
            "organizer_id": str(self.organizer_id),
            "name": self.name,
            "start_date": isoformat(self.start_date),
            "end_date": isoformat(self.end_date),
        }
