"""
TicketType Model.
Invariant: 0 <= sold <= quantity. `sold` is only ever changed by order approval.
"""

import uuid
from src.extensions import db


class TicketType(db.Model):
    __tablename__ = "ticket_types"
    __table_args__ = (
        db.CheckConstraint("sold >= 0", name="ck_ticket_types_sold_non_negative"),
        db.CheckConstraint("sold <= quantity", name="ck_ticket_types_sold_within_quantity"),
    )

    ticket_type_id = db.Column(db.UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = db.Column(db.UUID(as_uuid=True), db.ForeignKey("events.event_id"), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    sold = db.Column(db.Integer, nullable=False, default=0)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")

    @property
    def remaining(self):
        return self.quantity - (self.sold or 0)

    def to_dict(self):
        return {
            "ticket_type_id": str(self.ticket_type_id),
            "event_id": str(self.event_id),
            "name": self.name,
            "quantity": self.quantity,
            "sold": self.sold,
            "remaining": self.remaining,
            "price": float(self.price),
            "currency": self.currency,
        }
