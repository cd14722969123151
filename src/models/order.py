"""
Order Model
Payment status:  PENDING | SUCCESS | FAILED
Approval status: PENDING | APPROVED | REJECTED

Payment and approval are two stages of one state machine fired by different
roles: the payment verifier (gateway webhook or organizer for manual payments)
moves `status`, the inventory approver moves `approval_status`.
"""

import uuid
from datetime import datetime, timezone
from src.extensions import db
from src.timeutil import isoformat

ORDER_STATUSES = ("PENDING", "SUCCESS", "FAILED")
APPROVAL_STATUSES = ("PENDING", "APPROVED", "REJECTED")
PAYMENT_METHODS = ("GATEWAY", "MANUAL")


class Order(db.Model):
    __tablename__ = "orders"

    order_id = db.Column(
        db.UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    buyer_id = db.Column(db.UUID(as_uuid=True), nullable=False, index=True)
    buyer_email = db.Column(db.String(255), nullable=True)
    event_id = db.Column(db.UUID(as_uuid=True), db.ForeignKey("events.event_id"), nullable=False)
    status = db.Column(
        db.Enum(*ORDER_STATUSES, name="order_status"),
        nullable=False,
        default="PENDING"
    )
    approval_status = db.Column(
        db.Enum(*APPROVAL_STATUSES, name="order_approval_status"),
        nullable=False,
        default="PENDING"
    )
    payment_method = db.Column(
        db.Enum(*PAYMENT_METHODS, name="payment_method"),
        nullable=False,
        default="GATEWAY"
    )
    payment_reference = db.Column(db.String(255), nullable=True)
    total_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.UUID(as_uuid=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    event = db.relationship("Event", lazy=True)
    tickets = db.relationship("Ticket", backref="order", lazy=True, order_by="Ticket.created_at")

    @property
    def quantity(self):
        return len(self.tickets)

    def to_dict(self, include_tickets=False):
        data = {
            "order_id":          str(self.order_id),
            "buyer_id":          str(self.buyer_id),
            "buyer_email":       self.buyer_email,
            "event_id":          str(self.event_id),
            "status":            self.status,
            "approval_status":   self.approval_status,
            "payment_method":    self.payment_method,
            "payment_reference": self.payment_reference,
            "total_amount":      float(self.total_amount or 0),
            "quantity":          self.quantity,
            "created_at":        isoformat(self.created_at),
            "paid_at":           isoformat(self.paid_at),
            "approved_at":       isoformat(self.approved_at),
            "rejected_at":       isoformat(self.rejected_at),
            "rejection_reason":  self.rejection_reason,
        }
        if include_tickets:
            data["tickets"] = [t.to_dict() for t in self.tickets]
        return data
