"""
Order Service: the order half of the ticket lifecycle.

Two roles drive one state machine:
    payment verifier   PENDING -> SUCCESS | FAILED      (confirm_payment)
    inventory approver PENDING -> APPROVED | REJECTED   (approve_order / reject_order)

approve_order is the only code path that changes TicketType.sold. Every
transition re-checks the order's current status inside the same transaction
with a conditional UPDATE, so concurrent or retried calls can fire it at most
once.
"""

import logging
from collections import Counter
from datetime import timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import update

from src.errors import DomainError, ErrorCode
from src.extensions import db
from src.models import Event, Order, Ticket, TicketType
from src.models.order import PAYMENT_METHODS
from src.services import notification_client, ticket_service
from src.services.actors import may_fire, owns_event
from src.services.store import refuse, transactional
from src.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)

VALID_TRANSITIONS = {
    "PENDING": {"SUCCESS", "FAILED"},
    "SUCCESS": set(),
    "FAILED": set(),
}


def get_order_by_id(order_id):
    return db.session.get(Order, order_id)


def get_orders_by_buyer(buyer_id):
    return Order.query.filter_by(buyer_id=buyer_id).order_by(Order.created_at.desc()).all()


def _lock_order(order_id):
    return db.session.get(Order, order_id, with_for_update=True, populate_existing=True)


def _claim(order_id, expected, values):
    """
    Conditional UPDATE: applies `values` only if the row still matches
    `expected`. Returns True when this caller won the transition.
    """
    criteria = [getattr(Order, column) == value for column, value in expected.items()]
    stmt = (
        update(Order)
        .where(Order.order_id == order_id, *criteria)
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    return db.session.execute(stmt).rowcount == 1


def _authorize(order, actor, transition):
    if not may_fire(actor, transition, order.payment_method):
        return DomainError(
            ErrorCode.FORBIDDEN,
            f"Role {actor.role} cannot {transition.replace('_', ' ')} a {order.payment_method} order",
        )
    if not owns_event(actor, order.event):
        return DomainError(ErrorCode.FORBIDDEN, "Order belongs to another organizer's event")
    return None


# --- CreateOrderTickets ---------------------------------------------------

def create_order_tickets(order, items):
    """
    One PENDING ticket per purchased unit. `items` is a list of
    (TicketType, quantity). Never touches TicketType.sold.
    """
    tickets = []
    for ticket_type, quantity in items:
        for _ in range(quantity):
            ticket = Ticket(
                order_id=order.order_id,
                ticket_type_id=ticket_type.ticket_type_id,
                owner_id=order.buyer_id,
                status="PENDING",
            )
            db.session.add(ticket)
            tickets.append(ticket)
    return tickets


def _resolve_items(event, raw_items):
    if not raw_items:
        return None, DomainError(ErrorCode.INVALID_INPUT, "Order needs at least one item")

    quantities = Counter()
    for item in raw_items:
        type_id = item.get("ticket_type_id")
        quantity = item.get("quantity")
        if not type_id or not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            return None, DomainError(
                ErrorCode.INVALID_INPUT,
                "Each item needs a ticket_type_id and a positive integer quantity",
            )
        quantities[str(type_id)] += quantity

    resolved = []
    for ticket_type in TicketType.query.filter_by(event_id=event.event_id).all():
        wanted = quantities.pop(str(ticket_type.ticket_type_id), 0)
        if not wanted:
            continue
        if wanted > ticket_type.remaining:
            return None, DomainError(
                ErrorCode.INSUFFICIENT_INVENTORY,
                details={
                    "ticket_type_id": str(ticket_type.ticket_type_id),
                    "requested": wanted,
                    "remaining": ticket_type.remaining,
                },
            )
        resolved.append((ticket_type, wanted))

    if quantities:
        return None, DomainError(
            ErrorCode.NOT_FOUND,
            "Ticket type not found for this event",
            details={"ticket_type_ids": sorted(quantities)},
        )
    return resolved, None


@transactional
def create_order(buyer_id, event_id, items, payment_method="GATEWAY", buyer_email=None,
                 payment_reference=None):
    """
    Called at checkout. Capacity is only soft-checked here; the hard check
    happens on approval when `sold` is committed.
    """
    if payment_method not in PAYMENT_METHODS:
        return refuse(DomainError(ErrorCode.INVALID_INPUT, f"Unknown payment method: {payment_method}"))

    event = db.session.get(Event, event_id)
    if not event:
        return refuse(DomainError(ErrorCode.NOT_FOUND, "Event not found"))

    resolved, error = _resolve_items(event, items)
    if error:
        return refuse(error)

    order = Order(
        buyer_id=buyer_id,
        buyer_email=buyer_email,
        event_id=event.event_id,
        payment_method=payment_method,
        payment_reference=payment_reference,
        total_amount=sum((Decimal(t.price) * q for t, q in resolved), Decimal("0")),
        status="PENDING",
        approval_status="PENDING",
    )
    db.session.add(order)
    db.session.flush()

    tickets = create_order_tickets(order, resolved)
    logger.info("Order %s created with %d pending tickets", order.order_id, len(tickets))
    return order, None


# --- ConfirmPayment -------------------------------------------------------

@transactional
def confirm_payment(order_id, outcome, actor, payment_reference=None):
    """
    Payment verifier's transition. SUCCESS only records that money arrived;
    tickets stay PENDING and `sold` is untouched until approval. FAILED
    cancels the pending tickets.
    """
    if outcome not in VALID_TRANSITIONS["PENDING"]:
        return refuse(DomainError(ErrorCode.INVALID_INPUT, "Outcome must be SUCCESS or FAILED"))

    order = _lock_order(order_id)
    if not order:
        return refuse(DomainError(ErrorCode.NOT_FOUND, "Order not found"))

    error = _authorize(order, actor, "confirm_payment")
    if error:
        return refuse(error)

    if outcome not in VALID_TRANSITIONS.get(order.status, set()) or order.approval_status == "REJECTED":
        return refuse(DomainError(
            ErrorCode.ORDER_NOT_PENDING,
            f"Cannot transition payment from {order.status} to {outcome}",
        ))

    values = {"status": outcome}
    if outcome == "SUCCESS":
        values["paid_at"] = utcnow()
    if payment_reference:
        values["payment_reference"] = payment_reference

    if not _claim(order_id, {"status": "PENDING"}, values):
        return refuse(DomainError(ErrorCode.ORDER_NOT_PENDING))

    if outcome == "FAILED":
        for ticket in order.tickets:
            if ticket.status == "PENDING":
                ticket.status = "CANCELLED"

    logger.info("Payment for order %s marked %s by %s", order_id, outcome, actor.role)
    return order, None


# --- ApproveOrder ---------------------------------------------------------

def _approval_values(order, actor, now):
    """Returns (expected, values, error) for the approval claim."""
    if order.approval_status != "PENDING" or order.status == "FAILED":
        return None, None, DomainError(ErrorCode.ORDER_NOT_PENDING)

    expected = {"approval_status": "PENDING", "status": order.status}
    values = {
        "approval_status": "APPROVED",
        "approved_at": now,
        "approved_by": actor.actor_id,
    }

    if order.status == "PENDING":
        requires_payment = current_app.config.get("APPROVAL_REQUIRES_PAYMENT", True)
        if requires_payment or order.payment_method != "MANUAL":
            return None, None, DomainError(
                ErrorCode.ORDER_NOT_PENDING,
                "Payment has not been verified for this order",
            )
        # Approving a manual payment also verifies it
        values["status"] = "SUCCESS"
        values["paid_at"] = now

    return expected, values, None


@transactional
def _approve(order_id, actor):
    order = _lock_order(order_id)
    if not order:
        return refuse(DomainError(ErrorCode.NOT_FOUND, "Order not found"))

    error = _authorize(order, actor, "approve")
    if error:
        return refuse(error)

    now = utcnow()
    expected, values, error = _approval_values(order, actor, now)
    if error:
        return refuse(error)

    if not _claim(order_id, expected, values):
        return refuse(DomainError(ErrorCode.ORDER_NOT_PENDING))

    pending = [t for t in order.tickets if t.status == "PENDING"]
    counts = Counter(t.ticket_type_id for t in pending)

    # Lock ticket types in a stable order to prevent deadlocks between approvals
    for type_id in sorted(counts, key=str):
        ticket_type = db.session.get(
            TicketType, type_id, with_for_update=True, populate_existing=True
        )
        if ticket_type.sold + counts[type_id] > ticket_type.quantity:
            return refuse(DomainError(
                ErrorCode.INSUFFICIENT_INVENTORY,
                details={
                    "ticket_type_id": str(type_id),
                    "requested": counts[type_id],
                    "remaining": ticket_type.remaining,
                },
            ))
        ticket_type.sold = TicketType.sold + counts[type_id]

    for ticket in pending:
        ticket.status = "ACTIVE"
        ticket_service.issue_ticket_credential(ticket, order.event, issued_at=now)

    logger.info(
        "Order %s approved by %s: %d tickets activated",
        order_id, actor.actor_id or actor.role, len(pending),
    )
    return (order, pending), None


def approve_order(order_id, actor):
    """
    Inventory approver's transition and the only writer of TicketType.sold.
    Activates the order's PENDING tickets, commits `sold` by their count and
    issues one credential per ticket. A second call returns ORDER_NOT_PENDING
    and changes nothing. The QR image is rendered on demand from the stored
    token (GET /tickets/<id>/qr), never at approval.
    """
    result, error = _approve(order_id, actor)
    if error:
        logger.warning("Approval of order %s refused: %s", order_id, error.code.value)
        return None, error

    order, activated = result
    notification_client.notify_tickets_issued(order, activated)
    return order, None


# --- RejectOrder ----------------------------------------------------------

@transactional
def _reject(order_id, actor, reason):
    order = _lock_order(order_id)
    if not order:
        return refuse(DomainError(ErrorCode.NOT_FOUND, "Order not found"))

    error = _authorize(order, actor, "reject")
    if error:
        return refuse(error)

    if order.approval_status != "PENDING" or order.status == "FAILED":
        return refuse(DomainError(ErrorCode.ORDER_NOT_PENDING))

    claimed = _claim(
        order_id,
        {"approval_status": "PENDING", "status": order.status},
        {
            "approval_status": "REJECTED",
            "status": "FAILED",
            "rejected_at": utcnow(),
            "rejection_reason": reason,
        },
    )
    if not claimed:
        return refuse(DomainError(ErrorCode.ORDER_NOT_PENDING))

    for ticket in order.tickets:
        if ticket.status == "PENDING":
            ticket.status = "CANCELLED"

    logger.info("Order %s rejected by %s: %s", order_id, actor.actor_id or actor.role, reason)
    return order, None


def reject_order(order_id, actor, reason=None):
    """Cancels the order's tickets and fails the order. Never touches `sold`."""
    order, error = _reject(order_id, actor, reason)
    if error:
        logger.warning("Rejection of order %s refused: %s", order_id, error.code.value)
        return None, error

    notification_client.notify_order_rejected(order)
    return order, None


# --- Refund ---------------------------------------------------------------

@transactional
def refund_order(order_id, actor, reason=None):
    """
    PENDING/ACTIVE tickets -> REFUNDED. `sold` is monotonic and stays as is.
    """
    order = _lock_order(order_id)
    if not order:
        return refuse(DomainError(ErrorCode.NOT_FOUND, "Order not found"))

    error = _authorize(order, actor, "refund")
    if error:
        return refuse(error)

    refundable = [t for t in order.tickets if t.status in ticket_service.REFUNDABLE_STATUSES]
    if not refundable:
        return refuse(DomainError(ErrorCode.NOT_ACTIVE, "Order has no refundable tickets"))

    for ticket in refundable:
        ticket.status = "REFUNDED"

    logger.info("Order %s refunded (%d tickets): %s", order_id, len(refundable), reason)
    return order, None


# --- Sweeps ---------------------------------------------------------------

@transactional
def expire_stale_orders(now=None):
    """
    Orders that were never paid nor approved within ORDER_PENDING_TTL_HOURS
    are failed and their tickets cancelled. Returns the number expired.
    """
    now = as_utc(now or utcnow())
    cutoff = now - timedelta(hours=current_app.config.get("ORDER_PENDING_TTL_HOURS", 24))

    stale = (
        Order.query
        .filter(
            Order.status == "PENDING",
            Order.approval_status == "PENDING",
            Order.created_at < cutoff,
        )
        .all()
    )

    expired = 0
    for order in stale:
        claimed = _claim(
            order.order_id,
            {"status": "PENDING", "approval_status": "PENDING"},
            {"status": "FAILED", "rejection_reason": "Payment window expired"},
        )
        if not claimed:
            continue
        for ticket in order.tickets:
            if ticket.status == "PENDING":
                ticket.status = "CANCELLED"
        expired += 1

    if expired:
        logger.info("Expired %d stale orders", expired)
    return expired
