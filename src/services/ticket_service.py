"""
Ticket Service: the ticket half of the lifecycle.
Credential issuance, check-in, read-only validation and the expiry sweep.
"""

import logging
import uuid
from datetime import timedelta

from flask import current_app
from sqlalchemy import update

from src.errors import DomainError, ErrorCode
from src.extensions import db
from src.models import Event, Order, Ticket
from src.services import credential_codec
from src.services.actors import owns_event
from src.services.store import refuse, transactional
from src.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)

REFUNDABLE_STATUSES = {"PENDING", "ACTIVE"}


def get_ticket_by_id(ticket_id):
    return db.session.get(Ticket, ticket_id)


def _lock_ticket(ticket_id):
    return db.session.get(Ticket, ticket_id, with_for_update=True, populate_existing=True)


def check_in_closes_at(event):
    return credential_codec.ticket_expiry(event.end_date)


def issue_ticket_credential(ticket, event, issued_at=None):
    """Generates a fresh credential; any previous one is superseded."""
    payload, token = credential_codec.issue(
        credential_codec.KIND_TICKET,
        {
            "credential_id": ticket.ticket_id,
            "event_id": event.event_id,
            "owner_id": ticket.owner_id,
            "issued_context_id": ticket.order_id,
            "type_id": ticket.ticket_type_id,
            "event_end": event.end_date,
        },
        issued_at=issued_at,
    )
    ticket.credential = token
    ticket.credential_checksum = payload.checksum
    ticket.credential_issued_at = payload.valid_anchor
    return payload


@transactional
def reissue_ticket_credential(ticket_id, actor):
    ticket = _lock_ticket(ticket_id)
    if not ticket:
        return refuse(DomainError(ErrorCode.NOT_FOUND, "Ticket not found"))

    event = ticket.order.event
    if not owns_event(actor, event):
        return refuse(DomainError(ErrorCode.FORBIDDEN, "Ticket belongs to another organizer's event"))

    if ticket.status != "ACTIVE":
        return refuse(DomainError(ErrorCode.NOT_ACTIVE, f"Ticket is {ticket.status.lower()}"))

    issue_ticket_credential(ticket, event)
    logger.info("Credential reissued for ticket %s", ticket_id)
    return ticket, None


def _state_error(ticket, now):
    if ticket.status == "USED" or ticket.checked_in:
        checked_at = as_utc(ticket.check_in_time)
        return DomainError(
            ErrorCode.ALREADY_USED,
            f"Ticket already checked in at {checked_at.isoformat()}" if checked_at else None,
            details={"check_in_time": checked_at.isoformat() if checked_at else None},
        )
    if ticket.status == "EXPIRED":
        return DomainError(ErrorCode.EXPIRED, "Ticket has expired")
    if ticket.status != "ACTIVE":
        return DomainError(ErrorCode.NOT_ACTIVE, f"Ticket is {ticket.status.lower()}")
    if now > check_in_closes_at(ticket.order.event):
        return DomainError(ErrorCode.EXPIRED, "Event check-in window has closed")
    return None


def validate_ticket(ticket_id, now=None):
    """Read-only eligibility check; never writes."""
    ticket = get_ticket_by_id(ticket_id)
    if not ticket:
        return None, DomainError(ErrorCode.NOT_FOUND, "Ticket not found")

    error = _state_error(ticket, as_utc(now or utcnow()))
    if error:
        return None, error
    return ticket, None


@transactional
def check_in_ticket(ticket_id, checked_in_by=None, now=None):
    """
    ACTIVE -> USED exactly once. The row is locked and the transition is a
    conditional UPDATE, so two simultaneous scans cannot both succeed.
    """
    now = as_utc(now or utcnow())
    ticket = _lock_ticket(ticket_id)
    if not ticket:
        return refuse(DomainError(ErrorCode.NOT_FOUND, "Ticket not found"))

    error = _state_error(ticket, now)
    if error:
        if error.code == ErrorCode.EXPIRED and ticket.status == "ACTIVE":
            # window closed before the sweep got to it; persist the expiry
            ticket.status = "EXPIRED"
            return None, error
        logger.warning("Check-in refused for ticket %s: %s", ticket_id, error.code.value)
        return refuse(error)

    stmt = (
        update(Ticket)
        .where(
            Ticket.ticket_id == ticket_id,
            Ticket.status == "ACTIVE",
            Ticket.checked_in.is_(False),
        )
        .values(status="USED", checked_in=True, check_in_time=now, checked_in_by=checked_in_by)
        .execution_options(synchronize_session="fetch")
    )
    if db.session.execute(stmt).rowcount != 1:
        return refuse(DomainError(ErrorCode.ALREADY_USED))

    logger.info("Ticket %s checked in by %s", ticket_id, checked_in_by or "unknown")
    return ticket, None


def match_payload(payload):
    """
    Find the ticket a decrypted payload refers to and make sure the payload is
    that ticket's current credential. Returns (ticket, error).
    """
    try:
        ticket_id = uuid.UUID(payload.credential_id)
    except ValueError:
        return None, DomainError(ErrorCode.MALFORMED_CREDENTIAL)

    ticket = get_ticket_by_id(ticket_id)
    if not ticket:
        return None, DomainError(ErrorCode.NOT_FOUND, "Ticket not found in system")

    stored = (
        str(ticket.order.event_id),
        str(ticket.owner_id),
        str(ticket.order_id),
        str(ticket.ticket_type_id),
    )
    claimed = (payload.event_id, payload.owner_id, payload.issued_context_id, payload.type_id)
    if stored != claimed:
        logger.warning("Payload data mismatch for ticket %s", ticket_id)
        return None, DomainError(ErrorCode.CREDENTIAL_SUPERSEDED, "QR code does not match ticket data")

    if payload.checksum != ticket.credential_checksum:
        return None, DomainError(ErrorCode.CREDENTIAL_SUPERSEDED)

    return ticket, None


@transactional
def expire_unused_tickets(now=None):
    """ACTIVE tickets whose event closed more than the grace window ago -> EXPIRED."""
    now = as_utc(now or utcnow())
    cutoff = now - timedelta(hours=current_app.config.get("TICKET_EXPIRY_GRACE_HOURS", 24))

    tickets = (
        Ticket.query
        .join(Order, Ticket.order_id == Order.order_id)
        .join(Event, Order.event_id == Event.event_id)
        .filter(Ticket.status == "ACTIVE", Event.end_date < cutoff)
        .all()
    )
    for ticket in tickets:
        ticket.status = "EXPIRED"

    if tickets:
        logger.info("Expired %d unused tickets", len(tickets))
    return len(tickets)
