"""
Wristband Service: reusable credentials, independent of orders and payments.

Status is evaluated lazily at scan time: a PENDING wristband whose valid_from
has passed is treated (and on scan, persisted) as ACTIVE, and one whose
valid_until has passed as EXPIRED. REVOKED is only reached through revocation
and is irreversible.
"""

import logging
import uuid
from collections import namedtuple

from sqlalchemy import or_, update

from src.errors import DomainError, ErrorCode
from src.extensions import db
from src.models import Event, Wristband
from src.services import credential_codec, scan_ledger
from src.services.actors import ROLE_ADMIN, ROLE_ORGANIZER, owns_event
from src.services.store import refuse, transactional
from src.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)

MANAGER_ROLES = {ROLE_ORGANIZER, ROLE_ADMIN}
UPDATABLE_FIELDS = {"name", "description", "valid_from", "valid_until", "max_scans", "is_reusable"}
VALIDITY_FIELDS = {"valid_from", "valid_until", "max_scans", "is_reusable"}
# fields baked into the credential payload; changing one forces a new QR
PAYLOAD_FIELDS = {"valid_until", "is_reusable"}

ScanOutcome = namedtuple("ScanOutcome", ["wristband", "scan_log"])


def get_wristband_by_id(wristband_id):
    return db.session.get(Wristband, wristband_id)


def list_wristbands(organizer_id, event_id=None, include_deleted=False):
    query = Wristband.query.filter_by(organizer_id=organizer_id)
    if event_id:
        query = query.filter_by(event_id=event_id)
    if not include_deleted:
        query = query.filter(Wristband.deleted_at.is_(None))
    return query.order_by(Wristband.created_at.desc()).all()


def _lock_wristband(wristband_id):
    return db.session.get(Wristband, wristband_id, with_for_update=True, populate_existing=True)


def _check_manager(actor, event):
    if actor.role not in MANAGER_ROLES or not owns_event(actor, event):
        return DomainError(ErrorCode.FORBIDDEN, "Wristband belongs to another organizer's event")
    return None


def _check_settings(valid_from, valid_until, max_scans):
    if valid_from and valid_until and as_utc(valid_until) <= as_utc(valid_from):
        return DomainError(ErrorCode.INVALID_INPUT, "valid_until must be after valid_from")
    if max_scans is not None and (
        not isinstance(max_scans, int) or isinstance(max_scans, bool) or max_scans < 1
    ):
        return DomainError(ErrorCode.INVALID_INPUT, "max_scans must be a positive integer")
    return None


def effective_status(wristband, now=None):
    now = as_utc(now or utcnow())
    if wristband.status == "REVOKED" or wristband.deleted_at is not None:
        return "REVOKED"
    if wristband.status == "EXPIRED":
        return "EXPIRED"
    if wristband.valid_until and now > as_utc(wristband.valid_until):
        return "EXPIRED"
    if wristband.valid_from and now < as_utc(wristband.valid_from):
        return "PENDING"
    return "ACTIVE"


def _eligibility(wristband, now):
    """Returns (status, error) for the wristband at `now`."""
    status = effective_status(wristband, now)
    if status == "REVOKED":
        return status, DomainError(ErrorCode.REVOKED)
    if status == "EXPIRED":
        return status, DomainError(
            ErrorCode.EXPIRED,
            "Wristband has expired",
            details={"valid_until": as_utc(wristband.valid_until).isoformat() if wristband.valid_until else None},
        )
    if status == "PENDING":
        return status, DomainError(
            ErrorCode.NOT_YET_VALID,
            details={"valid_from": as_utc(wristband.valid_from).isoformat()},
        )

    limit = wristband.scan_limit
    if limit is not None and wristband.scan_count >= limit:
        return status, DomainError(
            ErrorCode.SCAN_LIMIT_EXCEEDED,
            details={"scan_count": wristband.scan_count, "max_scans": limit},
        )
    return status, None


def issue_wristband_credential(wristband, issued_at=None):
    payload, token = credential_codec.issue(
        credential_codec.KIND_WRISTBAND,
        {
            "credential_id": wristband.wristband_id,
            "event_id": wristband.event_id,
            "owner_id": wristband.organizer_id,
            "type_id": "REUSABLE" if wristband.is_reusable else "SINGLE",
            "valid_until": wristband.valid_until,
        },
        issued_at=issued_at,
    )
    wristband.credential = token
    wristband.credential_checksum = payload.checksum
    wristband.credential_issued_at = payload.valid_anchor
    return payload


@transactional
def create_wristband(event_id, actor, name, description=None, valid_from=None, valid_until=None,
                     max_scans=None, is_reusable=True):
    """ACTIVE straight away, unless valid_from is in the future (then PENDING)."""
    event = db.session.get(Event, event_id)
    if not event:
        return refuse(DomainError(ErrorCode.NOT_FOUND, "Event not found"))

    error = _check_manager(actor, event)
    if error:
        return refuse(error)

    if not name or not str(name).strip():
        return refuse(DomainError(ErrorCode.INVALID_INPUT, "Wristband name is required"))

    error = _check_settings(valid_from, valid_until, max_scans)
    if error:
        return refuse(error)

    now = utcnow()
    wristband = Wristband(
        event_id=event.event_id,
        organizer_id=event.organizer_id,
        name=str(name).strip(),
        description=description,
        valid_from=as_utc(valid_from),
        valid_until=as_utc(valid_until),
        max_scans=max_scans,
        is_reusable=bool(is_reusable),
        scan_count=0,
        status="PENDING" if valid_from and as_utc(valid_from) > now else "ACTIVE",
        created_by=actor.actor_id,
    )
    db.session.add(wristband)
    db.session.flush()
    issue_wristband_credential(wristband, issued_at=now)

    logger.info("Wristband %s created for event %s (%s)", wristband.wristband_id, event.event_id, wristband.status)
    return wristband, None


@transactional
def update_wristband(wristband_id, actor, fields):
    wristband = _lock_wristband(wristband_id)
    if not wristband:
        return refuse(DomainError(ErrorCode.NOT_FOUND, "Wristband not found"))

    error = _check_manager(actor, wristband.event)
    if error:
        return refuse(error)

    if effective_status(wristband) == "REVOKED":
        return refuse(DomainError(ErrorCode.REVOKED, "Revoked wristbands cannot be changed"))

    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        return refuse(DomainError(
            ErrorCode.INVALID_INPUT,
            f"Cannot update: {', '.join(sorted(unknown))}",
        ))

    if "name" in fields and not (fields["name"] and str(fields["name"]).strip()):
        return refuse(DomainError(ErrorCode.INVALID_INPUT, "Wristband name is required"))

    valid_from = as_utc(fields["valid_from"]) if "valid_from" in fields else as_utc(wristband.valid_from)
    valid_until = as_utc(fields["valid_until"]) if "valid_until" in fields else as_utc(wristband.valid_until)
    max_scans = fields["max_scans"] if "max_scans" in fields else wristband.max_scans
    error = _check_settings(valid_from, valid_until, max_scans)
    if error:
        return refuse(error)

    for key, value in fields.items():
        if key in ("valid_from", "valid_until"):
            value = as_utc(value)
        setattr(wristband, key, value)

    if VALIDITY_FIELDS & set(fields):
        # a new window can revive an EXPIRED wristband; revocation is final
        wristband.status = "ACTIVE"
        wristband.status = effective_status(wristband)
    if PAYLOAD_FIELDS & set(fields):
        issue_wristband_credential(wristband)

    logger.info("Wristband %s updated: %s", wristband_id, ", ".join(sorted(fields)))
    return wristband, None


@transactional
def revoke_wristband(wristband_id, actor, reason=None):
    """Soft delete. Irreversible; scan history is kept."""
    wristband = _lock_wristband(wristband_id)
    if not wristband:
        return refuse(DomainError(ErrorCode.NOT_FOUND, "Wristband not found"))

    error = _check_manager(actor, wristband.event)
    if error:
        return refuse(error)

    if wristband.status == "REVOKED":
        return refuse(DomainError(ErrorCode.REVOKED, "Wristband is already revoked"))

    wristband.status = "REVOKED"
    wristband.deleted_at = utcnow()
    wristband.deletion_reason = reason

    logger.info("Wristband %s revoked by %s: %s", wristband_id, actor.actor_id or actor.role, reason)
    return wristband, None


@transactional
def bulk_revoke(wristband_ids, actor, reason=None):
    try:
        ids = sorted({uuid.UUID(str(i)) for i in wristband_ids})
    except ValueError:
        return refuse(DomainError(ErrorCode.INVALID_INPUT, "Invalid wristband id"))
    if not ids:
        return refuse(DomainError(ErrorCode.INVALID_INPUT, "No wristbands given"))

    wristbands = (
        Wristband.query
        .filter(Wristband.wristband_id.in_(ids), Wristband.deleted_at.is_(None))
        .order_by(Wristband.wristband_id)
        .with_for_update()
        .all()
    )
    if len(wristbands) != len(ids) or any(_check_manager(actor, w.event) for w in wristbands):
        return refuse(DomainError(ErrorCode.FORBIDDEN, "Some wristbands not found or access denied"))

    now = utcnow()
    for wristband in wristbands:
        wristband.status = "REVOKED"
        wristband.deleted_at = now
        wristband.deletion_reason = reason

    logger.info("Bulk revoked %d wristbands", len(wristbands))
    return wristbands, None


def validate_wristband(wristband_id, organizer_id=None, now=None):
    """Read-only eligibility check. Records nothing."""
    wristband = get_wristband_by_id(wristband_id)
    if not wristband:
        return None, DomainError(ErrorCode.NOT_FOUND, "Wristband not found")

    if organizer_id is not None and str(wristband.organizer_id) != str(organizer_id):
        return None, DomainError(ErrorCode.WRONG_EVENT)

    _, error = _eligibility(wristband, as_utc(now or utcnow()))
    if error:
        return None, error
    return wristband, None


@transactional
def scan_wristband(wristband_id, scanned_by, location=None, device=None, organizer_id=None, now=None):
    """
    Validate and count one scan. Every attempt against a known wristband lands
    in the scan ledger, rejected ones included, with the refusal code as result.
    """
    now = as_utc(now or utcnow())
    wristband = _lock_wristband(wristband_id)
    if not wristband:
        return refuse(DomainError(ErrorCode.NOT_FOUND, "Wristband not found"))

    def rejected(error):
        scan_ledger.record_scan(
            wristband.wristband_id, scanned_by, error.code.value,
            location=location, device=device, notes=error.message, now=now,
        )
        logger.warning("Wristband %s scan rejected: %s", wristband_id, error.code.value)
        return None, error

    if organizer_id is not None and str(wristband.organizer_id) != str(organizer_id):
        return rejected(DomainError(ErrorCode.WRONG_EVENT))

    status, error = _eligibility(wristband, now)
    if status != wristband.status and wristband.status != "REVOKED":
        wristband.status = status
    if error:
        return rejected(error)

    limit = wristband.scan_limit
    stmt = (
        update(Wristband)
        .where(
            Wristband.wristband_id == wristband.wristband_id,
            Wristband.status == "ACTIVE",
            or_(Wristband.max_scans.is_(None), Wristband.scan_count < Wristband.max_scans)
            if wristband.is_reusable else Wristband.scan_count < limit,
        )
        .values(scan_count=Wristband.scan_count + 1)
        .execution_options(synchronize_session="fetch")
    )
    if db.session.execute(stmt).rowcount != 1:
        return rejected(DomainError(ErrorCode.SCAN_LIMIT_EXCEEDED))

    entry = scan_ledger.record_scan(
        wristband.wristband_id, scanned_by, scan_ledger.RESULT_SUCCESS,
        location=location, device=device, now=now,
    )
    return ScanOutcome(wristband, entry), None


@transactional
def record_refused_scan(credential_id, error, scanned_by, location=None, device=None, now=None):
    """
    Ledger a scan refused on the credential alone (expired or superseded QR).
    Returns (scan_log, None), or (None, None) when no such wristband exists.
    """
    try:
        wristband_id = uuid.UUID(str(credential_id))
    except ValueError:
        return None, None

    wristband = get_wristband_by_id(wristband_id)
    if not wristband:
        return None, None

    entry = scan_ledger.record_scan(
        wristband.wristband_id, scanned_by, error.code.value,
        location=location, device=device, notes=error.message, now=now,
    )
    logger.warning("Wristband %s scan rejected on credential: %s", wristband_id, error.code.value)
    return entry, None


def match_payload(payload):
    """Find the wristband a decrypted payload refers to. Returns (wristband, error)."""
    try:
        wristband_id = uuid.UUID(payload.credential_id)
    except ValueError:
        return None, DomainError(ErrorCode.MALFORMED_CREDENTIAL)

    wristband = get_wristband_by_id(wristband_id)
    if not wristband:
        return None, DomainError(ErrorCode.NOT_FOUND, "Wristband not found")

    if payload.event_id != str(wristband.event_id) or payload.owner_id != str(wristband.organizer_id):
        return None, DomainError(ErrorCode.CREDENTIAL_SUPERSEDED, "QR code does not match wristband data")

    if payload.checksum != wristband.credential_checksum:
        return None, DomainError(ErrorCode.CREDENTIAL_SUPERSEDED)

    return wristband, None
