"""
Scan Dispatcher: the single entry point for venue scanning.

A scanned string is decrypted and validated once, classified by the kind tag
carried as the payload's first field, checked against the scanning
organizer's events, then routed to ticket check-in or wristband scan/validate.
"""

import logging
from collections import namedtuple

from src.errors import DomainError, ErrorCode
from src.services import credential_codec, ticket_service, wristband_service
from src.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)

KIND_TICKET = "TICKET"
KIND_WRISTBAND = "WRISTBAND"
KIND_UNKNOWN = "UNKNOWN"

ACTION_CHECK_IN = "check_in"
ACTION_SCAN = "scan"
ACTION_VALIDATE = "validate"
ACTIONS = (ACTION_CHECK_IN, ACTION_SCAN, ACTION_VALIDATE)

SUCCESS_MESSAGES = {
    (KIND_TICKET, False): "Ticket checked in successfully",
    (KIND_TICKET, True): "Ticket is valid",
    (KIND_WRISTBAND, False): "Wristband scanned successfully",
    (KIND_WRISTBAND, True): "Wristband is valid",
}

Resolution = namedtuple("Resolution", ["kind", "payload"])


class ScanResult:
    def __init__(self, kind, action, error=None, ticket=None, wristband=None, scan_log=None):
        self.kind = kind
        self.action = action
        self.error = error
        self.ticket = ticket
        self.wristband = wristband
        self.scan_log = scan_log

    @property
    def success(self):
        return self.error is None

    @property
    def message(self):
        if self.error:
            return self.error.message
        return SUCCESS_MESSAGES[(self.kind, self.action == ACTION_VALIDATE)]

    def to_dict(self):
        data = {
            "success": self.success,
            "type": self.kind,
            "action": self.action,
            "message": self.message,
        }
        if self.error:
            data["error_code"] = self.error.code.value
            if self.error.details:
                data["details"] = self.error.details
        if self.ticket is not None:
            data["ticket"] = self.ticket.to_dict()
        if self.wristband is not None:
            data["wristband"] = self.wristband.to_dict()
        if self.scan_log is not None:
            data["scan_log"] = self.scan_log.to_dict()
        return data


def resolve(raw, now=None):
    """
    Classify a scanned string. Returns (Resolution, error).

    Undecryptable input is MALFORMED_CREDENTIAL with no resolution. A payload
    that decrypts but fails its trust checks reports CHECKSUM_MISMATCH /
    CREDENTIAL_EXPIRED alongside its resolution, so the caller can still tell
    which credential was presented. A sound payload with an unknown kind tag
    is UNRECOGNIZED_CREDENTIAL.
    """
    payload, error = credential_codec.decrypt(raw)
    if error:
        return None, error

    if payload.kind == credential_codec.KIND_TICKET:
        resolution = Resolution(KIND_TICKET, payload)
    elif payload.kind == credential_codec.KIND_WRISTBAND:
        resolution = Resolution(KIND_WRISTBAND, payload)
    else:
        resolution = None

    error = credential_codec.validate(payload, now=now)
    if error:
        return resolution, error

    if resolution is None:
        logger.warning("Credential %s carries unknown kind tag %r", payload.credential_id, payload.kind)
        return None, DomainError(ErrorCode.UNRECOGNIZED_CREDENTIAL)
    return resolution, None


def process(raw, organizer_id, action=ACTION_SCAN, scanned_by=None, location=None, device=None, now=None):
    """
    Resolve, authorize against `organizer_id`, then route: tickets to
    check-in (or read-only validation), wristbands to scan or validate.
    Always returns a ScanResult; domain refusals are carried in `error`.
    """
    if action not in ACTIONS:
        return ScanResult(KIND_UNKNOWN, action, DomainError(
            ErrorCode.INVALID_INPUT,
            f"action must be one of: {', '.join(ACTIONS)}",
        ))

    now = as_utc(now or utcnow())
    resolution, error = resolve(raw, now=now)
    if error:
        logger.warning("Scan by organizer %s rejected: %s", organizer_id, error.code.value)
        if resolution is None:
            return ScanResult(KIND_UNKNOWN, action, error)
        if resolution.kind == KIND_WRISTBAND:
            _ledger_refusal(resolution.payload, error, action, scanned_by, location, device, now)
        return ScanResult(resolution.kind, action, error)

    if resolution.kind == KIND_TICKET:
        return _process_ticket(resolution.payload, organizer_id, action, scanned_by, now)
    return _process_wristband(resolution.payload, organizer_id, action, scanned_by, location, device, now)


def _process_ticket(payload, organizer_id, action, scanned_by, now):
    ticket, error = ticket_service.match_payload(payload)
    if error:
        return ScanResult(KIND_TICKET, action, error)

    if str(ticket.order.event.organizer_id) != str(organizer_id):
        logger.warning("Organizer %s scanned ticket %s of another organizer's event", organizer_id, ticket.ticket_id)
        return ScanResult(KIND_TICKET, action, DomainError(ErrorCode.WRONG_EVENT))

    if action == ACTION_VALIDATE:
        checked, error = ticket_service.validate_ticket(ticket.ticket_id, now=now)
    else:
        checked, error = ticket_service.check_in_ticket(ticket.ticket_id, checked_in_by=scanned_by, now=now)

    return ScanResult(KIND_TICKET, action, error, ticket=checked or ticket)


def _process_wristband(payload, organizer_id, action, scanned_by, location, device, now):
    wristband, error = wristband_service.match_payload(payload)
    if error:
        if error.code == ErrorCode.CREDENTIAL_SUPERSEDED:
            _ledger_refusal(payload, error, action, scanned_by, location, device, now)
        return ScanResult(KIND_WRISTBAND, action, error)

    if action == ACTION_VALIDATE:
        _, error = wristband_service.validate_wristband(
            wristband.wristband_id, organizer_id=organizer_id, now=now
        )
        return ScanResult(KIND_WRISTBAND, action, error, wristband=_visible(wristband, error))

    outcome, error = wristband_service.scan_wristband(
        wristband.wristband_id,
        scanned_by,
        location=location,
        device=device,
        organizer_id=organizer_id,
        now=now,
    )
    if error:
        return ScanResult(KIND_WRISTBAND, action, error, wristband=_visible(wristband, error))
    return ScanResult(KIND_WRISTBAND, action, wristband=outcome.wristband, scan_log=outcome.scan_log)


def _visible(wristband, error):
    # never echo another organizer's wristband back to the scanner
    if error is not None and error.code == ErrorCode.WRONG_EVENT:
        return None
    return wristband


def _ledger_refusal(payload, error, action, scanned_by, location, device, now):
    # a refused wristband scan is still a scan attempt; validation records nothing
    if action == ACTION_VALIDATE:
        return
    wristband_service.record_refused_scan(
        payload.credential_id, error, scanned_by, location=location, device=device, now=now
    )
