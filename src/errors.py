"""
Domain error taxonomy.

Service functions return ``(value, error)`` pairs where ``error`` is a
``DomainError`` or ``None``. Only infrastructure failures are raised, as
``StoreUnavailable``, so callers can retry them.
"""

from enum import Enum


class ErrorCategory(str, Enum):
    INPUT = "input"
    INTEGRITY = "integrity"
    STATE = "state"
    NOT_FOUND = "not_found"
    AUTHORIZATION = "authorization"


class ErrorCode(str, Enum):
    # input / format
    MALFORMED_CREDENTIAL = "MALFORMED_CREDENTIAL"
    UNRECOGNIZED_CREDENTIAL = "UNRECOGNIZED_CREDENTIAL"
    INVALID_INPUT = "INVALID_INPUT"
    # integrity
    CHECKSUM_MISMATCH = "CHECKSUM_MISMATCH"
    CREDENTIAL_EXPIRED = "CREDENTIAL_EXPIRED"
    CREDENTIAL_SUPERSEDED = "CREDENTIAL_SUPERSEDED"
    # state conflicts
    ORDER_NOT_PENDING = "ORDER_NOT_PENDING"
    INSUFFICIENT_INVENTORY = "INSUFFICIENT_INVENTORY"
    ALREADY_USED = "ALREADY_USED"
    NOT_ACTIVE = "NOT_ACTIVE"
    SCAN_LIMIT_EXCEEDED = "SCAN_LIMIT_EXCEEDED"
    REVOKED = "REVOKED"
    NOT_YET_VALID = "NOT_YET_VALID"
    EXPIRED = "EXPIRED"
    # lookup / authorization
    NOT_FOUND = "NOT_FOUND"
    WRONG_EVENT = "WRONG_EVENT"
    FORBIDDEN = "FORBIDDEN"


CATEGORIES = {
    ErrorCode.MALFORMED_CREDENTIAL: ErrorCategory.INPUT,
    ErrorCode.UNRECOGNIZED_CREDENTIAL: ErrorCategory.INPUT,
    ErrorCode.INVALID_INPUT: ErrorCategory.INPUT,
    ErrorCode.CHECKSUM_MISMATCH: ErrorCategory.INTEGRITY,
    ErrorCode.CREDENTIAL_EXPIRED: ErrorCategory.INTEGRITY,
    ErrorCode.CREDENTIAL_SUPERSEDED: ErrorCategory.INTEGRITY,
    ErrorCode.ORDER_NOT_PENDING: ErrorCategory.STATE,
    ErrorCode.INSUFFICIENT_INVENTORY: ErrorCategory.STATE,
    ErrorCode.ALREADY_USED: ErrorCategory.STATE,
    ErrorCode.NOT_ACTIVE: ErrorCategory.STATE,
    ErrorCode.SCAN_LIMIT_EXCEEDED: ErrorCategory.STATE,
    ErrorCode.REVOKED: ErrorCategory.STATE,
    ErrorCode.NOT_YET_VALID: ErrorCategory.STATE,
    ErrorCode.EXPIRED: ErrorCategory.STATE,
    ErrorCode.NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.WRONG_EVENT: ErrorCategory.AUTHORIZATION,
    ErrorCode.FORBIDDEN: ErrorCategory.AUTHORIZATION,
}

# Venue staff read these straight off the scanner screen
DEFAULT_MESSAGES = {
    ErrorCode.MALFORMED_CREDENTIAL: "QR code is damaged or not a valid credential",
    ErrorCode.UNRECOGNIZED_CREDENTIAL: "QR code is not a recognised ticket or wristband",
    ErrorCode.INVALID_INPUT: "Invalid input",
    ErrorCode.CHECKSUM_MISMATCH: "QR code data has been tampered with or corrupted",
    ErrorCode.CREDENTIAL_EXPIRED: "QR code has expired",
    ErrorCode.CREDENTIAL_SUPERSEDED: "QR code has been replaced by a newer one",
    ErrorCode.ORDER_NOT_PENDING: "Order is not pending approval",
    ErrorCode.INSUFFICIENT_INVENTORY: "Not enough tickets left for this ticket type",
    ErrorCode.ALREADY_USED: "Ticket already used",
    ErrorCode.NOT_ACTIVE: "Ticket is not active",
    ErrorCode.SCAN_LIMIT_EXCEEDED: "Wristband scan limit reached",
    ErrorCode.REVOKED: "Wristband has been revoked",
    ErrorCode.NOT_YET_VALID: "Wristband is not valid yet",
    ErrorCode.EXPIRED: "Credential has expired",
    ErrorCode.NOT_FOUND: "Not found",
    ErrorCode.WRONG_EVENT: "Credential belongs to a different event",
    ErrorCode.FORBIDDEN: "Not allowed to perform this action",
}

HTTP_STATUS = {
    ErrorCategory.INPUT: 400,
    ErrorCategory.INTEGRITY: 422,
    ErrorCategory.STATE: 409,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.AUTHORIZATION: 403,
}


class DomainError:
    __slots__ = ("code", "message", "details")

    def __init__(self, code, message=None, details=None):
        self.code = ErrorCode(code)
        self.message = message or DEFAULT_MESSAGES[self.code]
        self.details = details or {}

    @property
    def category(self):
        return CATEGORIES[self.code]

    @property
    def http_status(self):
        return HTTP_STATUS[self.category]

    def to_dict(self):
        body = {
            "success": False,
            "error_code": self.code.value,
            "message": self.message,
        }
        if self.details:
            body["details"] = self.details
        return body

    def __repr__(self):
        return f"DomainError({self.code.value}: {self.message})"


class StoreUnavailable(Exception):
    """Persistent store failed (unreachable, timeout, deadlock). Safe to retry."""

    retryable = True
