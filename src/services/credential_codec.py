"""
Credential Codec
Builds the payload embedded in ticket and wristband QR codes, checksums it,
stamps an expiry and seals it with AES-GCM under the process-wide
CREDENTIAL_SECRET.

Wire format: base64url(nonce || ciphertext || tag), no padding. The plaintext is
compact JSON whose first key `k` tags the credential kind.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from flask import current_app

from src.errors import DomainError, ErrorCode
from src.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)

KIND_TICKET = "T"
KIND_WRISTBAND = "W"

NONCE_SIZE = 12
TAG_SIZE = 16
CHECKSUM_LENGTH = 16


@dataclass(frozen=True)
class CredentialPayload:
    kind: str
    credential_id: str
    event_id: str
    owner_id: str
    issued_context_id: str | None
    type_id: str | None
    valid_anchor: datetime
    expires_at: datetime
    checksum: str

    def canonical_fields(self):
        return canonical_fields(
            self.kind,
            self.credential_id,
            self.event_id,
            self.owner_id,
            self.issued_context_id,
            self.type_id,
            self.valid_anchor,
            self.expires_at,
        )

    def to_wire(self):
        # insertion order matters: `k` must stay first
        return {
            "k": self.kind,
            "cid": self.credential_id,
            "eid": self.event_id,
            "oid": self.owner_id,
            "ctx": self.issued_context_id,
            "tid": self.type_id,
            "va": self.valid_anchor.isoformat(),
            "exp": self.expires_at.isoformat(),
            "cs": self.checksum,
        }

    @classmethod
    def from_wire(cls, data):
        return cls(
            kind=str(data["k"]),
            credential_id=str(data["cid"]),
            event_id=str(data["eid"]),
            owner_id=str(data["oid"]),
            issued_context_id=data.get("ctx"),
            type_id=data.get("tid"),
            valid_anchor=as_utc(datetime.fromisoformat(data["va"])),
            expires_at=as_utc(datetime.fromisoformat(data["exp"])),
            checksum=str(data["cs"]),
        )


def canonical_fields(kind, credential_id, event_id, owner_id, issued_context_id, type_id,
                     valid_anchor, expires_at):
    return [
        kind,
        credential_id,
        event_id,
        owner_id,
        issued_context_id or "",
        type_id or "",
        as_utc(valid_anchor).isoformat(),
        as_utc(expires_at).isoformat(),
    ]


def compute_checksum(fields):
    digest = hashlib.sha256(":".join(str(f) for f in fields).encode("utf-8")).hexdigest()
    return digest[:CHECKSUM_LENGTH]


def ticket_expiry(event_end):
    grace = current_app.config.get("TICKET_EXPIRY_GRACE_HOURS", 24)
    return as_utc(event_end) + timedelta(hours=grace)


def wristband_expiry(valid_until, issued_at):
    if valid_until is not None:
        grace = current_app.config.get("TICKET_EXPIRY_GRACE_HOURS", 24)
        return as_utc(valid_until) + timedelta(hours=grace)
    ttl_days = current_app.config.get("WRISTBAND_DEFAULT_TTL_DAYS", 365)
    return as_utc(issued_at) + timedelta(days=ttl_days)


def build(kind, fields, issued_at=None):
    """
    Assemble a payload for `kind`.

    Tickets need `event_end` in fields, wristbands may carry `valid_until`.
    Ids may be UUIDs or strings.
    """
    issued_at = as_utc(issued_at or utcnow())
    if kind == KIND_TICKET:
        expires_at = ticket_expiry(fields["event_end"])
    elif kind == KIND_WRISTBAND:
        expires_at = wristband_expiry(fields.get("valid_until"), issued_at)
    else:
        raise ValueError(f"Unknown credential kind: {kind!r}")

    credential_id = str(fields["credential_id"])
    event_id = str(fields["event_id"])
    owner_id = str(fields["owner_id"])
    context_id = str(fields["issued_context_id"]) if fields.get("issued_context_id") else None
    type_id = str(fields["type_id"]) if fields.get("type_id") else None

    checksum = compute_checksum(canonical_fields(
        kind, credential_id, event_id, owner_id, context_id, type_id, issued_at, expires_at
    ))
    return CredentialPayload(
        kind=kind,
        credential_id=credential_id,
        event_id=event_id,
        owner_id=owner_id,
        issued_context_id=context_id,
        type_id=type_id,
        valid_anchor=issued_at,
        expires_at=expires_at,
        checksum=checksum,
    )


def _key(secret=None):
    secret = secret or current_app.config["CREDENTIAL_SECRET"]
    return hashlib.sha256(secret.encode("utf-8")).digest()


def encrypt(payload, secret=None):
    plaintext = json.dumps(payload.to_wire(), separators=(",", ":")).encode("utf-8")
    nonce = os.urandom(NONCE_SIZE)
    sealed = AESGCM(_key(secret)).encrypt(nonce, plaintext, None)
    return base64.urlsafe_b64encode(nonce + sealed).rstrip(b"=").decode("ascii")


def decrypt(token, secret=None):
    """Returns (payload, error). Any decode/auth failure is MALFORMED_CREDENTIAL."""
    if not token or not isinstance(token, str):
        return None, DomainError(ErrorCode.MALFORMED_CREDENTIAL)

    token = token.strip()
    try:
        raw = base64.b64decode(token + "=" * (-len(token) % 4), altchars=b"-_", validate=True)
    except (binascii.Error, ValueError):
        return None, DomainError(ErrorCode.MALFORMED_CREDENTIAL)

    if len(raw) <= NONCE_SIZE + TAG_SIZE:
        return None, DomainError(ErrorCode.MALFORMED_CREDENTIAL)

    try:
        plaintext = AESGCM(_key(secret)).decrypt(raw[:NONCE_SIZE], raw[NONCE_SIZE:], None)
    except InvalidTag:
        logger.warning("Credential failed authentication (%d bytes)", len(raw))
        return None, DomainError(ErrorCode.MALFORMED_CREDENTIAL)

    try:
        payload = CredentialPayload.from_wire(json.loads(plaintext))
    except (ValueError, KeyError, TypeError) as e:
        logger.warning("Credential decrypted but payload is unreadable: %s", e)
        return None, DomainError(ErrorCode.MALFORMED_CREDENTIAL)

    return payload, None


def validate(payload, now=None):
    """Returns a DomainError or None."""
    expected = compute_checksum(payload.canonical_fields())
    if not hmac.compare_digest(expected, payload.checksum):
        logger.warning("Checksum mismatch for credential %s", payload.credential_id)
        return DomainError(ErrorCode.CHECKSUM_MISMATCH)

    now = as_utc(now or utcnow())
    if now > payload.expires_at:
        return DomainError(
            ErrorCode.CREDENTIAL_EXPIRED,
            details={"expires_at": payload.expires_at.isoformat()},
        )
    return None


def issue(kind, fields, issued_at=None):
    """Build and encrypt in one go. Returns (payload, token)."""
    payload = build(kind, fields, issued_at=issued_at)
    return payload, encrypt(payload)


def open_token(token, now=None):
    """Decrypt then validate. Returns (payload, error)."""
    payload, error = decrypt(token)
    if error:
        return None, error
    error = validate(payload, now=now)
    if error:
        return None, error
    return payload, None
