from flask import Blueprint, jsonify, request

from src.auth import current_actor, roles_required
from src.routes.helpers import bad_request
from src.services import scan_dispatcher
from src.services.actors import ROLE_ADMIN, ROLE_ORGANIZER

scan_bp = Blueprint("scan", __name__)


@scan_bp.route("", methods=["POST"])
@roles_required(ROLE_ORGANIZER, ROLE_ADMIN)
def scan():
    """
    Scan a ticket or wristband credential at the gate
    ---
    tags:
      - Scanning
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - credential
          properties:
            credential:
              type: string
              description: The scanned QR string
            organizer_id:
              type: string
              description: Admins only; organizers always scan as themselves
            action:
              type: string
              enum: [scan, check_in, validate]
              default: scan
            scanned_by:
              type: string
            location:
              type: string
            device:
              type: string
    responses:
      200:
        description: Admitted (or valid, for action=validate)
      400:
        description: Malformed or unrecognised credential
      403:
        description: Credential belongs to another organizer's event
      409:
        description: Refused (already used, expired, revoked, limit reached)
      422:
        description: Credential failed its integrity checks
    """
    data = request.get_json(silent=True) or {}
    raw = data.get("credential")
    if not raw or not isinstance(raw, str):
        return bad_request("credential is required")

    actor = current_actor()
    if actor.role == ROLE_ADMIN:
        organizer_id = data.get("organizer_id")
        if not organizer_id:
            return bad_request("organizer_id is required")
    else:
        organizer_id = actor.actor_id

    result = scan_dispatcher.process(
        raw.strip(),
        organizer_id,
        action=data.get("action", scan_dispatcher.ACTION_SCAN),
        scanned_by=data.get("scanned_by") or str(actor.actor_id),
        location=data.get("location"),
        device=data.get("device"),
    )
    status = 200 if result.success else result.error.http_status
    return jsonify(result.to_dict()), status
