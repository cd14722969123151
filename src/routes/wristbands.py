import io
import uuid

from flask import Blueprint, jsonify, request, send_file

from src.auth import current_actor, roles_required
from src.routes.helpers import bad_request, error_response, parse_datetime
from src.services import credential_renderer, scan_ledger, wristband_service
from src.services.actors import ROLE_ADMIN, ROLE_ORGANIZER, owns_event

wristbands_bp = Blueprint("wristbands", __name__)

DATETIME_FIELDS = ("valid_from", "valid_until")


def _not_found():
    return jsonify({"success": False, "error_code": "NOT_FOUND", "message": "Wristband not found"}), 404


def _managed_wristband(wristband_id, actor):
    wristband = wristband_service.get_wristband_by_id(wristband_id)
    if not wristband or not owns_event(actor, wristband.event):
        return None
    return wristband


def _parse_dates(data):
    """Replaces ISO strings in `data` with datetimes; returns an error message or None."""
    for key in DATETIME_FIELDS:
        if key in data:
            try:
                data[key] = parse_datetime(data[key])
            except (TypeError, ValueError):
                return f"{key} must be an ISO-8601 datetime"
    return None


def _with_credential(wristband):
    data = wristband.to_dict()
    data["status"] = wristband_service.effective_status(wristband)
    data["credential"] = wristband.credential
    return data


@wristbands_bp.route("", methods=["POST"])
@roles_required(ROLE_ORGANIZER, ROLE_ADMIN)
def create_wristband():
    """
    Create a wristband for an event
    ---
    tags:
      - Wristbands
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - event_id
            - name
          properties:
            event_id:
              type: string
            name:
              type: string
            description:
              type: string
            valid_from:
              type: string
              format: date-time
            valid_until:
              type: string
              format: date-time
            max_scans:
              type: integer
            is_reusable:
              type: boolean
              default: true
    responses:
      201:
        description: Wristband created with its credential
      400:
        description: Invalid input
      403:
        description: Event belongs to another organizer
    """
    data = dict(request.get_json(silent=True) or {})
    message = _parse_dates(data)
    if message:
        return bad_request(message)
    try:
        event_id = uuid.UUID(str(data.get("event_id")))
    except ValueError:
        return bad_request("event_id must be a UUID")

    wristband, error = wristband_service.create_wristband(
        event_id,
        current_actor(),
        data.get("name"),
        description=data.get("description"),
        valid_from=data.get("valid_from"),
        valid_until=data.get("valid_until"),
        max_scans=data.get("max_scans"),
        is_reusable=data.get("is_reusable", True),
    )
    if error:
        return error_response(error)
    return jsonify({"success": True, "data": _with_credential(wristband)}), 201


@wristbands_bp.route("", methods=["GET"])
@roles_required(ROLE_ORGANIZER)
def list_wristbands():
    """
    List the caller's wristbands
    ---
    tags:
      - Wristbands
    security:
      - Bearer: []
    parameters:
      - name: event_id
        in: query
        type: string
      - name: include_deleted
        in: query
        type: boolean
    responses:
      200:
        description: Wristbands, newest first
    """
    event_id = request.args.get("event_id")
    if event_id:
        try:
            event_id = uuid.UUID(event_id)
        except ValueError:
            return bad_request("event_id must be a UUID")

    wristbands = wristband_service.list_wristbands(
        current_actor().actor_id,
        event_id=event_id,
        include_deleted=request.args.get("include_deleted", "false").lower() == "true",
    )
    data = []
    for wristband in wristbands:
        item = wristband.to_dict()
        item["status"] = wristband_service.effective_status(wristband)
        data.append(item)
    return jsonify({"success": True, "data": data}), 200


@wristbands_bp.route("/<uuid:wristband_id>", methods=["GET"])
@roles_required(ROLE_ORGANIZER, ROLE_ADMIN)
def get_wristband(wristband_id):
    """
    Get a wristband
    ---
    tags:
      - Wristbands
    security:
      - Bearer: []
    parameters:
      - name: wristband_id
        in: path
        type: string
        required: true
    responses:
      200:
        description: Wristband details
      404:
        description: Wristband not found
    """
    wristband = _managed_wristband(wristband_id, current_actor())
    if not wristband:
        return _not_found()
    return jsonify({"success": True, "data": _with_credential(wristband)}), 200


@wristbands_bp.route("/<uuid:wristband_id>", methods=["PATCH"])
@roles_required(ROLE_ORGANIZER, ROLE_ADMIN)
def update_wristband(wristband_id):
    """
    Update a wristband's name, description or validity settings
    ---
    tags:
      - Wristbands
    security:
      - Bearer: []
    parameters:
      - name: wristband_id
        in: path
        type: string
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            name:
              type: string
            description:
              type: string
            valid_from:
              type: string
              format: date-time
            valid_until:
              type: string
              format: date-time
            max_scans:
              type: integer
            is_reusable:
              type: boolean
    responses:
      200:
        description: Wristband updated
      400:
        description: Invalid input
      409:
        description: Wristband is revoked
    """
    data = dict(request.get_json(silent=True) or {})
    if not data:
        return bad_request("No fields to update")
    message = _parse_dates(data)
    if message:
        return bad_request(message)

    wristband, error = wristband_service.update_wristband(wristband_id, current_actor(), data)
    if error:
        return error_response(error)
    return jsonify({"success": True, "data": _with_credential(wristband)}), 200


@wristbands_bp.route("/<uuid:wristband_id>", methods=["DELETE"])
@roles_required(ROLE_ORGANIZER, ROLE_ADMIN)
def revoke_wristband(wristband_id):
    """
    Revoke a wristband (soft delete, scan history is kept)
    ---
    tags:
      - Wristbands
    security:
      - Bearer: []
    parameters:
      - name: wristband_id
        in: path
        type: string
        required: true
      - in: body
        name: body
        schema:
          type: object
          properties:
            reason:
              type: string
    responses:
      200:
        description: Wristband revoked
      409:
        description: Already revoked
    """
    data = request.get_json(silent=True) or {}
    wristband, error = wristband_service.revoke_wristband(wristband_id, current_actor(), reason=data.get("reason"))
    if error:
        return error_response(error)
    return jsonify({"success": True, "message": "Wristband revoked", "data": wristband.to_dict()}), 200


@wristbands_bp.route("/bulk-revoke", methods=["POST"])
@roles_required(ROLE_ORGANIZER, ROLE_ADMIN)
def bulk_revoke():
    """
    Revoke several wristbands at once; all or nothing
    ---
    tags:
      - Wristbands
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - wristband_ids
          properties:
            wristband_ids:
              type: array
              items:
                type: string
            reason:
              type: string
    responses:
      200:
        description: Wristbands revoked
      403:
        description: Some wristbands not found or access denied
    """
    data = request.get_json(silent=True) or {}
    ids = data.get("wristband_ids")
    if not isinstance(ids, list):
        return bad_request("wristband_ids must be a list")

    wristbands, error = wristband_service.bulk_revoke(ids, current_actor(), reason=data.get("reason"))
    if error:
        return error_response(error)
    return jsonify({
        "success": True,
        "message": f"Revoked {len(wristbands)} wristbands",
        "data": [w.to_dict() for w in wristbands],
    }), 200


@wristbands_bp.route("/<uuid:wristband_id>/validate", methods=["GET"])
@roles_required(ROLE_ORGANIZER, ROLE_ADMIN)
def validate_wristband(wristband_id):
    """
    Check whether a wristband would be admitted right now (records nothing)
    ---
    tags:
      - Wristbands
    security:
      - Bearer: []
    parameters:
      - name: wristband_id
        in: path
        type: string
        required: true
    responses:
      200:
        description: Wristband is valid
      409:
        description: Wristband revoked, expired, not yet valid or used up
    """
    actor = current_actor()
    organizer_id = actor.actor_id if actor.role == ROLE_ORGANIZER else None
    wristband, error = wristband_service.validate_wristband(wristband_id, organizer_id=organizer_id)
    if error:
        return error_response(error)
    return jsonify({"success": True, "message": "Wristband is valid", "data": wristband.to_dict()}), 200


@wristbands_bp.route("/<uuid:wristband_id>/scan", methods=["POST"])
@roles_required(ROLE_ORGANIZER, ROLE_ADMIN)
def scan_wristband(wristband_id):
    """
    Count one scan of a wristband by id
    ---
    tags:
      - Wristbands
    security:
      - Bearer: []
    parameters:
      - name: wristband_id
        in: path
        type: string
        required: true
      - in: body
        name: body
        schema:
          type: object
          properties:
            scanned_by:
              type: string
            location:
              type: string
            device:
              type: string
    responses:
      200:
        description: Scan accepted and logged
      403:
        description: Wristband belongs to another organizer's event
      409:
        description: Scan refused (logged as well)
    """
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    outcome, error = wristband_service.scan_wristband(
        wristband_id,
        data.get("scanned_by") or str(actor.actor_id),
        location=data.get("location"),
        device=data.get("device"),
        organizer_id=actor.actor_id if actor.role == ROLE_ORGANIZER else None,
    )
    if error:
        return error_response(error)
    return jsonify({
        "success": True,
        "message": "Wristband scanned successfully",
        "data": {"wristband": outcome.wristband.to_dict(), "scan_log": outcome.scan_log.to_dict()},
    }), 200


@wristbands_bp.route("/<uuid:wristband_id>/scans", methods=["GET"])
@roles_required(ROLE_ORGANIZER, ROLE_ADMIN)
def scan_history(wristband_id):
    """
    Scan history of a wristband, newest first
    ---
    tags:
      - Wristbands
    security:
      - Bearer: []
    parameters:
      - name: wristband_id
        in: path
        type: string
        required: true
      - name: page
        in: query
        type: integer
        default: 1
      - name: per_page
        in: query
        type: integer
        default: 50
    responses:
      200:
        description: Paginated scan log
      404:
        description: Wristband not found
    """
    if not _managed_wristband(wristband_id, current_actor()):
        return _not_found()

    page = request.args.get("page", 1, type=int)
    per_page = min(request.args.get("per_page", 50, type=int), 200)
    history = scan_ledger.get_scan_history(wristband_id, page=page, per_page=per_page)
    return jsonify({"success": True, **history}), 200


@wristbands_bp.route("/<uuid:wristband_id>/stats", methods=["GET"])
@roles_required(ROLE_ORGANIZER, ROLE_ADMIN)
def scan_stats(wristband_id):
    """
    Scan attempt counts for a wristband
    ---
    tags:
      - Wristbands
    security:
      - Bearer: []
    parameters:
      - name: wristband_id
        in: path
        type: string
        required: true
      - name: window_minutes
        in: query
        type: integer
        default: 60
    responses:
      200:
        description: Attempt counts by result
    """
    if not _managed_wristband(wristband_id, current_actor()):
        return _not_found()

    window = request.args.get("window_minutes", 60, type=int)
    return jsonify({"success": True, "data": scan_ledger.get_scan_stats(wristband_id, window_minutes=window)}), 200


@wristbands_bp.route("/<uuid:wristband_id>/qr", methods=["GET"])
@roles_required(ROLE_ORGANIZER, ROLE_ADMIN)
def get_wristband_qr(wristband_id):
    """
    Render the wristband's credential as a QR code PNG
    ---
    tags:
      - Wristbands
    security:
      - Bearer: []
    produces:
      - image/png
    parameters:
      - name: wristband_id
        in: path
        type: string
        required: true
      - name: profile
        in: query
        type: string
        enum: [screen, print]
        default: print
    responses:
      200:
        description: PNG image
      404:
        description: Wristband not found
    """
    wristband = _managed_wristband(wristband_id, current_actor())
    if not wristband:
        return _not_found()

    profile = request.args.get("profile", "print")
    if profile not in credential_renderer.RENDER_PROFILES:
        return bad_request(f"Unknown profile: {profile}")

    png = credential_renderer.render(wristband.credential, profile=profile)
    return send_file(io.BytesIO(png), mimetype="image/png", download_name=f"wristband-{wristband_id}.png")
