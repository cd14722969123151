import io

from flask import Blueprint, jsonify, request, send_file

from src.auth import current_actor, roles_required
from src.routes.helpers import bad_request, error_response
from src.services import credential_renderer, ticket_service
from src.services.actors import ROLE_ADMIN, ROLE_BUYER, ROLE_ORGANIZER, owns_event

tickets_bp = Blueprint("tickets", __name__)


def _not_found():
    return jsonify({"success": False, "error_code": "NOT_FOUND", "message": "Ticket not found"}), 404


def _visible_ticket(ticket_id, actor):
    ticket = ticket_service.get_ticket_by_id(ticket_id)
    if not ticket:
        return None
    if actor.role == ROLE_BUYER:
        return ticket if str(ticket.owner_id) == str(actor.actor_id) else None
    return ticket if owns_event(actor, ticket.order.event) else None


@tickets_bp.route("/<uuid:ticket_id>", methods=["GET"])
@roles_required(ROLE_BUYER, ROLE_ORGANIZER, ROLE_ADMIN)
def get_ticket(ticket_id):
    """
    Get a ticket
    ---
    tags:
      - Tickets
    security:
      - Bearer: []
    parameters:
      - name: ticket_id
        in: path
        type: string
        required: true
    responses:
      200:
        description: Ticket details, including its credential once ACTIVE
      404:
        description: Ticket not found
    """
    ticket = _visible_ticket(ticket_id, current_actor())
    if not ticket:
        return _not_found()
    data = ticket.to_dict()
    data["credential"] = ticket.credential
    return jsonify({"success": True, "data": data}), 200


@tickets_bp.route("/<uuid:ticket_id>/qr", methods=["GET"])
@roles_required(ROLE_BUYER, ROLE_ORGANIZER, ROLE_ADMIN)
def get_ticket_qr(ticket_id):
    """
    Render the ticket's credential as a QR code PNG
    ---
    tags:
      - Tickets
    security:
      - Bearer: []
    produces:
      - image/png
    parameters:
      - name: ticket_id
        in: path
        type: string
        required: true
      - name: profile
        in: query
        type: string
        enum: [screen, print]
        default: screen
    responses:
      200:
        description: PNG image
      404:
        description: Ticket not found
      409:
        description: Ticket has no credential yet
    """
    ticket = _visible_ticket(ticket_id, current_actor())
    if not ticket:
        return _not_found()
    if not ticket.credential:
        return jsonify({
            "success": False,
            "error_code": "NOT_ACTIVE",
            "message": f"Ticket is {ticket.status.lower()}",
        }), 409

    profile = request.args.get("profile", "screen")
    if profile not in credential_renderer.RENDER_PROFILES:
        return bad_request(f"Unknown profile: {profile}")

    png = credential_renderer.render(ticket.credential, profile=profile)
    return send_file(io.BytesIO(png), mimetype="image/png", download_name=f"ticket-{ticket_id}.png")


@tickets_bp.route("/<uuid:ticket_id>/check-in", methods=["POST"])
@roles_required(ROLE_ORGANIZER, ROLE_ADMIN)
def check_in(ticket_id):
    """
    Check a ticket in by id (manual entry at the gate)
    ---
    tags:
      - Tickets
    security:
      - Bearer: []
    parameters:
      - name: ticket_id
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
    responses:
      200:
        description: Ticket checked in
      404:
        description: Ticket not found
      409:
        description: Ticket already used, expired or not active
    """
    actor = current_actor()
    ticket = _visible_ticket(ticket_id, actor)
    if not ticket:
        return _not_found()

    data = request.get_json(silent=True) or {}
    ticket, error = ticket_service.check_in_ticket(
        ticket_id, checked_in_by=data.get("scanned_by") or str(actor.actor_id)
    )
    if error:
        return error_response(error)
    return jsonify({"success": True, "message": "Ticket checked in successfully", "data": ticket.to_dict()}), 200


@tickets_bp.route("/<uuid:ticket_id>/reissue", methods=["POST"])
@roles_required(ROLE_ORGANIZER, ROLE_ADMIN)
def reissue(ticket_id):
    """
    Replace a ticket's credential; the old QR code stops working
    ---
    tags:
      - Tickets
    security:
      - Bearer: []
    parameters:
      - name: ticket_id
        in: path
        type: string
        required: true
    responses:
      200:
        description: New credential issued
      403:
        description: Ticket belongs to another organizer's event
      409:
        description: Ticket is not ACTIVE
    """
    ticket, error = ticket_service.reissue_ticket_credential(ticket_id, current_actor())
    if error:
        return error_response(error)
    data = ticket.to_dict()
    data["credential"] = ticket.credential
    return jsonify({"success": True, "data": data}), 200
