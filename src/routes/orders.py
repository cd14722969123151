import uuid

from flask import Blueprint, jsonify, request

from src.auth import current_actor, roles_required
from src.routes.helpers import bad_request, error_response
from src.services import order_service
from src.services.actors import ROLE_ADMIN, ROLE_BUYER, ROLE_ORGANIZER, owns_event

orders_bp = Blueprint("orders", __name__)


@orders_bp.route("", methods=["POST"])
@roles_required(ROLE_BUYER, ROLE_ADMIN)
def create_order():
    """
    Create a PENDING order with one PENDING ticket per unit
    ---
    tags:
      - Orders
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
            - items
          properties:
            event_id:
              type: string
            items:
              type: array
              items:
                type: object
                properties:
                  ticket_type_id:
                    type: string
                  quantity:
                    type: integer
            payment_method:
              type: string
              enum: [GATEWAY, MANUAL]
            buyer_email:
              type: string
            buyer_id:
              type: string
              description: Admins only; buyers always order for themselves
    responses:
      201:
        description: Order created
      400:
        description: Invalid input
      404:
        description: Event or ticket type not found
      409:
        description: Not enough tickets left
    """
    data = request.get_json(silent=True) or {}
    actor = current_actor()

    buyer_id = actor.actor_id
    if actor.role == ROLE_ADMIN and data.get("buyer_id"):
        try:
            buyer_id = uuid.UUID(str(data["buyer_id"]))
        except ValueError:
            return bad_request("buyer_id must be a UUID")

    try:
        event_id = uuid.UUID(str(data.get("event_id")))
    except ValueError:
        return bad_request("event_id must be a UUID")

    order, error = order_service.create_order(
        buyer_id=buyer_id,
        event_id=event_id,
        items=data.get("items"),
        payment_method=data.get("payment_method", "GATEWAY"),
        buyer_email=data.get("buyer_email"),
        payment_reference=data.get("payment_reference"),
    )
    if error:
        return error_response(error)
    return jsonify({"success": True, "data": order.to_dict(include_tickets=True)}), 201


@orders_bp.route("/<uuid:order_id>", methods=["GET"])
@roles_required(ROLE_BUYER, ROLE_ORGANIZER, ROLE_ADMIN)
def get_order(order_id):
    """
    Get an order and its tickets
    ---
    tags:
      - Orders
    security:
      - Bearer: []
    parameters:
      - name: order_id
        in: path
        type: string
        required: true
    responses:
      200:
        description: Order details
      404:
        description: Order not found
    """
    order = order_service.get_order_by_id(order_id)
    actor = current_actor()
    # other people's orders are reported as missing
    if not order or not _can_view(actor, order):
        return jsonify({"success": False, "error_code": "NOT_FOUND", "message": "Order not found"}), 404
    return jsonify({"success": True, "data": order.to_dict(include_tickets=True)}), 200


@orders_bp.route("/mine", methods=["GET"])
@roles_required(ROLE_BUYER)
def list_my_orders():
    """
    List the caller's orders
    ---
    tags:
      - Orders
    security:
      - Bearer: []
    responses:
      200:
        description: Orders, newest first
    """
    orders = order_service.get_orders_by_buyer(current_actor().actor_id)
    return jsonify({"success": True, "data": [o.to_dict() for o in orders]}), 200


@orders_bp.route("/<uuid:order_id>/confirm-payment", methods=["POST"])
@roles_required(ROLE_ORGANIZER, ROLE_ADMIN)
def confirm_payment(order_id):
    """
    Record the payment outcome of a MANUAL order
    ---
    tags:
      - Orders
    security:
      - Bearer: []
    parameters:
      - name: order_id
        in: path
        type: string
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - status
          properties:
            status:
              type: string
              enum: [SUCCESS, FAILED]
            payment_reference:
              type: string
    responses:
      200:
        description: Payment outcome recorded
      403:
        description: Caller may not verify this order's payment
      409:
        description: Order is not PENDING
    """
    data = request.get_json(silent=True) or {}
    order, error = order_service.confirm_payment(
        order_id,
        data.get("status"),
        current_actor(),
        payment_reference=data.get("payment_reference"),
    )
    if error:
        return error_response(error)
    return jsonify({"success": True, "data": order.to_dict(include_tickets=True)}), 200


@orders_bp.route("/<uuid:order_id>/approve", methods=["POST"])
@roles_required(ROLE_ORGANIZER, ROLE_ADMIN)
def approve_order(order_id):
    """
    Approve an order, activate its tickets and issue their credentials
    ---
    tags:
      - Orders
    security:
      - Bearer: []
    parameters:
      - name: order_id
        in: path
        type: string
        required: true
    responses:
      200:
        description: Order approved, tickets ACTIVE
      404:
        description: Order not found
      409:
        description: Order not pending, payment not verified, or sold out
    """
    order, error = order_service.approve_order(order_id, current_actor())
    if error:
        return error_response(error)
    return jsonify({"success": True, "data": order.to_dict(include_tickets=True)}), 200


@orders_bp.route("/<uuid:order_id>/reject", methods=["POST"])
@roles_required(ROLE_ORGANIZER, ROLE_ADMIN)
def reject_order(order_id):
    """
    Reject an order and cancel its pending tickets
    ---
    tags:
      - Orders
    security:
      - Bearer: []
    parameters:
      - name: order_id
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
        description: Order rejected
      409:
        description: Order already decided
    """
    data = request.get_json(silent=True) or {}
    order, error = order_service.reject_order(order_id, current_actor(), reason=data.get("reason"))
    if error:
        return error_response(error)
    return jsonify({"success": True, "data": order.to_dict(include_tickets=True)}), 200


@orders_bp.route("/<uuid:order_id>/refund", methods=["POST"])
@roles_required(ROLE_ORGANIZER, ROLE_ADMIN)
def refund_order(order_id):
    """
    Refund an order's unused tickets
    ---
    tags:
      - Orders
    security:
      - Bearer: []
    parameters:
      - name: order_id
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
        description: Tickets refunded
      409:
        description: Nothing left to refund
    """
    data = request.get_json(silent=True) or {}
    order, error = order_service.refund_order(order_id, current_actor(), reason=data.get("reason"))
    if error:
        return error_response(error)
    return jsonify({"success": True, "data": order.to_dict(include_tickets=True)}), 200


def _can_view(actor, order):
    if actor.role == ROLE_BUYER:
        return str(order.buyer_id) == str(actor.actor_id)
    return owns_event(actor, order.event)
