import logging
import uuid

import stripe
from flask import Blueprint, current_app, jsonify, request

from src.services import order_service
from src.services.actors import GATEWAY

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__)

PAYMENT_OUTCOMES = {
    "payment_intent.succeeded": "SUCCESS",
    "payment_intent.payment_failed": "FAILED",
}


@webhooks_bp.route("/stripe", methods=["POST"])
def stripe_webhook():
    """
    Handle Stripe Webhooks
    ---
    tags:
      - Webhooks
    responses:
      200:
        description: Event processed
      400:
        description: Invalid payload or signature
    """
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature")

    try:
        event = stripe.Webhook.construct_event(
            payload, sig_header, current_app.config["STRIPE_WEBHOOK_SECRET"]
        )
    except ValueError:
        return jsonify({"error": "Invalid payload"}), 400
    except stripe.SignatureVerificationError:
        return jsonify({"error": "Invalid signature"}), 400

    outcome = PAYMENT_OUTCOMES.get(event["type"])
    if outcome:
        handle_payment_outcome(event["data"]["object"], outcome)

    # Return a success response to confirm receipt
    return jsonify({"status": "success"}), 200


def handle_payment_outcome(payment_intent, outcome):
    order_id = payment_intent.get("metadata", {}).get("order_id")
    if not order_id:
        logger.error("No order_id in payment intent %s metadata", payment_intent.get("id"))
        return

    try:
        order_id = uuid.UUID(str(order_id))
    except ValueError:
        logger.error("Payment intent %s carries invalid order_id %r", payment_intent.get("id"), order_id)
        return

    _, error = order_service.confirm_payment(
        order_id, outcome, GATEWAY, payment_reference=payment_intent.get("id")
    )
    if error:
        # replays and late events land here; Stripe must not retry them
        logger.warning("Payment %s for order %s not applied: %s", outcome, order_id, error.code.value)
    else:
        logger.info("Payment %s for order %s applied from %s", outcome, order_id, payment_intent.get("id"))
