"""
Notification Service client.
Delivery is best-effort: a failure here is logged and never undoes the approval
that triggered it.
"""

import logging
import requests
from flask import current_app

logger = logging.getLogger(__name__)

TEMPLATE_TICKETS_ISSUED = "TICKETS_ISSUED"
TEMPLATE_ORDER_REJECTED = "ORDER_REJECTED"

REQUEST_TIMEOUT = 2.0


def send_notification(recipient, template_kind, refs):
    base_url = current_app.config.get("NOTIFICATION_SERVICE_URL")
    if not base_url:
        logger.debug("Notification service not configured, skipping %s", template_kind)
        return False
    if not recipient:
        logger.info("No recipient for %s notification, skipping", template_kind)
        return False

    body = {
        "recipient": recipient,
        "template_kind": template_kind,
        "refs": [str(r) for r in refs],
    }
    try:
        response = requests.post(
            f"{base_url.rstrip('/')}/notifications",
            json=body,
            timeout=REQUEST_TIMEOUT,
        )
        if response.status_code >= 400:
            logger.warning(
                "Notification service returned %s for %s: %s",
                response.status_code, template_kind, response.text,
            )
            return False
    except requests.RequestException as e:
        logger.warning("Error calling Notification service for %s: %s", template_kind, e)
        return False

    return True


def notify_tickets_issued(order, tickets):
    return send_notification(
        order.buyer_email,
        TEMPLATE_TICKETS_ISSUED,
        [t.ticket_id for t in tickets],
    )


def notify_order_rejected(order):
    return send_notification(order.buyer_email, TEMPLATE_ORDER_REJECTED, [order.order_id])
