"""
Who is firing a transition. Each lifecycle transition may only be fired by
specific roles; see TRANSITION_ROLES.
"""

import uuid
from collections import namedtuple

ROLE_ADMIN = "ADMIN"
ROLE_ORGANIZER = "ORGANIZER"
ROLE_BUYER = "BUYER"
ROLE_GATEWAY = "GATEWAY"
ROLE_SYSTEM = "SYSTEM"

Actor = namedtuple("Actor", ["actor_id", "role"])

GATEWAY = Actor(None, ROLE_GATEWAY)

TRANSITION_ROLES = {
    # payment verifier: gateway webhook for card payments, organizer for manual ones
    ("confirm_payment", "GATEWAY"): {ROLE_GATEWAY, ROLE_SYSTEM},
    ("confirm_payment", "MANUAL"): {ROLE_ORGANIZER, ROLE_ADMIN},
    # inventory approver
    ("approve", None): {ROLE_ORGANIZER, ROLE_ADMIN},
    ("reject", None): {ROLE_ORGANIZER, ROLE_ADMIN},
    ("refund", None): {ROLE_ORGANIZER, ROLE_ADMIN},
}

# Roles whose actor_id must match the event's organizer
OWNER_SCOPED_ROLES = {ROLE_ORGANIZER}


def may_fire(actor, transition, payment_method=None):
    allowed = TRANSITION_ROLES.get((transition, payment_method)) or TRANSITION_ROLES.get((transition, None), set())
    return actor.role in allowed


def owns_event(actor, event):
    if actor.role not in OWNER_SCOPED_ROLES:
        return True
    return actor.actor_id is not None and str(actor.actor_id) == str(event.organizer_id)


def make_actor(actor_id, role):
    """JWT identities arrive as strings; UUID columns want UUIDs."""
    if actor_id is not None and not isinstance(actor_id, uuid.UUID):
        actor_id = uuid.UUID(str(actor_id))
    return Actor(actor_id, role)
