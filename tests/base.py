import unittest
import uuid
from datetime import timedelta
from decimal import Decimal

from flask_jwt_extended import create_access_token

from src.app import create_app
from src.extensions import db
from src.models import Event, TicketType
from src.services import order_service
from src.services.actors import ROLE_ADMIN, ROLE_BUYER, ROLE_ORGANIZER, make_actor
from src.timeutil import utcnow

TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "JWT_SECRET_KEY": "test-jwt-secret",
    "CREDENTIAL_SECRET": "test-credential-secret",
    "NOTIFICATION_SERVICE_URL": None,
    "STRIPE_WEBHOOK_SECRET": "whsec_test",
    "STORE_RETRY_ATTEMPTS": 1,
    "APPROVAL_REQUIRES_PAYMENT": True,
    "LOG_LEVEL": "WARNING",
}


class EntryServiceTestCase(unittest.TestCase):
    """In-memory app with one organizer, one buyer and one upcoming event."""

    config_overrides = {}

    def setUp(self):
        self.app = create_app({**TEST_CONFIG, **self.config_overrides})
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.create_all()
        self.client = self.app.test_client()

        self.organizer_id = uuid.uuid4()
        self.other_organizer_id = uuid.uuid4()
        self.buyer_id = uuid.uuid4()
        self.organizer = make_actor(self.organizer_id, ROLE_ORGANIZER)
        self.admin = make_actor(uuid.uuid4(), ROLE_ADMIN)

        self.event = self.make_event(self.organizer_id)
        self.ticket_type = self.make_ticket_type(self.event, quantity=100, sold=10)

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.ctx.pop()

    def make_event(self, organizer_id, starts_in=timedelta(days=1), lasts=timedelta(hours=6)):
        start = utcnow() + starts_in
        event = Event(organizer_id=organizer_id, name="Harbour Lights Festival",
                      start_date=start, end_date=start + lasts)
        db.session.add(event)
        db.session.commit()
        return event

    def make_ticket_type(self, event, quantity=100, sold=0, price="25.00", name="General Admission"):
        ticket_type = TicketType(event_id=event.event_id, name=name, quantity=quantity,
                                 sold=sold, price=Decimal(price))
        db.session.add(ticket_type)
        db.session.commit()
        return ticket_type

    def auth_headers(self, actor_id, role):
        token = create_access_token(identity=str(actor_id), additional_claims={"role": role})
        return {"Authorization": f"Bearer {token}"}

    @property
    def organizer_headers(self):
        return self.auth_headers(self.organizer_id, ROLE_ORGANIZER)

    @property
    def buyer_headers(self):
        return self.auth_headers(self.buyer_id, ROLE_BUYER)

    def issue_tickets(self, quantity=1, ticket_type=None):
        """Place, pay for and approve a MANUAL order; returns its ACTIVE tickets."""
        ticket_type = ticket_type or self.ticket_type
        order, error = order_service.create_order(
            self.buyer_id,
            ticket_type.event_id,
            [{"ticket_type_id": str(ticket_type.ticket_type_id), "quantity": quantity}],
            payment_method="MANUAL",
        )
        self.assertIsNone(error)
        organizer = make_actor(order.event.organizer_id, ROLE_ORGANIZER)
        _, error = order_service.confirm_payment(order.order_id, "SUCCESS", organizer)
        self.assertIsNone(error)
        order, error = order_service.approve_order(order.order_id, organizer)
        self.assertIsNone(error)
        return list(order.tickets)
