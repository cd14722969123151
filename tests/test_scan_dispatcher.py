import dataclasses
import uuid
from datetime import timedelta

from src.errors import ErrorCode
from src.extensions import db
from src.models import ScanLog, Ticket, Wristband
from src.services import credential_codec, scan_dispatcher, ticket_service, wristband_service
from src.services.credential_codec import CredentialPayload
from src.timeutil import utcnow
from tests.base import EntryServiceTestCase


class TestScanDispatcher(EntryServiceTestCase):
    def setUp(self):
        super().setUp()
        self.ticket = self.issue_tickets(1)[0]
        self.wristband, _ = wristband_service.create_wristband(
            self.event.event_id, self.organizer, "Artist guests", max_scans=2
        )

    def process(self, raw, organizer_id=None, **kwargs):
        return scan_dispatcher.process(raw, organizer_id or self.organizer_id, scanned_by="gate-3", **kwargs)

    def test_ticket_checked_in(self):
        result = self.process(self.ticket.credential)

        self.assertTrue(result.success)
        body = result.to_dict()
        self.assertEqual(body["type"], "TICKET")
        self.assertEqual(body["message"], "Ticket checked in successfully")
        self.assertEqual(body["ticket"]["status"], "USED")

        again = self.process(self.ticket.credential)
        self.assertFalse(again.success)
        self.assertEqual(again.error.code, ErrorCode.ALREADY_USED)

    def test_validate_does_not_consume(self):
        result = self.process(self.ticket.credential, action="validate")

        self.assertTrue(result.success)
        self.assertEqual(result.message, "Ticket is valid")
        self.assertEqual(db.session.get(Ticket, self.ticket.ticket_id).status, "ACTIVE")

    def test_ticket_of_other_organizer(self):
        result = self.process(self.ticket.credential, organizer_id=self.other_organizer_id)

        self.assertEqual(result.error.code, ErrorCode.WRONG_EVENT)
        self.assertEqual(db.session.get(Ticket, self.ticket.ticket_id).status, "ACTIVE")

    def test_wristband_scanned(self):
        result = self.process(self.wristband.credential, location="VIP entrance")

        self.assertTrue(result.success)
        body = result.to_dict()
        self.assertEqual(body["type"], "WRISTBAND")
        self.assertEqual(body["wristband"]["scan_count"], 1)
        self.assertEqual(body["scan_log"]["scan_location"], "VIP entrance")
        self.assertEqual(body["scan_log"]["scanned_by"], "gate-3")

    def test_wristband_limit_through_dispatcher(self):
        for _ in range(2):
            self.assertTrue(self.process(self.wristband.credential).success)

        result = self.process(self.wristband.credential)
        self.assertEqual(result.error.code, ErrorCode.SCAN_LIMIT_EXCEEDED)
        self.assertEqual(result.to_dict()["details"], {"scan_count": 2, "max_scans": 2})

    def test_wristband_of_other_organizer_hides_data(self):
        result = self.process(self.wristband.credential, organizer_id=self.other_organizer_id)

        body = result.to_dict()
        self.assertEqual(body["error_code"], "WRONG_EVENT")
        self.assertNotIn("wristband", body)

    def test_malformed(self):
        result = self.process("definitely not a credential")

        self.assertEqual(result.kind, scan_dispatcher.KIND_UNKNOWN)
        self.assertEqual(result.error.code, ErrorCode.MALFORMED_CREDENTIAL)

    def test_unknown_kind_tag(self):
        now = utcnow()
        fields = credential_codec.canonical_fields(
            "Z", str(uuid.uuid4()), str(self.event.event_id), str(self.organizer_id),
            None, None, now, now + timedelta(days=1),
        )
        payload = CredentialPayload(
            kind="Z", credential_id=fields[1], event_id=fields[2], owner_id=fields[3],
            issued_context_id=None, type_id=None, valid_anchor=now,
            expires_at=now + timedelta(days=1), checksum=credential_codec.compute_checksum(fields),
        )

        result = self.process(credential_codec.encrypt(payload))

        self.assertEqual(result.error.code, ErrorCode.UNRECOGNIZED_CREDENTIAL)

    def test_tampered_checksum(self):
        payload, _ = credential_codec.open_token(self.ticket.credential)
        forged = dataclasses.replace(payload, type_id=str(uuid.uuid4()))

        result = self.process(credential_codec.encrypt(forged))

        self.assertEqual(result.error.code, ErrorCode.CHECKSUM_MISMATCH)

    def test_superseded_credential(self):
        old = self.ticket.credential
        ticket_service.reissue_ticket_credential(self.ticket.ticket_id, self.organizer)

        result = self.process(old)

        self.assertEqual(result.error.code, ErrorCode.CREDENTIAL_SUPERSEDED)
        self.assertEqual(db.session.get(Ticket, self.ticket.ticket_id).status, "ACTIVE")

    def test_unknown_ticket(self):
        payload, _ = credential_codec.open_token(self.ticket.credential)
        db.session.delete(db.session.get(Ticket, self.ticket.ticket_id))
        db.session.commit()

        result = self.process(credential_codec.encrypt(payload))

        self.assertEqual(result.error.code, ErrorCode.NOT_FOUND)

    def test_bad_action(self):
        result = self.process(self.ticket.credential, action="teleport")
        self.assertEqual(result.error.code, ErrorCode.INVALID_INPUT)


class TestRefusedWristbandScansAreLedgered(EntryServiceTestCase):
    def setUp(self):
        super().setUp()
        self.now = utcnow()
        self.wristband, _ = wristband_service.create_wristband(
            self.event.event_id, self.organizer, "Day pass", valid_until=self.now + timedelta(hours=1)
        )

    def logs(self):
        return ScanLog.query.filter_by(wristband_id=self.wristband.wristband_id).all()

    def test_expired_credential_is_logged(self):
        result = scan_dispatcher.process(
            self.wristband.credential, self.organizer_id, scanned_by="gate-4", now=self.now + timedelta(days=2)
        )

        self.assertEqual(result.error.code, ErrorCode.CREDENTIAL_EXPIRED)
        self.assertEqual(result.kind, scan_dispatcher.KIND_WRISTBAND)
        logs = self.logs()
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0].scan_result, "CREDENTIAL_EXPIRED")
        self.assertEqual(logs[0].scanned_by, "gate-4")

    def test_superseded_credential_is_logged(self):
        old = self.wristband.credential
        wristband_service.update_wristband(
            self.wristband.wristband_id, self.organizer, {"valid_until": self.now + timedelta(days=3)}
        )

        result = scan_dispatcher.process(old, self.organizer_id, scanned_by="gate-4")

        self.assertEqual(result.error.code, ErrorCode.CREDENTIAL_SUPERSEDED)
        self.assertEqual([log.scan_result for log in self.logs()], ["CREDENTIAL_SUPERSEDED"])
        self.assertEqual(db.session.get(Wristband, self.wristband.wristband_id).scan_count, 0)

    def test_validate_logs_nothing(self):
        result = scan_dispatcher.process(
            self.wristband.credential, self.organizer_id, action="validate", now=self.now + timedelta(days=2)
        )

        self.assertEqual(result.error.code, ErrorCode.CREDENTIAL_EXPIRED)
        self.assertEqual(self.logs(), [])
