import uuid
from datetime import timedelta

from src.errors import ErrorCode
from src.extensions import db
from src.models import ScanLog, Wristband
from src.services import credential_codec, scan_ledger, wristband_service
from src.services.actors import ROLE_ORGANIZER, make_actor
from src.timeutil import utcnow
from tests.base import EntryServiceTestCase


class WristbandTestCase(EntryServiceTestCase):
    def create(self, **kwargs):
        kwargs.setdefault("name", "Backstage crew")
        wristband, error = wristband_service.create_wristband(self.event.event_id, self.organizer, **kwargs)
        self.assertIsNone(error)
        return wristband

    def scan(self, wristband, **kwargs):
        return wristband_service.scan_wristband(wristband.wristband_id, "gate-2", **kwargs)

    def logs(self, wristband):
        return ScanLog.query.filter_by(wristband_id=wristband.wristband_id).all()

    def reload(self, wristband):
        return db.session.get(Wristband, wristband.wristband_id)


class TestCreateWristband(WristbandTestCase):
    def test_created_active_with_credential(self):
        wristband = self.create(max_scans=5)

        self.assertEqual(wristband.status, "ACTIVE")
        self.assertEqual(wristband.scan_count, 0)
        self.assertEqual(wristband.organizer_id, self.organizer_id)
        payload, error = credential_codec.open_token(wristband.credential)
        self.assertIsNone(error)
        self.assertEqual(payload.kind, credential_codec.KIND_WRISTBAND)
        self.assertEqual(payload.owner_id, str(self.organizer_id))
        self.assertEqual(payload.type_id, "REUSABLE")

    def test_future_start_is_pending(self):
        wristband = self.create(valid_from=utcnow() + timedelta(hours=2))
        self.assertEqual(wristband.status, "PENDING")

    def test_bad_settings(self):
        now = utcnow()
        cases = [
            {"valid_from": now, "valid_until": now - timedelta(hours=1)},
            {"max_scans": 0},
            {"max_scans": "3"},
            {"name": "  "},
        ]
        for kwargs in cases:
            kwargs.setdefault("name", "Crew")
            _, error = wristband_service.create_wristband(self.event.event_id, self.organizer, **kwargs)
            self.assertEqual(error.code, ErrorCode.INVALID_INPUT, kwargs)
        self.assertEqual(Wristband.query.count(), 0)

    def test_other_organizer_forbidden(self):
        stranger = make_actor(self.other_organizer_id, ROLE_ORGANIZER)
        _, error = wristband_service.create_wristband(self.event.event_id, stranger, "Crew")
        self.assertEqual(error.code, ErrorCode.FORBIDDEN)

    def test_unknown_event(self):
        _, error = wristband_service.create_wristband(uuid.uuid4(), self.organizer, "Crew")
        self.assertEqual(error.code, ErrorCode.NOT_FOUND)


class TestScanWristband(WristbandTestCase):
    def test_scan_limit(self):
        wristband = self.create(max_scans=3)

        for expected in (1, 2, 3):
            outcome, error = self.scan(wristband, location="North gate")
            self.assertIsNone(error)
            self.assertEqual(outcome.wristband.scan_count, expected)
            self.assertTrue(outcome.scan_log.succeeded)

        outcome, error = self.scan(wristband)

        self.assertIsNone(outcome)
        self.assertEqual(error.code, ErrorCode.SCAN_LIMIT_EXCEEDED)
        self.assertEqual(self.reload(wristband).scan_count, 3)
        results = sorted(log.scan_result for log in self.logs(wristband))
        self.assertEqual(results, ["SCAN_LIMIT_EXCEEDED", "SUCCESS", "SUCCESS", "SUCCESS"])

    def test_unlimited_reusable(self):
        wristband = self.create()
        for _ in range(10):
            _, error = self.scan(wristband)
            self.assertIsNone(error)
        self.assertEqual(self.reload(wristband).scan_count, 10)

    def test_single_use(self):
        wristband = self.create(is_reusable=False)

        _, error = self.scan(wristband)
        self.assertIsNone(error)
        _, error = self.scan(wristband)
        self.assertEqual(error.code, ErrorCode.SCAN_LIMIT_EXCEEDED)

    def test_not_yet_valid_is_logged(self):
        wristband = self.create(valid_from=utcnow() + timedelta(hours=2))

        _, error = self.scan(wristband)

        self.assertEqual(error.code, ErrorCode.NOT_YET_VALID)
        self.assertIn("valid_from", error.details)
        self.assertEqual([log.scan_result for log in self.logs(wristband)], ["NOT_YET_VALID"])

    def test_becomes_active_once_window_opens(self):
        wristband = self.create(valid_from=utcnow() + timedelta(hours=2))

        outcome, error = self.scan(wristband, now=utcnow() + timedelta(hours=3))

        self.assertIsNone(error)
        self.assertEqual(outcome.wristband.status, "ACTIVE")

    def test_expired_status_is_persisted(self):
        wristband = self.create(valid_until=utcnow() + timedelta(hours=1))

        _, error = self.scan(wristband, now=utcnow() + timedelta(hours=2))

        self.assertEqual(error.code, ErrorCode.EXPIRED)
        self.assertEqual(self.reload(wristband).status, "EXPIRED")

    def test_wrong_organizer_is_logged(self):
        wristband = self.create()

        _, error = self.scan(wristband, organizer_id=self.other_organizer_id)

        self.assertEqual(error.code, ErrorCode.WRONG_EVENT)
        self.assertEqual(self.reload(wristband).scan_count, 0)
        self.assertEqual([log.scan_result for log in self.logs(wristband)], ["WRONG_EVENT"])

    def test_revoked(self):
        wristband = self.create()
        _, error = wristband_service.revoke_wristband(wristband.wristband_id, self.organizer, reason="Lost")
        self.assertIsNone(error)

        _, error = self.scan(wristband)
        self.assertEqual(error.code, ErrorCode.REVOKED)

        _, error = wristband_service.revoke_wristband(wristband.wristband_id, self.organizer)
        self.assertEqual(error.code, ErrorCode.REVOKED)

    def test_validate_records_nothing(self):
        wristband = self.create(max_scans=1)

        checked, error = wristband_service.validate_wristband(wristband.wristband_id)

        self.assertIsNone(error)
        self.assertEqual(checked.scan_count, 0)
        self.assertEqual(self.logs(wristband), [])

    def test_unknown_wristband(self):
        _, error = wristband_service.scan_wristband(uuid.uuid4(), "gate-2")
        self.assertEqual(error.code, ErrorCode.NOT_FOUND)


class TestUpdateWristband(WristbandTestCase):
    def test_name_change_keeps_credential(self):
        wristband = self.create()
        token = wristband.credential

        updated, error = wristband_service.update_wristband(
            wristband.wristband_id, self.organizer, {"name": "Production crew"}
        )

        self.assertIsNone(error)
        self.assertEqual(updated.name, "Production crew")
        self.assertEqual(updated.credential, token)

    def test_extending_validity_revives_and_reissues(self):
        wristband = self.create(valid_until=utcnow() + timedelta(hours=1))
        self.scan(wristband, now=utcnow() + timedelta(hours=2))
        old_checksum = self.reload(wristband).credential_checksum

        updated, error = wristband_service.update_wristband(
            wristband.wristband_id, self.organizer, {"valid_until": utcnow() + timedelta(days=2)}
        )

        self.assertIsNone(error)
        self.assertEqual(updated.status, "ACTIVE")
        self.assertNotEqual(updated.credential_checksum, old_checksum)

    def test_raising_limit_allows_more_scans(self):
        wristband = self.create(max_scans=1)
        self.scan(wristband)

        wristband_service.update_wristband(wristband.wristband_id, self.organizer, {"max_scans": 2})

        _, error = self.scan(wristband)
        self.assertIsNone(error)

    def test_unknown_field(self):
        wristband = self.create()
        _, error = wristband_service.update_wristband(wristband.wristband_id, self.organizer, {"scan_count": 0})
        self.assertEqual(error.code, ErrorCode.INVALID_INPUT)

    def test_revoked_cannot_change(self):
        wristband = self.create()
        wristband_service.revoke_wristband(wristband.wristband_id, self.organizer)
        _, error = wristband_service.update_wristband(wristband.wristband_id, self.organizer, {"name": "Again"})
        self.assertEqual(error.code, ErrorCode.REVOKED)


class TestBulkRevoke(WristbandTestCase):
    def test_all_revoked(self):
        first, second = self.create(), self.create(name="Catering")

        revoked, error = wristband_service.bulk_revoke(
            [str(first.wristband_id), str(second.wristband_id)], self.organizer, reason="End of shift"
        )

        self.assertIsNone(error)
        self.assertEqual(len(revoked), 2)
        self.assertTrue(all(w.status == "REVOKED" for w in revoked))

    def test_all_or_nothing(self):
        mine = self.create()
        other_event = self.make_event(self.other_organizer_id)
        stranger = make_actor(self.other_organizer_id, ROLE_ORGANIZER)
        theirs, _ = wristband_service.create_wristband(other_event.event_id, stranger, "Their crew")

        _, error = wristband_service.bulk_revoke([mine.wristband_id, theirs.wristband_id], self.organizer)

        self.assertEqual(error.code, ErrorCode.FORBIDDEN)
        self.assertEqual(self.reload(mine).status, "ACTIVE")


class TestScanLedger(WristbandTestCase):
    def test_history_newest_first(self):
        wristband = self.create(max_scans=2)
        start = utcnow()
        for minutes in (1, 2, 3):
            self.scan(wristband, now=start + timedelta(minutes=minutes))

        history = scan_ledger.get_scan_history(wristband.wristband_id, page=1, per_page=2)

        self.assertEqual(history["pagination"]["total"], 3)
        self.assertEqual(history["pagination"]["total_pages"], 2)
        self.assertEqual([row["scan_result"] for row in history["data"]], ["SCAN_LIMIT_EXCEEDED", "SUCCESS"])

    def test_history_reports_the_page_served(self):
        wristband = self.create()
        self.scan(wristband)

        history = scan_ledger.get_scan_history(wristband.wristband_id, page=0, per_page=10)

        self.assertEqual(history["pagination"]["page"], 1)
        self.assertEqual(history["pagination"]["per_page"], 10)
        self.assertEqual(len(history["data"]), 1)

    def test_stats(self):
        wristband = self.create(max_scans=1)
        self.scan(wristband)
        self.scan(wristband)
        self.scan(wristband, now=utcnow() - timedelta(hours=3))

        stats = scan_ledger.get_scan_stats(wristband.wristband_id)

        self.assertEqual(stats["total_attempts"], 3)
        self.assertEqual(stats["successful"], 1)
        self.assertEqual(stats["rejected"], 2)
        self.assertEqual(stats["recent_attempts"], 2)
