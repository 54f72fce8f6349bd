from datetime import timedelta
from unittest.mock import patch

from tests.base import OtpDbTestCase, RecordingNotifier

from phone_login.models.common import utcnow
from phone_login.services.otp_issuer import issue_otp
from phone_login.workers.celery_app import celery_app
from phone_login.workers.tasks import security as security_task

STALE_PHONE = "+15550000001"
LIVE_PHONE = "+15550000002"


class WorkerMaintenanceTaskTests(OtpDbTestCase):
    @classmethod
    def setUpClass(cls):
        super().setUpClass()
        cls._old_security_session_local = security_task.SessionLocal
        security_task.SessionLocal = cls.SessionLocal

    @classmethod
    def tearDownClass(cls):
        security_task.SessionLocal = cls._old_security_session_local
        super().tearDownClass()

    def test_cleanup_expired_otps_removes_only_expired_rows(self):
        now = utcnow()
        with self.SessionLocal() as db:
            issue_otp(db, STALE_PHONE, notifier=RecordingNotifier(), expiry_minutes=5, now=now - timedelta(minutes=10))
            issue_otp(db, LIVE_PHONE, notifier=RecordingNotifier(), expiry_minutes=5, now=now)

        result = security_task.cleanup_expired_otps()

        self.assertEqual(result, {"checked": 2, "deleted": 1})
        self.assertEqual(self.records_for(STALE_PHONE), [])
        self.assertEqual(len(self.records_for(LIVE_PHONE)), 1)

    def test_cleanup_with_nothing_to_do(self):
        self.assertEqual(security_task.cleanup_expired_otps(), {"checked": 0, "deleted": 0})

    def test_cleanup_rolls_back_and_reraises(self):
        with patch.object(security_task.otp_store, "delete_expired_records", side_effect=RuntimeError("db gone")):
            with self.assertRaises(RuntimeError):
                security_task.cleanup_expired_otps()

    def test_cleanup_is_scheduled(self):
        schedule = celery_app.conf.beat_schedule
        tasks = {entry["task"] for entry in schedule.values()}
        self.assertIn("phone_login.workers.tasks.security.cleanup_expired_otps", tasks)
