import os
import tempfile
import threading
import unittest
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import psycopg
from sqlalchemy import create_engine, event
from sqlalchemy.dialects import postgresql
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from tests.base import RecordingNotifier

from phone_login.db.session import Base
from phone_login.models.otp_issuance_mark import OtpIssuanceMark
from phone_login.models.otp_record import OtpRecord
from phone_login.services import otp_store
from phone_login.services.otp_issuer import issue_otp
from phone_login.services.otp_verifier import OUTCOME_INVALID_CODE, OUTCOME_NOT_FOUND, verify_otp

PHONE = "+919876543210"
WORKERS = 8


class LockQueryTests(unittest.TestCase):
    def _compiled(self, query) -> str:
        return str(query.statement.compile(dialect=postgresql.dialect()))

    def test_phone_mark_is_selected_for_update(self):
        with Session() as db:
            sql = self._compiled(otp_store.mark_lock_query(db, PHONE))
        self.assertIn("otp_issuance_marks", sql)
        self.assertTrue(sql.rstrip().endswith("FOR UPDATE"), sql)

    def test_live_record_is_selected_for_update(self):
        with Session() as db:
            sql = self._compiled(otp_store.live_record_query(db, PHONE))
        self.assertIn("otp_records", sql)
        self.assertTrue(sql.rstrip().endswith("FOR UPDATE"), sql)


class ConcurrentOtpMixin:
    SessionLocal = None

    def setUp(self):
        with self.SessionLocal() as db:
            db.query(OtpRecord).delete()
            db.query(OtpIssuanceMark).delete()
            db.commit()

    def _parallel(self, fn, count=WORKERS):
        gate = threading.Barrier(count)

        def run(index):
            gate.wait()
            with self.SessionLocal() as db:
                return fn(db, index)

        with ThreadPoolExecutor(max_workers=count) as pool:
            return list(pool.map(run, range(count)))

    def _issue(self, code="482913"):
        with self.SessionLocal() as db:
            issue_otp(db, PHONE, notifier=RecordingNotifier(), code=code)

    def test_parallel_correct_codes_sign_in_once(self):
        self._issue("482913")
        results = self._parallel(lambda db, _: verify_otp(db, PHONE, "482913"))
        self.assertEqual(sum(1 for result in results if result.success), 1)
        self.assertTrue(all(r.outcome == OUTCOME_NOT_FOUND for r in results if not r.success))

    def test_parallel_wrong_codes_share_one_budget(self):
        self._issue("482913")
        results = self._parallel(lambda db, _: verify_otp(db, PHONE, "000000"))
        invalid = sorted(r.remaining_attempts for r in results if r.outcome == OUTCOME_INVALID_CODE)
        self.assertEqual(invalid, [0, 1, 2, 3, 4])
        self.assertEqual(sum(1 for r in results if r.outcome == OUTCOME_NOT_FOUND), WORKERS - 5)

    def test_parallel_issuance_leaves_one_live_record(self):
        codes = [f"{index:06d}" for index in range(WORKERS)]
        self._parallel(lambda db, index: issue_otp(db, PHONE, notifier=RecordingNotifier(), code=codes[index]))
        with self.SessionLocal() as db:
            self.assertEqual(otp_store.count_live_records(db, PHONE), 1)
            self.assertEqual(db.query(OtpIssuanceMark).filter_by(phone_number=PHONE).count(), 1)


class SqliteFileConcurrencyTests(ConcurrentOtpMixin, unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmp = tempfile.TemporaryDirectory()
        cls.engine = create_engine(
            f"sqlite+pysqlite:///{Path(cls._tmp.name) / 'otp.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        # pysqlite defers BEGIN; take the write lock up front so transactions queue instead of failing.
        @event.listens_for(cls.engine, "connect")
        def _autocommit_driver(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(cls.engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        Base.metadata.create_all(bind=cls.engine)
        cls.SessionLocal = sessionmaker(bind=cls.engine, autocommit=False, autoflush=False)

    @classmethod
    def tearDownClass(cls):
        cls.engine.dispose()
        cls._tmp.cleanup()


class PostgresConcurrencyTests(ConcurrentOtpMixin, unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        db_url_raw = os.getenv("DATABASE_URL", "")
        if not db_url_raw.startswith("postgresql"):
            raise unittest.SkipTest("Row lock test requires PostgreSQL DATABASE_URL")

        base_url = make_url(db_url_raw)
        cls.test_db_name = f"{base_url.database}_concurrency_test"
        cls.admin_dsn = base_url.set(database="postgres").render_as_string(hide_password=False).replace("+psycopg", "")
        cls._recreate_database(create=True)

        cls.engine = create_engine(base_url.set(database=cls.test_db_name), pool_size=WORKERS + 2)
        Base.metadata.create_all(bind=cls.engine)
        cls.SessionLocal = sessionmaker(bind=cls.engine, autocommit=False, autoflush=False)

    @classmethod
    def tearDownClass(cls):
        if hasattr(cls, "engine"):
            cls.engine.dispose()
        if hasattr(cls, "test_db_name"):
            cls._recreate_database(create=False)

    @classmethod
    def _recreate_database(cls, *, create: bool):
        with psycopg.connect(cls.admin_dsn, autocommit=True) as conn:
            conn.execute(f'DROP DATABASE IF EXISTS "{cls.test_db_name}"')
            if create:
                conn.execute(f'CREATE DATABASE "{cls.test_db_name}"')
