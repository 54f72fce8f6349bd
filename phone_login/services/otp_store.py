from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from phone_login.models.common import as_utc
from phone_login.models.otp_issuance_mark import OtpIssuanceMark
from phone_login.models.otp_record import OtpRecord

_LOG = logging.getLogger("phone_login.otp_store")


def mark_lock_query(db: Session, phone: str) -> Query:
    return (
        db.query(OtpIssuanceMark)
        .filter(OtpIssuanceMark.phone_number == phone)
        .with_for_update()
    )


def _select_mark_for_update(db: Session, phone: str) -> OtpIssuanceMark | None:
    return mark_lock_query(db, phone).first()


def lock_phone(db: Session, phone: str, *, create: bool = True) -> OtpIssuanceMark | None:
    """Take the per-phone row lock for the current transaction.

    Must be the first statement of the unit of work: losing the insert race
    rolls the transaction back before re-reading the winner's row.
    """
    mark = _select_mark_for_update(db, phone)
    if mark is not None or not create:
        return mark
    mark = OtpIssuanceMark(phone_number=phone, last_issued_at=None)
    db.add(mark)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        _LOG.debug("otp_lock_insert_race phone_suffix=%s", phone[-4:])
        mark = _select_mark_for_update(db, phone)
        if mark is None:
            raise
    return mark


def latest_issued_at(db: Session, phone: str) -> datetime | None:
    mark_ts = (
        db.query(OtpIssuanceMark.last_issued_at)
        .filter(OtpIssuanceMark.phone_number == phone)
        .scalar()
    )
    record_ts = (
        db.query(func.max(OtpRecord.created_at))
        .filter(OtpRecord.phone_number == phone)
        .scalar()
    )
    candidates = [as_utc(ts) for ts in (mark_ts, record_ts) if ts is not None]
    return max(candidates) if candidates else None


def delete_records_for_phone(db: Session, phone: str) -> int:
    return int(
        db.query(OtpRecord)
        .filter(OtpRecord.phone_number == phone)
        .delete(synchronize_session=False)
    )


def insert_record(
    db: Session,
    *,
    phone: str,
    code_hash: str,
    created_at: datetime,
    expires_at: datetime,
    request_ip: str | None,
) -> OtpRecord:
    row = OtpRecord(
        phone_number=phone,
        code_hash=code_hash,
        attempts=0,
        verified=False,
        created_at=created_at,
        updated_at=created_at,
        expires_at=expires_at,
        request_ip=request_ip,
    )
    db.add(row)
    db.flush()
    return row


def live_record_query(db: Session, phone: str) -> Query:
    return (
        db.query(OtpRecord)
        .filter(OtpRecord.phone_number == phone, OtpRecord.verified.is_(False))
        .order_by(OtpRecord.created_at.desc())
        .with_for_update()
    )


def find_live_record(db: Session, phone: str) -> OtpRecord | None:
    return live_record_query(db, phone).first()


def count_live_records(db: Session, phone: str) -> int:
    return int(
        db.query(func.count(OtpRecord.id))
        .filter(OtpRecord.phone_number == phone, OtpRecord.verified.is_(False))
        .scalar()
        or 0
    )


def consume_record(db: Session, record: OtpRecord) -> None:
    db.delete(record)
    db.flush()


def delete_expired_records(db: Session, now: datetime) -> tuple[int, int]:
    total = int(db.query(func.count(OtpRecord.id)).scalar() or 0)
    deleted = int(
        db.query(OtpRecord)
        .filter(OtpRecord.expires_at < now)
        .delete(synchronize_session=False)
    )
    return total, deleted
