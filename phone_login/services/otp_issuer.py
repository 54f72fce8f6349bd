from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from phone_login.core.security import hash_code
from phone_login.models.common import as_utc, utcnow
from phone_login.services import otp_store
from phone_login.services.errors import NotifierFailure, PersistenceFailure
from phone_login.services.notifier import Notifier
from phone_login.services.phone_format import canonical_phone, mask_phone

_LOG = logging.getLogger("phone_login.otp_issuer")

DEFAULT_EXPIRY_MINUTES = 5


@dataclass(frozen=True)
class IssuedOtp:
    otp_id: uuid.UUID
    expires_at: datetime
    delivered: bool


def generate_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def _persist(
    db: Session,
    *,
    phone: str,
    code: str,
    now: datetime,
    expiry_minutes: int,
    request_ip: str | None,
) -> tuple[uuid.UUID, datetime]:
    expires_at = now + timedelta(minutes=int(expiry_minutes))
    try:
        mark = otp_store.lock_phone(db, phone)
        invalidated = otp_store.delete_records_for_phone(db, phone)
        row = otp_store.insert_record(
            db,
            phone=phone,
            code_hash=hash_code(code),
            created_at=now,
            expires_at=expires_at,
            request_ip=request_ip,
        )
        otp_id = row.id
        mark.last_issued_at = now
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        _LOG.error("Create OTP failed phone=%s", mask_phone(phone), exc_info=True)
        raise PersistenceFailure("Failed to create OTP") from exc
    if invalidated:
        _LOG.info("Invalidated %s existing OTP(s) phone=%s", invalidated, mask_phone(phone))
    return otp_id, expires_at


def issue_otp(
    db: Session,
    phone: str,
    *,
    notifier: Notifier,
    expiry_minutes: int = DEFAULT_EXPIRY_MINUTES,
    request_ip: str | None = None,
    now: datetime | None = None,
    code: str | None = None,
    log_code: bool = False,
) -> IssuedOtp:
    """Replace the phone's OTP with a fresh one and hand the code to the notifier.

    The caller is expected to have passed the cooldown gate already. Delivery
    problems are logged and reported through ``delivered``; the stored code
    stays valid either way.
    """
    phone = canonical_phone(phone)
    code = code or generate_code()
    issued_at = as_utc(now) or utcnow()

    otp_id, expires_at = _persist(
        db,
        phone=phone,
        code=code,
        now=issued_at,
        expiry_minutes=expiry_minutes,
        request_ip=request_ip,
    )
    _LOG.info("OTP generated otp_id=%s phone=%s expires_in_min=%s", otp_id, mask_phone(phone), expiry_minutes)
    if log_code:
        _LOG.warning("OTP_DEV_LOG_CODES: code for %s is %s", mask_phone(phone), code)

    delivered = False
    try:
        result = notifier.send_code(phone, code, expiry_minutes)
        delivered = bool(result.success)
        if not delivered:
            _LOG.error(
                "OTP delivery failed otp_id=%s phone=%s error=%s; code stays valid",
                otp_id,
                mask_phone(phone),
                result.error,
            )
    except NotifierFailure as exc:
        _LOG.error("OTP delivery failed otp_id=%s phone=%s error=%s; code stays valid", otp_id, mask_phone(phone), exc)
    except Exception:
        _LOG.error(
            "OTP delivery crashed otp_id=%s phone=%s; code stays valid", otp_id, mask_phone(phone), exc_info=True
        )

    return IssuedOtp(otp_id=otp_id, expires_at=expires_at, delivered=delivered)
