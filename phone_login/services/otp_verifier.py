from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from phone_login.core.security import verify_code
from phone_login.models.common import as_utc, utcnow
from phone_login.services import otp_store
from phone_login.services.errors import PersistenceFailure
from phone_login.services.phone_format import canonical_code, canonical_phone, mask_phone

_LOG = logging.getLogger("phone_login.otp_verifier")

DEFAULT_MAX_ATTEMPTS = 5

OUTCOME_VERIFIED = "verified"
OUTCOME_NOT_FOUND = "not_found"
OUTCOME_EXPIRED = "expired"
OUTCOME_EXHAUSTED = "exhausted"
OUTCOME_INVALID_CODE = "invalid_code"

MSG_VERIFIED = "OTP verified successfully"
MSG_NOT_FOUND = "No OTP found for this phone number"
MSG_EXPIRED = "OTP has expired"
MSG_EXHAUSTED = "Maximum verification attempts exceeded"
MSG_INVALID_CODE = "Invalid OTP code"


@dataclass(frozen=True)
class VerificationResult:
    success: bool
    message: str
    remaining_attempts: int
    outcome: str


def _result(outcome: str, remaining: int = 0) -> VerificationResult:
    messages = {
        OUTCOME_VERIFIED: MSG_VERIFIED,
        OUTCOME_NOT_FOUND: MSG_NOT_FOUND,
        OUTCOME_EXPIRED: MSG_EXPIRED,
        OUTCOME_EXHAUSTED: MSG_EXHAUSTED,
        OUTCOME_INVALID_CODE: MSG_INVALID_CODE,
    }
    return VerificationResult(
        success=outcome == OUTCOME_VERIFIED,
        message=messages[outcome],
        remaining_attempts=max(int(remaining), 0),
        outcome=outcome,
    )


def _check(db: Session, phone: str, code: str, *, max_attempts: int, now: datetime) -> VerificationResult:
    otp_store.lock_phone(db, phone, create=False)
    record = otp_store.find_live_record(db, phone)
    if record is None:
        return _result(OUTCOME_NOT_FOUND)

    if now > as_utc(record.expires_at):
        otp_store.consume_record(db, record)
        return _result(OUTCOME_EXPIRED)

    attempts = int(record.attempts or 0)
    if attempts >= max_attempts:
        otp_store.consume_record(db, record)
        return _result(OUTCOME_EXHAUSTED)

    # Every call spends budget, including the one that succeeds.
    attempts += 1
    record.attempts = attempts
    record.updated_at = now
    remaining = max_attempts - attempts

    if verify_code(code, record.code_hash):
        record.verified = True
        otp_store.consume_record(db, record)
        return _result(OUTCOME_VERIFIED, remaining)

    if remaining <= 0:
        otp_store.consume_record(db, record)
    else:
        db.flush()
    return _result(OUTCOME_INVALID_CODE, remaining)


def verify_otp(
    db: Session,
    phone: str,
    submitted_code: str,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    now: datetime | None = None,
) -> VerificationResult:
    """Check ``submitted_code`` against the phone's live OTP.

    Runs as one transaction under the phone's row lock. The record is gone
    after success, expiry or a spent budget, and kept after a wrong code that
    still leaves attempts.
    """
    phone = canonical_phone(phone)
    code = canonical_code(submitted_code)
    checked_at = as_utc(now) or utcnow()
    try:
        result = _check(db, phone, code, max_attempts=int(max_attempts), now=checked_at)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        _LOG.error("Verify OTP failed phone=%s", mask_phone(phone), exc_info=True)
        raise PersistenceFailure("Database error during verification") from exc

    log = _LOG.info if result.success else _LOG.warning
    log(
        "OTP verification phone=%s outcome=%s remaining=%s",
        mask_phone(phone),
        result.outcome,
        result.remaining_attempts,
    )
    return result
