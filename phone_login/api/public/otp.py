from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from phone_login.core.config import settings
from phone_login.core.deps import (
    get_identity_provider,
    get_notifier,
    get_request_limiter,
    get_session_strategy,
)
from phone_login.db.session import get_db
from phone_login.schemas.otp import OtpSend, OtpSent, OtpVerify, OtpVerified
from phone_login.services.errors import (
    PersistenceFailure,
    RateLimited,
    SessionMintingFailed,
    ValidationError,
)
from phone_login.services.identity import IdentityProvider
from phone_login.services.notifier import Notifier
from phone_login.services.otp_issuer import generate_code, issue_otp
from phone_login.services.otp_rate_limit import check_rate_limit
from phone_login.services.otp_verifier import verify_otp
from phone_login.services.phone_format import canonical_code, canonical_phone, mask_phone
from phone_login.services.rate_limit import RequestLimiter, hash_key_part
from phone_login.services.session_minter import SessionStrategy, mint_session

router = APIRouter()

_LOG = logging.getLogger("phone_login.api.otp")

COLLAPSED_FAILURE_MESSAGE = "Invalid or expired OTP"


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    body = {"error": message}
    body.update({key: value for key, value in extra.items() if value is not None})
    return JSONResponse(status_code=status_code, content=body)


def _client_ip(request: Request) -> str:
    xff = str(request.headers.get("x-forwarded-for") or "").strip()
    if xff:
        first = xff.split(",")[0].strip()
        if first:
            return first
    client = request.client
    return str(client.host if client else "unknown")


def _throttle_ip(limiter: RequestLimiter, action: str, client_ip: str) -> None:
    window = int(max(settings.REQUEST_RATE_LIMIT_WINDOW_SECONDS, 1))
    limit = int(max(settings.OTP_SEND_IP_LIMIT if action == "send" else settings.OTP_VERIFY_IP_LIMIT, 1))
    result = limiter.hit(f"otp:{action}:ip:{hash_key_part(client_ip)}", limit=limit, window_seconds=window)
    if not result.allowed:
        wait = max(result.retry_after_seconds, 1)
        raise RateLimited(
            f"Too many OTP requests. Please wait {wait} seconds before trying again.",
            wait_seconds=wait,
        )


def _enforce_cooldown(db: Session, phone: str) -> None:
    decision = check_rate_limit(db, phone, settings.OTP_COOLDOWN_SECONDS)
    if not decision.allowed:
        raise RateLimited(
            f"Too many OTP requests. Please wait {decision.wait_seconds} seconds before trying again.",
            wait_seconds=decision.wait_seconds,
        )


@router.post("/send", response_model=OtpSent, response_model_by_alias=True)
def send_otp(
    payload: OtpSend,
    request: Request,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    limiter: RequestLimiter = Depends(get_request_limiter),
):
    try:
        phone = canonical_phone(payload.phone_number)
    except ValidationError as exc:
        return _error(400, str(exc))

    client_ip = _client_ip(request)
    try:
        _throttle_ip(limiter, "send", client_ip)
        _enforce_cooldown(db, phone)
    except RateLimited as exc:
        _LOG.info("OTP send throttled phone=%s wait=%s", mask_phone(phone), exc.wait_seconds)
        return _error(429, str(exc), waitSeconds=exc.wait_seconds)
    except SQLAlchemyError:
        _LOG.error("Rate limit check failed phone=%s", mask_phone(phone), exc_info=True)
        return _error(500, "Failed to check rate limit")

    expiry_minutes = int(settings.OTP_EXPIRY_MINUTES)
    try:
        issue_otp(
            db,
            phone,
            notifier=notifier,
            expiry_minutes=expiry_minutes,
            request_ip=client_ip,
            code=generate_code(),
            log_code=bool(settings.OTP_DEV_LOG_CODES),
        )
    except PersistenceFailure as exc:
        return _error(500, str(exc))

    return OtpSent(expires_in=expiry_minutes * 60)


@router.post("/verify", response_model=OtpVerified)
def verify_otp_and_sign_in(
    payload: OtpVerify,
    request: Request,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
    strategy: SessionStrategy = Depends(get_session_strategy),
    limiter: RequestLimiter = Depends(get_request_limiter),
):
    if not payload.phone_number or not payload.otp:
        return _error(400, "Phone number and OTP are required")
    try:
        phone = canonical_phone(payload.phone_number)
        code = canonical_code(payload.otp)
    except ValidationError as exc:
        return _error(400, str(exc))

    try:
        _throttle_ip(limiter, "verify", _client_ip(request))
    except RateLimited as exc:
        return _error(429, str(exc), waitSeconds=exc.wait_seconds)

    try:
        result = verify_otp(db, phone, code, max_attempts=settings.OTP_MAX_ATTEMPTS)
    except PersistenceFailure as exc:
        return _error(500, str(exc))

    if not result.success:
        if settings.OTP_EXPOSE_REMAINING_ATTEMPTS:
            return _error(400, result.message, remainingAttempts=result.remaining_attempts)
        return _error(400, COLLAPSED_FAILURE_MESSAGE)

    # The OTP is consumed at this point; a failure below means starting over from /send.
    try:
        session = mint_session(phone, identity=identity, strategy=strategy)
    except SessionMintingFailed as exc:
        return _error(500, str(exc))

    return OtpVerified(session=session.as_public_dict())
