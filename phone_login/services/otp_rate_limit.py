from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from phone_login.models.common import as_utc, utcnow
from phone_login.services import otp_store

DEFAULT_COOLDOWN_SECONDS = 15


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    wait_seconds: int


def check_rate_limit(
    db: Session,
    phone: str,
    window_seconds: int = DEFAULT_COOLDOWN_SECONDS,
    *,
    now: datetime | None = None,
) -> RateLimitDecision:
    """Per-phone cooldown between two issuances. Read-only."""
    last_issued = otp_store.latest_issued_at(db, phone)
    if last_issued is None:
        return RateLimitDecision(allowed=True, wait_seconds=0)
    current = as_utc(now) or utcnow()
    elapsed = (current - last_issued).total_seconds()
    wait = min(math.ceil(int(window_seconds) - elapsed), int(window_seconds))
    if wait > 0:
        return RateLimitDecision(allowed=False, wait_seconds=int(wait))
    return RateLimitDecision(allowed=True, wait_seconds=0)
