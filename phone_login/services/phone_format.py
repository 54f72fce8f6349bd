from __future__ import annotations

import re

from phone_login.services.errors import InvalidCodeFormat, InvalidPhoneFormat

# Country code -> national number length.
SUPPORTED_REGIONS: dict[str, int] = {
    "+1": 10,
    "+91": 10,
}

OTP_CODE_LENGTH = 6
INVALID_PHONE_MESSAGE = "Invalid phone number format. Must be +1 or +91 followed by 10 digits."
INVALID_CODE_MESSAGE = f"OTP code must be {OTP_CODE_LENGTH} digits"
_CODE_RE = re.compile(r"^[0-9]{6}$")


def _region_patterns() -> list[re.Pattern[str]]:
    return [
        re.compile(rf"^{re.escape(prefix)}[0-9]{{{length}}}$")
        for prefix, length in SUPPORTED_REGIONS.items()
    ]


_PHONE_PATTERNS = _region_patterns()


def canonical_phone(raw: str | None) -> str:
    phone = str(raw or "").strip()
    if not phone:
        raise InvalidPhoneFormat("Phone number is required")
    if not phone.startswith("+"):
        raise InvalidPhoneFormat("Phone number must include country code (e.g., +91 or +1)")
    if not any(pattern.fullmatch(phone) for pattern in _PHONE_PATTERNS):
        raise InvalidPhoneFormat(INVALID_PHONE_MESSAGE)
    return phone


def canonical_code(raw: str | None) -> str:
    code = str(raw or "").strip()
    if not code:
        raise InvalidCodeFormat("OTP code is required")
    if not _CODE_RE.fullmatch(code):
        raise InvalidCodeFormat(INVALID_CODE_MESSAGE)
    return code


def phone_for_whatsapp(phone: str) -> str:
    return phone[1:] if phone.startswith("+") else phone


def mask_phone(phone: str, visible_digits: int = 4) -> str:
    if not phone:
        return ""
    if len(phone) <= visible_digits:
        return phone
    return "*" * (len(phone) - visible_digits) + phone[-visible_digits:]
