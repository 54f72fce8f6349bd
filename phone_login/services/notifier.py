from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from phone_login.core.config import Settings
from phone_login.services.errors import NotifierFailure
from phone_login.services.phone_format import mask_phone, phone_for_whatsapp

_LOG = logging.getLogger("phone_login.notifier")

DEFAULT_TEMPLATE = "Your OTP for {brand} is: {code}. Will expire in {minutes} minutes."


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    provider: str
    error: str | None = None
    message_id: str | None = None


class Notifier(Protocol):
    def send_code(self, phone: str, code: str, expiry_minutes: int) -> DeliveryResult:
        ...


def build_otp_message(*, template: str | None, brand: str, code: str, expiry_minutes: int) -> str:
    raw = str(template or "").strip() or DEFAULT_TEMPLATE
    try:
        return raw.format(brand=brand, code=code, minutes=expiry_minutes)
    except (KeyError, IndexError, ValueError):
        return DEFAULT_TEMPLATE.format(brand=brand, code=code, minutes=expiry_minutes)


class ConsoleNotifier:
    """Local notifier: the code goes to the log instead of WhatsApp."""

    provider = "console"

    def __init__(self, *, brand: str, template: str | None = None):
        self.brand = brand
        self.template = template

    def send_code(self, phone: str, code: str, expiry_minutes: int) -> DeliveryResult:
        text = build_otp_message(template=self.template, brand=self.brand, code=code, expiry_minutes=expiry_minutes)
        _LOG.warning("[OTP CONSOLE] to=%s text=%s", mask_phone(phone), text)
        return DeliveryResult(success=True, provider=self.provider)


class EvolutionApiNotifier:
    """WhatsApp delivery through Evolution API ``/message/sendText``."""

    provider = "evolution"

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        instance_name: str,
        brand: str,
        template: str | None = None,
        timeout_seconds: float = 10.0,
        verify_tls: bool = True,
        client: httpx.Client | None = None,
    ):
        self.base_url = str(base_url or "").rstrip("/")
        self.api_key = str(api_key or "").strip()
        self.instance_name = str(instance_name or "").strip()
        self.brand = brand
        self.template = template
        self._client = client or httpx.Client(timeout=timeout_seconds, verify=verify_tls)

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.api_key and self.instance_name)

    def close(self) -> None:
        self._client.close()

    def send_code(self, phone: str, code: str, expiry_minutes: int) -> DeliveryResult:
        if not self.configured:
            _LOG.error(
                "Evolution API configuration missing has_url=%s has_key=%s has_instance=%s",
                bool(self.base_url),
                bool(self.api_key),
                bool(self.instance_name),
            )
            return DeliveryResult(success=False, provider=self.provider, error="Evolution API not configured")

        endpoint = f"{self.base_url}/message/sendText/{self.instance_name}"
        body = {
            "number": phone_for_whatsapp(phone),
            "text": build_otp_message(
                template=self.template, brand=self.brand, code=code, expiry_minutes=expiry_minutes
            ),
        }
        try:
            response = self._client.post(endpoint, json=body, headers={"apikey": self.api_key})
        except httpx.TimeoutException:
            _LOG.error("Evolution API timeout to=%s", mask_phone(phone))
            return DeliveryResult(success=False, provider=self.provider, error="timeout")
        except httpx.HTTPError as exc:
            _LOG.error("Evolution API transport error to=%s error=%s", mask_phone(phone), exc)
            return DeliveryResult(success=False, provider=self.provider, error=str(exc))

        if response.status_code >= 400:
            _LOG.error(
                "Evolution API error response status=%s body=%s",
                response.status_code,
                response.text[:500],
            )
            return DeliveryResult(
                success=False,
                provider=self.provider,
                error=f"Evolution API returned {response.status_code}",
            )

        message_id = _message_id(response)
        _LOG.info("WhatsApp OTP sent to=%s message_id=%s", mask_phone(phone), message_id or "-")
        return DeliveryResult(success=True, provider=self.provider, message_id=message_id)


def _message_id(response: httpx.Response) -> str | None:
    try:
        data: Any = response.json()
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    key = data.get("key")
    if isinstance(key, dict) and key.get("id"):
        return str(key["id"])
    return None


def build_notifier(settings: Settings) -> Notifier:
    provider = str(settings.NOTIFIER_PROVIDER or "console").strip().lower()
    if provider in {"", "console", "dummy", "mock"}:
        return ConsoleNotifier(brand=settings.OTP_BRAND_NAME, template=settings.OTP_MESSAGE_TEMPLATE)
    if provider in {"evolution", "whatsapp"}:
        return EvolutionApiNotifier(
            base_url=settings.EVOLUTION_API_URL,
            api_key=settings.EVOLUTION_API_KEY,
            instance_name=settings.EVOLUTION_INSTANCE_NAME,
            brand=settings.OTP_BRAND_NAME,
            template=settings.OTP_MESSAGE_TEMPLATE,
            timeout_seconds=settings.NOTIFIER_TIMEOUT_SECONDS,
            verify_tls=settings.EVOLUTION_VERIFY_TLS,
        )
    raise NotifierFailure(f"Unknown NOTIFIER_PROVIDER: {provider}")
