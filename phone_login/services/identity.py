from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from threading import Lock
from typing import Any, Protocol

import httpx

from phone_login.core.config import Settings
from phone_login.core.security import create_jwt, hash_code, verify_code
from phone_login.models.common import utcnow
from phone_login.services.errors import (
    AccountCreationFailure,
    AccountLookupFailure,
    CredentialSetFailure,
    IdentityError,
    SessionMintFailure,
)

_LOG = logging.getLogger("phone_login.identity")


@dataclass(frozen=True)
class Account:
    id: str
    phone: str
    phone_confirmed: bool = False


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    token_type: str
    expires_in: int
    expires_at: int | None
    refresh_token: str | None
    user_id: str
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def as_public_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "expires_at": self.expires_at,
            "refresh_token": self.refresh_token,
            "user": {"id": self.user_id},
        }


class IdentityProvider(Protocol):
    def find_by_phone(self, phone: str) -> Account | None:
        ...

    def create_account(self, phone: str, *, confirmed: bool) -> Account:
        ...

    def set_credential_and_authenticate(self, account_id: str, phone: str, secret: str) -> AuthSession:
        ...


def _digits(phone: str | None) -> str:
    return "".join(ch for ch in str(phone or "") if ch.isdigit())


class GoTrueIdentityProvider:
    """Supabase Auth (GoTrue) admin API client."""

    def __init__(
        self,
        *,
        base_url: str,
        service_key: str,
        anon_key: str | None = None,
        timeout_seconds: float = 10.0,
        page_size: int = 200,
        client: httpx.Client | None = None,
    ):
        self.base_url = str(base_url or "").rstrip("/")
        self.service_key = str(service_key or "").strip()
        self.anon_key = str(anon_key or "").strip() or self.service_key
        self.page_size = max(int(page_size), 1)
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def close(self) -> None:
        self._client.close()

    def _admin_headers(self) -> dict[str, str]:
        return {"apikey": self.service_key, "Authorization": f"Bearer {self.service_key}"}

    def _request(self, method: str, path: str, failure: type[IdentityError], **kwargs) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise failure(f"{method} {path} failed: {exc}") from exc
        if response.status_code >= 400:
            raise failure(f"{method} {path} returned {response.status_code}")
        try:
            data = response.json() if response.content else {}
        except ValueError as exc:
            raise failure(f"{method} {path} returned non-JSON body") from exc
        if not isinstance(data, dict):
            raise failure(f"{method} {path} returned unexpected payload")
        return data

    def find_by_phone(self, phone: str) -> Account | None:
        wanted = _digits(phone)
        page = 1
        while True:
            data = self._request(
                "GET",
                "/auth/v1/admin/users",
                AccountLookupFailure,
                params={"page": page, "per_page": self.page_size},
                headers=self._admin_headers(),
            )
            users = data.get("users") or []
            for user in users:
                if _digits(user.get("phone")) == wanted:
                    return Account(
                        id=str(user["id"]),
                        phone=phone,
                        phone_confirmed=bool(user.get("phone_confirmed_at")),
                    )
            if len(users) < self.page_size:
                return None
            page += 1

    def create_account(self, phone: str, *, confirmed: bool) -> Account:
        data = self._request(
            "POST",
            "/auth/v1/admin/users",
            AccountCreationFailure,
            json={"phone": phone, "phone_confirm": bool(confirmed), "user_metadata": {"phone_number": phone}},
            headers=self._admin_headers(),
        )
        user = data.get("user") if isinstance(data.get("user"), dict) else data
        if not user.get("id"):
            raise AccountCreationFailure("Identity provider returned a user without id")
        return Account(id=str(user["id"]), phone=phone, phone_confirmed=bool(confirmed))

    def set_credential_and_authenticate(self, account_id: str, phone: str, secret: str) -> AuthSession:
        self._request(
            "PUT",
            f"/auth/v1/admin/users/{account_id}",
            CredentialSetFailure,
            json={"password": secret},
            headers=self._admin_headers(),
        )
        data = self._request(
            "POST",
            "/auth/v1/token",
            SessionMintFailure,
            params={"grant_type": "password"},
            json={"phone": phone, "password": secret},
            headers={"apikey": self.anon_key},
        )
        if not data.get("access_token"):
            raise SessionMintFailure("Identity provider returned no access token")
        user = data.get("user") or {}
        return AuthSession(
            access_token=str(data["access_token"]),
            token_type=str(data.get("token_type") or "bearer"),
            expires_in=int(data.get("expires_in") or 0),
            expires_at=int(data["expires_at"]) if data.get("expires_at") is not None else None,
            refresh_token=data.get("refresh_token"),
            user_id=str(user.get("id") or account_id),
            raw=data,
        )


class LocalIdentityProvider:
    """In-process account directory for local runs and tests.

    Credentials are kept only as hashes; sessions are HS256 tokens shaped like
    the ones GoTrue hands out.
    """

    def __init__(self, *, jwt_secret: str, session_ttl_seconds: int = 3600):
        self.jwt_secret = jwt_secret
        self.session_ttl_seconds = int(session_ttl_seconds)
        self._accounts: dict[str, Account] = {}
        self._credentials: dict[str, str] = {}
        self._lock = Lock()

    def find_by_phone(self, phone: str) -> Account | None:
        with self._lock:
            for account in self._accounts.values():
                if account.phone == phone:
                    return account
        return None

    def create_account(self, phone: str, *, confirmed: bool) -> Account:
        with self._lock:
            if any(account.phone == phone for account in self._accounts.values()):
                raise AccountCreationFailure("Phone number already registered")
            account = Account(id=str(uuid.uuid4()), phone=phone, phone_confirmed=bool(confirmed))
            self._accounts[account.id] = account
        return account

    def set_credential_and_authenticate(self, account_id: str, phone: str, secret: str) -> AuthSession:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                raise CredentialSetFailure("Unknown account")
            self._credentials[account_id] = hash_code(secret)
            credential_hash = self._credentials[account_id]
        if account.phone != phone or not verify_code(secret, credential_hash):
            raise SessionMintFailure("Credential rejected")
        return issue_signed_session(
            account, jwt_secret=self.jwt_secret, ttl_seconds=self.session_ttl_seconds
        )

    def account_count(self) -> int:
        with self._lock:
            return len(self._accounts)


def issue_signed_session(account: Account, *, jwt_secret: str, ttl_seconds: int) -> AuthSession:
    now = utcnow()
    ttl = int(ttl_seconds)
    token = create_jwt(
        {
            "sub": account.id,
            "aud": "authenticated",
            "role": "authenticated",
            "phone": account.phone.lstrip("+"),
            "session_id": uuid.uuid4().hex,
        },
        jwt_secret,
        timedelta(seconds=ttl),
    )
    return AuthSession(
        access_token=token,
        token_type="bearer",
        expires_in=ttl,
        expires_at=int(now.timestamp()) + ttl,
        refresh_token=None,
        user_id=account.id,
    )


def build_identity_provider(settings: Settings) -> IdentityProvider:
    provider = str(settings.IDENTITY_PROVIDER or "local").strip().lower()
    if provider in {"", "local", "memory"}:
        _LOG.warning("Using in-process identity directory; accounts are lost on restart")
        return LocalIdentityProvider(
            jwt_secret=settings.IDENTITY_JWT_SECRET,
            session_ttl_seconds=settings.SESSION_TTL_SECONDS,
        )
    if provider in {"gotrue", "supabase"}:
        return GoTrueIdentityProvider(
            base_url=settings.IDENTITY_URL,
            service_key=settings.IDENTITY_SERVICE_KEY,
            anon_key=settings.IDENTITY_ANON_KEY,
            timeout_seconds=settings.IDENTITY_TIMEOUT_SECONDS,
            page_size=settings.IDENTITY_PAGE_SIZE,
        )
    raise IdentityError(f"Unknown IDENTITY_PROVIDER: {provider}")
