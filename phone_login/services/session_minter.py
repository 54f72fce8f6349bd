from __future__ import annotations

import logging
from typing import Protocol

from phone_login.core.config import Settings
from phone_login.core.security import generate_ephemeral_secret
from phone_login.services.errors import (
    AccountCreationFailure,
    IdentityError,
    SessionMintingFailed,
)
from phone_login.services.identity import Account, AuthSession, IdentityProvider, issue_signed_session
from phone_login.services.phone_format import mask_phone

_LOG = logging.getLogger("phone_login.session_minter")

STRATEGY_EPHEMERAL_CREDENTIAL = "ephemeral_credential"
STRATEGY_SIGNED_TOKEN = "signed_token"


class SessionStrategy(Protocol):
    def mint(self, identity: IdentityProvider, account: Account) -> AuthSession:
        ...


class EphemeralCredentialSessionStrategy:
    """One-time credential handshake for providers without trusted session issuance.

    A fresh random secret is set as the account's credential and used once to
    log in. It is never stored, logged or returned; the next OTP login
    overwrites it.
    """

    name = STRATEGY_EPHEMERAL_CREDENTIAL

    def mint(self, identity: IdentityProvider, account: Account) -> AuthSession:
        secret = generate_ephemeral_secret()
        return identity.set_credential_and_authenticate(account.id, account.phone, secret)


class SignedTokenSessionStrategy:
    """Signs the session token locally with the identity provider's JWT secret."""

    name = STRATEGY_SIGNED_TOKEN

    def __init__(self, *, jwt_secret: str, ttl_seconds: int):
        self.jwt_secret = jwt_secret
        self.ttl_seconds = int(ttl_seconds)

    def mint(self, identity: IdentityProvider, account: Account) -> AuthSession:
        return issue_signed_session(account, jwt_secret=self.jwt_secret, ttl_seconds=self.ttl_seconds)


def resolve_account(identity: IdentityProvider, phone: str) -> Account:
    account = identity.find_by_phone(phone)
    if account is not None:
        return account
    try:
        created = identity.create_account(phone, confirmed=True)
    except AccountCreationFailure:
        # Another request may have created it between lookup and create.
        account = identity.find_by_phone(phone)
        if account is None:
            raise
        return account
    _LOG.info("Created account id=%s phone=%s", created.id, mask_phone(phone))
    return created


def mint_session(phone: str, *, identity: IdentityProvider, strategy: SessionStrategy) -> AuthSession:
    """Turn a phone that just passed OTP verification into a provider session.

    Any collaborator failure is logged here and surfaced as the opaque
    ``SessionMintingFailed``.
    """
    try:
        account = resolve_account(identity, phone)
        return strategy.mint(identity, account)
    except IdentityError as exc:
        _LOG.error(
            "Session minting failed phone=%s stage=%s error=%s",
            mask_phone(phone),
            type(exc).__name__,
            exc,
        )
        raise SessionMintingFailed("Failed to create session") from exc


def build_session_strategy(settings: Settings) -> SessionStrategy:
    name = str(settings.SESSION_STRATEGY or STRATEGY_EPHEMERAL_CREDENTIAL).strip().lower()
    if name == STRATEGY_SIGNED_TOKEN:
        return SignedTokenSessionStrategy(
            jwt_secret=settings.IDENTITY_JWT_SECRET,
            ttl_seconds=settings.SESSION_TTL_SECONDS,
        )
    if name != STRATEGY_EPHEMERAL_CREDENTIAL:
        _LOG.warning("Unknown SESSION_STRATEGY=%s; using %s", name, STRATEGY_EPHEMERAL_CREDENTIAL)
    return EphemeralCredentialSessionStrategy()
