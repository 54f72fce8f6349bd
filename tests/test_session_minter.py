import unittest
from unittest.mock import patch

from tests import base  # noqa: F401  (test environment defaults)

from phone_login.core.config import Settings
from phone_login.core.security import decode_jwt
from phone_login.services.errors import (
    AccountCreationFailure,
    AccountLookupFailure,
    CredentialSetFailure,
    SessionMintingFailed,
)
from phone_login.services.identity import Account, AuthSession, LocalIdentityProvider
from phone_login.services.session_minter import (
    EphemeralCredentialSessionStrategy,
    SignedTokenSessionStrategy,
    build_session_strategy,
    mint_session,
)

PHONE = "+15551234567"
JWT_SECRET = "test-identity-secret"


class _RecordingIdentity:
    def __init__(self, *, existing: Account | None = None, fail_on: str | None = None):
        self.existing = existing
        self.fail_on = fail_on
        self.created: list[str] = []
        self.secrets: list[str] = []

    def find_by_phone(self, phone: str) -> Account | None:
        if self.fail_on == "lookup":
            raise AccountLookupFailure("GET /auth/v1/admin/users returned 503")
        return self.existing

    def create_account(self, phone: str, *, confirmed: bool) -> Account:
        if self.fail_on == "create":
            raise AccountCreationFailure("POST /auth/v1/admin/users returned 500")
        self.created.append(phone)
        self.existing = Account(id="acc-new", phone=phone, phone_confirmed=confirmed)
        return self.existing

    def set_credential_and_authenticate(self, account_id: str, phone: str, secret: str) -> AuthSession:
        if self.fail_on == "credential":
            raise CredentialSetFailure("PUT /auth/v1/admin/users/acc returned 422")
        self.secrets.append(secret)
        return AuthSession(
            access_token=f"token-for-{account_id}",
            token_type="bearer",
            expires_in=3600,
            expires_at=None,
            refresh_token="refresh",
            user_id=account_id,
        )


class SessionMinterTests(unittest.TestCase):
    def setUp(self):
        self.identity = LocalIdentityProvider(jwt_secret=JWT_SECRET, session_ttl_seconds=600)
        self.strategy = EphemeralCredentialSessionStrategy()

    def test_new_phone_gets_confirmed_account(self):
        session = mint_session(PHONE, identity=self.identity, strategy=self.strategy)
        account = self.identity.find_by_phone(PHONE)
        self.assertIsNotNone(account)
        self.assertTrue(account.phone_confirmed)
        self.assertEqual(session.user_id, account.id)
        claims = decode_jwt(session.access_token, JWT_SECRET, audience="authenticated")
        self.assertEqual(claims["sub"], account.id)
        self.assertEqual(claims["phone"], "15551234567")

    def test_existing_account_is_reused(self):
        first = mint_session(PHONE, identity=self.identity, strategy=self.strategy)
        second = mint_session(PHONE, identity=self.identity, strategy=self.strategy)
        self.assertEqual(first.user_id, second.user_id)
        self.assertEqual(self.identity.account_count(), 1)
        self.assertNotEqual(first.access_token, second.access_token)

    def test_existing_account_skips_creation(self):
        identity = _RecordingIdentity(existing=Account(id="acc-1", phone=PHONE, phone_confirmed=True))
        session = mint_session(PHONE, identity=identity, strategy=self.strategy)
        self.assertEqual(session.user_id, "acc-1")
        self.assertEqual(identity.created, [])

    def test_each_mint_uses_fresh_secret_that_is_not_returned(self):
        identity = _RecordingIdentity(existing=Account(id="acc-1", phone=PHONE))
        first = mint_session(PHONE, identity=identity, strategy=self.strategy)
        mint_session(PHONE, identity=identity, strategy=self.strategy)
        self.assertEqual(len(identity.secrets), 2)
        self.assertNotEqual(identity.secrets[0], identity.secrets[1])
        self.assertGreaterEqual(len(identity.secrets[0]), 48)
        self.assertNotIn(identity.secrets[0], str(first.as_public_dict()))

    def test_collaborator_failures_are_opaque(self):
        for stage in ("lookup", "create", "credential"):
            with self.subTest(stage=stage):
                identity = _RecordingIdentity(fail_on=stage)
                if stage == "credential":
                    identity.existing = Account(id="acc-1", phone=PHONE)
                with self.assertRaises(SessionMintingFailed) as ctx:
                    mint_session(PHONE, identity=identity, strategy=self.strategy)
                self.assertEqual(str(ctx.exception), "Failed to create session")

    def test_create_race_falls_back_to_lookup(self):
        identity = _RecordingIdentity(fail_on="create")
        winner = Account(id="acc-race", phone=PHONE, phone_confirmed=True)
        with patch.object(identity, "find_by_phone", side_effect=[None, winner]):
            session = mint_session(PHONE, identity=identity, strategy=self.strategy)
        self.assertEqual(session.user_id, "acc-race")

    def test_signed_token_strategy_skips_credential_handshake(self):
        identity = _RecordingIdentity(existing=Account(id="acc-1", phone=PHONE))
        strategy = SignedTokenSessionStrategy(jwt_secret=JWT_SECRET, ttl_seconds=120)
        session = mint_session(PHONE, identity=identity, strategy=strategy)
        self.assertEqual(identity.secrets, [])
        self.assertEqual(session.expires_in, 120)
        claims = decode_jwt(session.access_token, JWT_SECRET, audience="authenticated")
        self.assertEqual(claims["sub"], "acc-1")
        self.assertEqual(claims["role"], "authenticated")

    def test_strategy_selection_from_settings(self):
        signed = build_session_strategy(Settings(SESSION_STRATEGY="signed_token"))
        self.assertIsInstance(signed, SignedTokenSessionStrategy)
        default = build_session_strategy(Settings(SESSION_STRATEGY="something_else"))
        self.assertIsInstance(default, EphemeralCredentialSessionStrategy)


class LocalIdentityProviderTests(unittest.TestCase):
    def test_duplicate_phone_is_rejected(self):
        identity = LocalIdentityProvider(jwt_secret=JWT_SECRET)
        identity.create_account(PHONE, confirmed=True)
        with self.assertRaises(AccountCreationFailure):
            identity.create_account(PHONE, confirmed=True)

    def test_unknown_account_cannot_authenticate(self):
        identity = LocalIdentityProvider(jwt_secret=JWT_SECRET)
        with self.assertRaises(CredentialSetFailure):
            identity.set_credential_and_authenticate("missing", PHONE, "secret")
