from __future__ import annotations


class OtpAuthError(Exception):
    """Base class for everything the OTP login flow raises on purpose."""


class ValidationError(OtpAuthError):
    pass


class InvalidPhoneFormat(ValidationError):
    pass


class InvalidCodeFormat(ValidationError):
    pass


class RateLimited(OtpAuthError):
    def __init__(self, message: str, *, wait_seconds: int):
        super().__init__(message)
        self.wait_seconds = int(wait_seconds)


class PersistenceFailure(OtpAuthError):
    pass


class NotifierFailure(OtpAuthError):
    pass


class IdentityError(OtpAuthError):
    """Failures talking to the identity collaborator. Never shown to clients."""


class AccountLookupFailure(IdentityError):
    pass


class AccountCreationFailure(IdentityError):
    pass


class CredentialSetFailure(IdentityError):
    pass


class SessionMintFailure(IdentityError):
    pass


class SessionMintingFailed(OtpAuthError):
    pass
