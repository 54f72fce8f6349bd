from fastapi import Request

from phone_login.services.identity import IdentityProvider
from phone_login.services.notifier import Notifier
from phone_login.services.rate_limit import RequestLimiter
from phone_login.services.session_minter import SessionStrategy


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_identity_provider(request: Request) -> IdentityProvider:
    return request.app.state.identity


def get_session_strategy(request: Request) -> SessionStrategy:
    return request.app.state.session_strategy


def get_request_limiter(request: Request) -> RequestLimiter:
    return request.app.state.request_limiter
