import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from phone_login.core.config import Settings, settings
from phone_login.core.http_hardening import install_http_hardening
from phone_login.api.public.router import router as public_router
from phone_login.services.identity import build_identity_provider
from phone_login.services.notifier import build_notifier
from phone_login.services.phone_format import INVALID_CODE_MESSAGE, INVALID_PHONE_MESSAGE
from phone_login.services.rate_limit import build_request_limiter
from phone_login.services.session_minter import build_session_strategy

_LOG = logging.getLogger("phone_login.main")

INVALID_BODY_MESSAGE = "Invalid request body"


def _validation_message(exc: RequestValidationError) -> str:
    for error in exc.errors():
        loc = tuple(error.get("loc") or ())
        if "otp" in loc:
            return INVALID_CODE_MESSAGE
        if "phoneNumber" in loc or "phone_number" in loc:
            return INVALID_PHONE_MESSAGE
    return INVALID_BODY_MESSAGE


def _close_quietly(handle) -> None:
    close = getattr(handle, "close", None)
    if callable(close):
        close()


@asynccontextmanager
async def _lifespan(app: FastAPI):
    yield
    _close_quietly(app.state.notifier)
    _close_quietly(app.state.identity)


def create_app(config: Settings = settings) -> FastAPI:
    app = FastAPI(title=config.APP_NAME, version="0.1.0", lifespan=_lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_http_hardening(app)

    # Process-wide collaborator handles; endpoints get them through Depends.
    app.state.notifier = build_notifier(config)
    app.state.identity = build_identity_provider(config)
    app.state.session_strategy = build_session_strategy(config)
    app.state.request_limiter = build_request_limiter(config)

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(request: Request, exc: RequestValidationError):
        _LOG.info("Rejected request body on %s errors=%s", request.url.path, len(exc.errors()))
        return JSONResponse(status_code=400, content={"error": _validation_message(exc)})

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception):
        _LOG.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "An unexpected error occurred"})

    app.include_router(public_router, prefix="/api/public")

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
