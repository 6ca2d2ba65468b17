"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from keyward import __version__
from keyward.config.logging import setup_logging
from keyward.config.settings import get_settings
from keyward.exceptions import KeywardError, VerificationError
from keyward.web.middleware import RequestIDMiddleware
from keyward.web.routes.security_keys import router as security_keys_router

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def _lifespan(_app: FastAPI) -> AsyncIterator[None]:
    from keyward.storage.database import init_db

    await init_db()
    yield


async def keyward_error_handler(request: Request, exc: KeywardError) -> JSONResponse:
    """Render a keyward error as JSON without leaking which check failed."""
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, reason=exc.reason, error=str(exc))
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.public_message, "reason": _public_reason(exc)},
    )


def _public_reason(exc: KeywardError) -> str:
    # Verification failures are logged distinctly but reported generically.
    if isinstance(exc, VerificationError):
        return VerificationError.reason
    return exc.reason


def create_app(init_database: bool = True) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_output=not settings.debug)

    app = FastAPI(
        title="keyward",
        description="WebAuthn security key registration",
        version=__version__,
        lifespan=_lifespan if init_database else None,
    )
    app.add_exception_handler(KeywardError, keyward_error_handler)
    app.add_middleware(RequestIDMiddleware)
    app.include_router(security_keys_router)
    return app
