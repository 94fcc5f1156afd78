"""FastAPI application factory."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from wpp_gateway.api.sessions import router as sessions_router
from wpp_gateway.app_logging import configure_logging, log_unhandled_loop_errors
from wpp_gateway.containers import AppContainer
from wpp_gateway.domain.errors import (
    GatewayError,
    InvalidMediaError,
    InvalidSessionIdError,
    QRCodeNotAvailableError,
    SessionNotConnectedError,
    SessionNotFoundError,
)

_ERROR_STATUS_CODES: dict[type[GatewayError], int] = {
    SessionNotFoundError: status.HTTP_404_NOT_FOUND,
    QRCodeNotAvailableError: status.HTTP_404_NOT_FOUND,
    SessionNotConnectedError: status.HTTP_400_BAD_REQUEST,
    InvalidMediaError: status.HTTP_400_BAD_REQUEST,
    InvalidSessionIdError: status.HTTP_400_BAD_REQUEST,
}


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)
    started_at = time.monotonic()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state_container: AppContainer = app.state.container
        asyncio.get_running_loop().set_exception_handler(log_unhandled_loop_errors)
        state_container.credential_store.prepare()
        if state_container.settings.resume_sessions_on_startup:
            try:
                await state_container.session_manager.resume_persisted_sessions()
            except Exception:
                logger.exception("Failed to resume stored sessions")
        logger.info(
            "Gateway listening on %s:%s",
            state_container.settings.host,
            state_container.settings.port,
        )
        yield
        logger.info("Shutting down, closing sessions")
        try:
            await state_container.session_manager.shutdown()
        finally:
            await state_container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(sessions_router)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(
        request: Request, exc: GatewayError
    ) -> JSONResponse:
        content: dict[str, object] = {"success": False, "error": str(exc)}
        session_id = getattr(exc, "session_id", None)
        if session_id is not None:
            content["session"] = session_id
        if isinstance(exc, QRCodeNotAvailableError):
            content["message"] = "Session may be connected or not started"
        status_code = _ERROR_STATUS_CODES.get(
            type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        return JSONResponse(status_code=status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": _describe_validation_error(exc)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail},
            headers=exc.headers,
        )

    @app.get("/")
    async def index(request: Request) -> dict[str, object]:
        """Service banner."""
        state_container: AppContainer = request.app.state.container
        return {
            "status": "online",
            "message": "WhatsApp gateway is running",
            "sessions": len(state_container.session_manager.registry),
            "timestamp": datetime.now(tz=UTC).isoformat(),
        }

    @app.get("/health")
    async def health(request: Request) -> dict[str, object]:
        """Simple health check endpoint."""
        state_container: AppContainer = request.app.state.container
        return {
            "status": "healthy",
            "uptime": round(time.monotonic() - started_at, 3),
            "sessions": len(state_container.session_manager.registry),
        }

    return app


def _describe_validation_error(exc: RequestValidationError) -> str:
    """Summarize the first validation problem as a short message."""
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(
        str(part) for part in first.get("loc", ()) if part not in {"body", "query"}
    )
    message = str(first.get("msg", "Invalid value"))
    return f"{location}: {message}" if location else message
