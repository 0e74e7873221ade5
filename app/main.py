# app/main.py
from __future__ import annotations

import sys
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, PlainTextResponse

# --- Logging & request-id ---
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response as StarletteResponse

from app.core.config import Settings, get_settings
from app.core.errors import ConfigurationError, RelayError
from app.core.logging import configure_logging, get_logger, parse_level
from app.core.request_id import request_id_scope
from api.routers.miniflux_webhook import router as miniflux_webhook_router
from services.relay_service import RelayService, build_relay_service

APP_VERSION = "1.0.0"

logger = get_logger()


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        with request_id_scope(request.headers.get("x-request-id")) as req_id:
            logger.info("request_started", method=request.method, path=str(request.url.path))
            try:
                response: StarletteResponse = await call_next(request)
            except Exception as exc:
                logger.error("request_exception", error=str(exc.__class__.__name__))
                raise
            logger.info("request_ended", status_code=response.status_code)
            response.headers["X-Request-Id"] = req_id
            return response


async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    # Reden alleen in de logs; de caller krijgt een generieke melding
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "request_rejected",
        error_type=type(exc).__name__,
        reason=str(exc),
        status_code=exc.status_code,
        path=str(request.url.path),
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.public_message})


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=dict(exc.headers or {}))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


def create_app(settings: Optional[Settings] = None, relay: Optional[RelayService] = None) -> FastAPI:
    """
    Build the ASGI app.

    Without arguments settings are loaded and the relay is built on startup
    (fail fast on missing configuration). Tests pass both in directly.
    """
    app = FastAPI(
        title="Miniflux Discord Relay",
        version=APP_VERSION,
        docs_url=None,
        redoc_url=None,
    )
    app.state.settings = settings
    app.state.relay = relay
    app.state.owns_relay = False

    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(RelayError, relay_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.on_event("startup")
    async def _startup_relay() -> None:
        if app.state.settings is None:
            app.state.settings = get_settings()
        if app.state.relay is None:
            app.state.relay = build_relay_service(app.state.settings)
            app.state.owns_relay = True
        await app.state.relay.start()
        logger.info("relay_started", version=APP_VERSION)

    @app.on_event("shutdown")
    async def _shutdown_relay() -> None:
        if app.state.relay is not None and app.state.owns_relay:
            await app.state.relay.aclose()
        logger.info("relay_stopped")

    # --- Health endpoints ---
    @app.get("/")
    async def root():
        return PlainTextResponse("Hello, world!")

    @app.get("/ping")
    async def ping():
        return {"ok": True}

    app.include_router(miniflux_webhook_router)
    return app


def main() -> None:
    """Console entry point: load settings, then serve with uvicorn."""
    try:
        settings = get_settings()
    except ConfigurationError as e:
        configure_logging(service_name="relay")
        get_logger().critical("relay_config_invalid", error=str(e))
        sys.exit(1)

    configure_logging(service_name="relay", level=parse_level(settings.LOG_LEVEL))

    import uvicorn

    # uvicorn logt zelf een bind-fout en stopt met exit code 1
    uvicorn.run(create_app(settings), host=settings.LISTEN_HOST, port=settings.LISTEN_PORT, log_config=None)


# Configureer logging voor de API (uvicorn app.main:app)
configure_logging(service_name="relay")

app = create_app()


if __name__ == "__main__":
    main()
