"""Bucket: content-addressable blob storage over AT Protocol repositories."""

from __future__ import annotations

import logging

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bucket.routers import blobs, domains, health
from bucket.services.wiring import BucketServices, build_services, close_services
from shared.config import Settings, get_settings, parse_list
from shared.errors import BucketError
from shared.schemas.blobs import utc_now_iso
from shared.schemas.common import ErrorResponse

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(get_settings().log_level.upper())
    ),
)

logger = structlog.get_logger()


def _error_response(code: str, message: str, status_code: int) -> JSONResponse:
    body = ErrorResponse(
        error=code,
        message=message,
        status_code=status_code,
        timestamp=utc_now_iso(),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


async def bucket_error_handler(request: Request, exc: BucketError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, code=exc.code, error=exc.message)
    else:
        logger.info("request_rejected", path=request.url.path, code=exc.code, error=exc.message)
    return _error_response(exc.code, exc.message, exc.status_code)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", path=request.url.path, error=str(exc))
    return _error_response(BucketError.code, "Internal server error", 500)


def create_app(
    settings: Settings | None = None,
    services: BucketServices | None = None,
) -> FastAPI:
    """Build the app. Services are constructed at startup unless injected."""
    settings = settings or get_settings()
    app = FastAPI(title="Bucket", version="1.0.0")
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=parse_list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Version", "X-Domain", "X-Cache"],
    )
    app.add_exception_handler(BucketError, bucket_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(health.router)
    app.include_router(blobs.router)
    app.include_router(domains.router)

    @app.on_event("startup")
    async def startup() -> None:
        if app.state.services is None:
            app.state.services = build_services(settings)
            app.state.owns_services = True
        logger.info("bucket_startup_complete")

    @app.on_event("shutdown")
    async def shutdown() -> None:
        if getattr(app.state, "owns_services", False):
            await close_services(app.state.services)
            app.state.services = None

    return app


app = create_app()
