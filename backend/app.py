"""FastAPI backend for the PHI identity document pipeline."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from bootstrap import Services, build_services
from errors import IdentityServiceError, StorageError
from routes import audit_router, blobs_router, identity_router, limiter
from utils.sanitization import configure_logging, sanitize_log_value

logger = logging.getLogger(__name__)

SERVICE_NAME = "identity-document-service"
GENERIC_STORAGE_ERROR = "Storage temporarily unavailable"


async def handle_service_error(request: Request, exc: IdentityServiceError) -> JSONResponse:
    """Map the pipeline's error taxonomy onto HTTP status codes."""
    if isinstance(exc, StorageError):
        logger.error(f"Storage failure on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"detail": GENERIC_STORAGE_ERROR})
    if exc.status_code >= 500:
        logger.error(f"Unhandled pipeline error on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Drop "input" from each error: it can echo PHI back from the request body
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]
    logger.info(
        f"Rejected request to {sanitize_log_value(request.url.path)}: "
        f"{len(errors)} validation error(s)"
    )
    return JSONResponse(status_code=400, content={"detail": "Invalid request", "errors": errors})


def create_app(services: Services | None = None) -> FastAPI:
    """Create the API application.

    Args:
        services: Pre-built dependencies; when omitted they are built from
            the environment at startup and released at shutdown
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned: Services | None = None
        if getattr(app.state, "services", None) is None:
            configure_logging()
            owned = build_services()
            app.state.services = owned
            limiter.enabled = owned.settings.rate_limit_enabled
        logger.info("Identity API started")

        yield

        if owned is not None:
            owned.close()
            app.state.services = None
            logger.info("Identity API resources released")

    app = FastAPI(
        title="PHI Identity Document Service",
        description="Multi-tenant identity document intake and verification",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services
    if services is not None:
        limiter.enabled = services.settings.rate_limit_enabled

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(IdentityServiceError, handle_service_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)

    app.include_router(identity_router)
    app.include_router(blobs_router)
    app.include_router(audit_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app


app = create_app()
