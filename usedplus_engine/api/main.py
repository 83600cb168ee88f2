"""FastAPI application factory"""

import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from usedplus_engine.api.dependencies import get_request_id
from usedplus_engine.api.middleware import RequestIDMiddleware, MetricsMiddleware
from usedplus_engine.api.v1 import accounts, clock, credit, deals, marketplace
from usedplus_engine.domain.exceptions import (
    CollaboratorError,
    DomainException,
    DomainStateError,
    NotFoundError,
    ValidationError,
)
from usedplus_engine.infrastructure.observability.logging import setup_logging
from usedplus_engine.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def error_status(exc: DomainException) -> int:
    """Map the domain error taxonomy onto HTTP status codes"""
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, DomainStateError):
        return 409
    if isinstance(exc, CollaboratorError):
        return 503
    return 400


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="UsedPlus Finance Engine",
        description="Deal servicing, credit scoring and agent marketplace simulation",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException):
        status_code = error_status(exc)
        log = logging.error if status_code == 503 else logging.warning
        log(f"{type(exc).__name__}: {exc}", extra={"request_id": get_request_id(request)})
        return JSONResponse(status_code=status_code, content={"error": type(exc).__name__, "detail": str(exc)})

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(deals.router, prefix="/v1", tags=["deals"])
    app.include_router(marketplace.router, prefix="/v1", tags=["marketplace"])
    app.include_router(credit.router, prefix="/v1", tags=["credit"])
    app.include_router(clock.router, prefix="/v1", tags=["clock"])
    app.include_router(accounts.router, prefix="/v1", tags=["accounts"])

    return app


app = create_app()
