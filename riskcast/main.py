"""
FastAPI application factory with request tracing and error mapping.
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from riskcast.config import get_settings
from riskcast.errors import ConfigurationError, InvalidMetricReference, RiskcastError, StorageError
from riskcast.routers import dispatch, jobs, scores
from riskcast.utils.logging import configure_logging, get_logger

# Configure logging at module level
configure_logging()
logger = get_logger(__name__)

_STATUS_BY_ERROR = {
    StorageError: 503,
    InvalidMetricReference: 400,
    ConfigurationError: 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    settings = get_settings()

    logger.info(
        "application_startup",
        version=app.version,
        db_path=settings.db_path,
        dev_mode=settings.dev_mode,
    )

    yield

    logger.info("application_shutdown")


def create_app() -> FastAPI:
    """
    Application factory.
    Creates and configures FastAPI application instance.
    """
    app = FastAPI(
        title="Riskcast API",
        description="Baseline trigger evaluation, job leasing and decay-weighted risk scoring",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Request tracing middleware
    @app.middleware("http")
    async def request_tracing_middleware(request: Request, call_next):
        """Add request ID to all requests."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info("request_started", method=request.method, path=request.url.path)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )
        return response

    @app.exception_handler(RiskcastError)
    async def riskcast_error_handler(request: Request, exc: RiskcastError):
        status_code = next(
            (code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)),
            500,
        )
        logger.error(
            "request_failed",
            method=request.method,
            path=request.url.path,
            code=exc.code,
            error=exc.message,
        )
        return JSONResponse(
            status_code=status_code,
            content={"success": False, "error": exc.to_dict()},
        )

    # Health check endpoint
    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for load balancers and monitoring."""
        return {"status": "healthy", "version": app.version}

    # Include routers
    app.include_router(dispatch.router, prefix="/api/v1", tags=["Scheduling"])
    app.include_router(jobs.router, prefix="/api/v1/jobs", tags=["Jobs"])
    app.include_router(scores.router, prefix="/api/v1/scores", tags=["Scores"])

    logger.info("application_configured", routers_count=3)

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "riskcast.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
