"""
Portfolio Management API application.

``create_app`` wires together configuration, structured logging, the middleware
stack, the portfolio routes and the storage backend. The storage backend can be
injected (tests); otherwise it is built from settings, the in-memory backend
immediately and the MongoDB backend during lifespan startup.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from portfolio_api import api
from portfolio_api.config import Settings, settings as default_settings
from portfolio_api.exceptions import ApiError
from portfolio_api.logging_config import RequestLoggingMiddleware, get_logger, setup_logging
from portfolio_api.rate_limit import RateLimitMiddleware, SlidingWindowRateLimiter
from portfolio_api.repository import PortfolioRepository, create_repository
from portfolio_api.security_middleware import (
    BasicErrorHandlingMiddleware,
    BodySizeLimitMiddleware,
    SecurityHeadersMiddleware,
)

SERVICE_NAME = "Portfolio Management API"
SERVICE_VERSION = "1.0.0"

logger = get_logger(__name__)


async def startup_sequence(app: FastAPI) -> None:
    """Connect the storage backend if the application does not have one yet."""
    config: Settings = app.state.settings
    if app.state.repository is not None:
        logger.info("Using preconfigured storage backend",
                    backend=type(app.state.repository).__name__)
        return

    logger.info("Initializing storage backend", backend=config.storage_backend)
    repository = create_repository(config)
    await repository.connect()
    app.state.repository = repository
    app.state.owns_repository = True


async def shutdown_sequence(app: FastAPI) -> None:
    """Release the storage backend created at startup."""
    logger.info("Portfolio service shutting down gracefully")
    repository: Optional[PortfolioRepository] = app.state.repository
    if repository is not None and app.state.owns_repository:
        try:
            await repository.close()
        except Exception as e:
            logger.error("Error closing storage backend", error=str(e), error_type=type(e).__name__)
    logger.info("Portfolio service shutdown completed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan context manager for startup and shutdown.

    Process signals (SIGTERM/SIGINT) are handled by uvicorn, which runs the
    shutdown half of this context before exiting.
    """
    await startup_sequence(app)
    try:
        yield
    finally:
        await shutdown_sequence(app)


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unmatched routes (and unsupported methods) answer 404 with the requested URL."""
    if exc.status_code in (404, 405):
        requested_url = request.url.path
        if request.url.query:
            requested_url = f"{requested_url}?{request.url.query}"
        return JSONResponse(status_code=404, content={"error": "Endpoint not found", "requestedUrl": requested_url})
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": str(exc.detail)},
                        headers=getattr(exc, "headers", None))


def create_middleware_stack(app: FastAPI, config: Settings) -> None:
    """
    Install the middleware chain.

    Middleware is applied in reverse order (last added = outermost). Request
    order: CORS -> security headers -> request logging -> error handling ->
    rate limiting -> body size limit -> app. Keeping CORS and security headers
    outside the fault boundary puts them on error responses too.
    """
    app.add_middleware(BodySizeLimitMiddleware, max_body_bytes=config.max_body_bytes)
    app.add_middleware(RateLimitMiddleware, limiter=app.state.rate_limiter)
    app.add_middleware(BasicErrorHandlingMiddleware, include_error_details=config.is_development())
    app.add_middleware(RequestLoggingMiddleware, logger=get_logger("portfolio_api.requests"))
    app.add_middleware(SecurityHeadersMiddleware, strict_mode=config.is_production())
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )


def create_app(config: Optional[Settings] = None, repository: Optional[PortfolioRepository] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Settings to use (defaults to the environment-derived settings)
        repository: Storage backend to use instead of the configured one
    """
    config = config or default_settings
    setup_logging(log_level=config.log_level)

    app = FastAPI(
        title=SERVICE_NAME,
        description="CRUD API for tracking portfolio holdings",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )

    if repository is None and config.storage_backend == "memory":
        repository = create_repository(config)
    app.state.settings = config
    app.state.repository = repository
    app.state.owns_repository = False
    app.state.rate_limiter = SlidingWindowRateLimiter(
        max_requests=config.rate_limit_max_requests,
        window_seconds=config.rate_limit_window_ms / 1000,
    )

    create_middleware_stack(app, config)
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    portfolio_path = f"{config.api_base_path}/portfolio"
    app.include_router(api.router, prefix=portfolio_path, tags=["portfolio"])

    @app.get("/health", tags=["health"])
    async def health():
        """Liveness check; 200 whenever the process is serving requests."""
        return {
            "status": "OK",
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "service": SERVICE_NAME,
        }

    @app.get("/health/ready", tags=["health"])
    async def readiness(request: Request):
        """Readiness check; 503 when the storage backend does not answer."""
        repository = request.app.state.repository
        ready = repository is not None and await repository.ping()
        return JSONResponse(
            status_code=200 if ready else 503,
            content={
                "status": "ready" if ready else "not_ready",
                "storage": config.storage_backend,
            },
        )

    @app.get("/", tags=["root"])
    async def root():
        """Root endpoint with service information."""
        return {
            "message": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "endpoints": {
                "health": "/health",
                "portfolio": portfolio_path,
                "summary": f"{portfolio_path}/stats/summary",
            },
        }

    logger.info(
        "Portfolio service configured",
        environment=config.environment,
        storage_backend=config.storage_backend,
        api_base_path=config.api_base_path,
    )
    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the application with uvicorn."""
    import uvicorn

    logger.info(
        "Starting Portfolio Management API server",
        host=default_settings.host,
        port=default_settings.port,
        environment=default_settings.environment,
    )
    uvicorn.run(
        "portfolio_api.main:app",
        host=default_settings.host,
        port=default_settings.port,
        log_level="info" if default_settings.is_development() else "warning",
    )


if __name__ == "__main__":
    run()
