"""
FastAPI application for Comments Collator.

This is the main entry point for the HTTP API, providing:
- Figma OAuth login and plugin session endpoints
- Comment listing, posting and resolution endpoints
- Comment sync and file permission endpoints
- The Figma webhook receiver
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from collator import __version__
from collator.api.api_routes import router as api_router
from collator.api.auth_routes import router as auth_router
from collator.api.comment_routes import router as comment_router
from collator.api.middleware import RequestLoggingMiddleware
from collator.api.models import HealthResponse
from collator.api.webhook_routes import router as webhook_router
from collator.config import Settings, get_settings
from collator.container import ServiceContainer
from collator.database import check_connection, init_db
from collator.exceptions import CollatorError

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Set the root log level and format once per process."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger().setLevel(settings.log_level)


# =============================================================================
# Application Lifecycle
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings: Settings = app.state.settings
    configure_logging(settings)

    logger.info(f"Starting Comments Collator API ({settings.python_env})")
    settings.validate_production_config()

    if getattr(app.state, "container", None) is None:
        app.state.container = ServiceContainer.build(settings)
    init_db(app.state.container.engine)
    logger.info("Comments Collator API started")

    yield

    logger.info("Shutting down Comments Collator API")
    app.state.container.db_executor.shutdown(wait=True)
    app.state.container.engine.dispose()


# =============================================================================
# Exception Handlers
# =============================================================================


def _error_body(error_type: str, message: str, retryable: bool, detail: Optional[str] = None) -> dict:
    body = {"error_type": error_type, "message": message, "retryable": retryable}
    if detail is not None:
        body["detail"] = detail
    return body


async def collator_error_handler(request: Request, exc: CollatorError):
    """Render application errors with their own status and type."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_type}: {exc.message}")
    else:
        logger.info(f"{exc.error_type}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.error_type, exc.message, exc.retryable),
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with consistent format."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body("http_error", str(exc.detail), exc.status_code >= 500),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Render malformed requests as 400 validation errors."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = f"{location}: {first.get('msg', 'Invalid request')}" if location else "Invalid request"
    return JSONResponse(status_code=400, content=_error_body("validation_error", message, False))


async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions. Detail is only exposed in development."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    settings: Settings = request.app.state.settings
    detail = f"{type(exc).__name__}: {exc}" if settings.is_development else None
    return JSONResponse(
        status_code=500,
        content=_error_body("internal_error", "An unexpected error occurred", True, detail),
    )


# =============================================================================
# FastAPI Application
# =============================================================================


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings (loaded from the environment if None)
        container: Pre-built services (built at startup if None)
    """
    settings = settings or (container.settings if container else get_settings())

    app = FastAPI(
        title="Comments Collator API",
        description="""
# Comments Collator API

Backend for the Comments Collator Figma plugin: Figma login, a local
cache of file comments kept in sync with Figma, and per-file permissions.

## Authentication
1. **GET /auth/figma** - Start Figma login (optionally scoped to a file)
2. **GET /auth/figma/callback** - Returns the bearer session token
3. Send `Authorization: Bearer <session_token>` on every /api request

## Error Format
Errors return `{error_type, message, retryable}`:
- **400** - Invalid request
- **401** - Missing or expired session, bad webhook signature
- **403** - Insufficient file permission
- **404** - Unknown file, comment or user
- **502** - Figma API failure
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.container = container

    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(auth_router)
    app.include_router(api_router)
    app.include_router(comment_router)
    app.include_router(webhook_router)

    app.add_exception_handler(CollatorError, collator_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    @app.get(
        "/health",
        response_model=HealthResponse,
        summary="Health check",
        tags=["System"],
    )
    async def health_check(request: Request) -> HealthResponse:
        """Check API and database health."""
        current = request.app.state.container
        database_connected = current is not None and await current.run(check_connection, current.engine)
        return HealthResponse(
            status="healthy" if database_connected else "unhealthy",
            version=__version__,
            database_connected=database_connected,
            environment=request.app.state.settings.python_env,
        )

    return app


app = create_app()


# =============================================================================
# Run with Uvicorn
# =============================================================================


def run_server(host: Optional[str] = None, port: Optional[int] = None, reload: bool = False):
    """Run the API server with Uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "collator.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
    )


if __name__ == "__main__":
    run_server(reload=True)
