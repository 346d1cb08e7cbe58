"""AuthCore Backend - FastAPI Application Factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.router import api_router
from app.core import settings
from app.core.lifespan import shutdown, startup
from app.core.logging import get_logger
from app.middleware import SecurityHeadersMiddleware
from app.services.errors import AuthError

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    tasks = await startup(logger)

    yield

    # Shutdown
    logger.info("Shutting down...")
    await shutdown(logger, tasks)


async def auth_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render domain errors as ``{"detail": message}`` with their status code."""
    if not isinstance(exc, AuthError):
        raise exc
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
        headers=headers,
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Authentication and session core: registration, OTP, TOTP MFA, JWT",
        version=settings.app_version,
        lifespan=lifespan,
        # Disable OpenAPI docs in production; enable via DEBUG=true
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )

    app.add_exception_handler(AuthError, auth_error_handler)

    # Security headers middleware
    app.add_middleware(SecurityHeadersMiddleware)

    # CORS middleware - MUST be outermost (added last in Starlette LIFO order)
    # so that CORS headers are present on ALL responses, including 401s.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "Accept",
            "X-Request-ID",
        ],
    )

    # Include routers (the auth guard is attached to api_router)
    app.include_router(api_router)

    return app


# Application instance
app = create_app()
