"""
User Profiles API — FastAPI Application Entry Point

Production-ready application with:
- Async lifespan management (DB engine + session factory + UserService)
- CORS, timeout, and structured-logging middleware
- Health-check endpoints (liveness + deep readiness)
- Active-request tracking for graceful shutdown
- Uniform ``{status, message, ...}`` error envelopes
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from app.api.errors import register_error_handlers
from app.config import Settings, get_settings
from app.database import create_engine, create_session_factory
from app.services.user_service import UserService

# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(0),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger("profiles")

# ---------------------------------------------------------------------------
# Active request counter for graceful shutdown
# ---------------------------------------------------------------------------

DRAIN_TIMEOUT_SECONDS = 15


class ActiveRequests:
    """Counts in-flight requests so shutdown can wait for them."""

    def __init__(self) -> None:
        self._count = 0
        self._lock = asyncio.Lock()

    @property
    def count(self) -> int:
        return self._count

    async def increment(self) -> None:
        async with self._lock:
            self._count += 1

    async def decrement(self) -> None:
        async with self._lock:
            self._count -= 1

    async def drain(self, timeout: float = DRAIN_TIMEOUT_SECONDS) -> None:
        """Wait until all in-flight requests complete or timeout expires."""
        deadline = time.monotonic() + timeout
        while True:
            async with self._lock:
                if self._count <= 0:
                    break
            if time.monotonic() >= deadline:
                logger.warning(
                    "drain_timeout_exceeded",
                    remaining_requests=self._count,
                )
                break
            await asyncio.sleep(0.25)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup and shutdown of long-lived resources.

    When ``create_app`` was given a session factory the store is owned by
    the caller and nothing is created or disposed here.
    """
    settings: Settings = app.state.settings

    logger.info(
        "startup_begin",
        environment=settings.ENVIRONMENT,
        log_level=settings.LOG_LEVEL,
    )

    engine = None
    if getattr(app.state, "user_service", None) is None:
        engine = create_engine(settings)
        # Issuing a simple query warms the pool.
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("database_pool_initialised")

        app.state.session_factory = create_session_factory(engine)
        app.state.user_service = UserService(app.state.session_factory)

    logger.info("startup_complete")

    yield

    logger.info("shutdown_begin")

    await app.state.active_requests.drain()

    if engine is not None:
        await engine.dispose()
        logger.info("database_pool_closed")

    logger.info("shutdown_complete")


# ---------------------------------------------------------------------------
# Middleware classes
# ---------------------------------------------------------------------------

class TimeoutMiddleware(BaseHTTPMiddleware):
    """Abort requests that exceed a configurable wall-clock timeout.

    The handler task is cancelled at the deadline; service writes are single
    statements, so a cancelled request never leaves a partial write.
    """

    def __init__(self, app, timeout_seconds: float = 30.0) -> None:
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await asyncio.wait_for(
                call_next(request),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "request_timeout",
                method=request.method,
                path=request.url.path,
                timeout=self.timeout_seconds,
            )
            return JSONResponse(
                status_code=504,
                content={"status": "error", "message": "Request timed out"},
            )


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with method, path, status code, and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        active: ActiveRequests = request.app.state.active_requests

        await active.increment()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception(
                "request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
            )
            raise
        finally:
            await active.decrement()

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "request_handled",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        return response


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    ``session_factory`` substitutes the store (tests pass one bound to a
    SQLite database); without it the lifespan builds the engine from
    ``settings`` at startup.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="User Profiles API",
        description="CRUD service for user profiles with QR profile exchange",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
    )
    app.state.settings = settings
    app.state.active_requests = ActiveRequests()
    app.state.user_service = None
    if session_factory is not None:
        app.state.session_factory = session_factory
        app.state.user_service = UserService(session_factory)

    # -- Middleware (applied in reverse order — last added runs first) ------ #

    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(TimeoutMiddleware, timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    # -- Health-check endpoints -------------------------------------------- #

    @app.get("/health", tags=["health"])
    async def health_liveness() -> dict:
        """Lightweight liveness probe."""
        return {"status": "success", "message": "Server is running"}

    @app.get("/health/deep", tags=["health"])
    async def health_deep(request: Request) -> JSONResponse:
        """Deep readiness probe — verifies database connectivity."""
        result: dict = {"status": "success", "database": "connected"}
        try:
            async with request.app.state.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except Exception as exc:
            logger.error("health_db_failure", error=str(exc))
            result["status"] = "error"
            result["database"] = "unavailable"
            return JSONResponse(status_code=503, content=result)
        return JSONResponse(content=result)

    # -- API router -------------------------------------------------------- #

    from app.api.router import router as api_router

    app.include_router(api_router, prefix=settings.API_PREFIX)

    return app


def __getattr__(name: str):
    # ``uvicorn app.main:app``: built on first access so importing this
    # module (tests, scripts) does not require a configured environment.
    if name == "app":
        application = create_app()
        globals()["app"] = application
        return application
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
