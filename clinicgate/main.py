# clinicgate/main.py
import asyncio
import logging
from contextlib import asynccontextmanager

import redis
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .config import get_settings
from .core.logging import setup_logging
from .database import create_tables
from .errors import ApiAuthError
from .gate import AuthorizationGate, AuthorizationMiddleware
from .limiter import RateLimiterRegistry
from .routers import appointments, auth, health, pages

logger = logging.getLogger(__name__)


def _connect_redis(settings):
    """Redis client for the shared rate limit store, or None to stay in memory."""
    if not settings.redis_enabled:
        return None
    try:
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        client.ping()
        return client
    except redis.exceptions.RedisError as e:
        logger.warning(f"Redis not available ({e}), using in-memory rate limiting")
        return None


async def _cleanup_rate_limits(registry: RateLimiterRegistry, interval_seconds: int):
    """Periodically drop closed windows so the limiter store stays bounded."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            # Store access blocks on Redis
            await asyncio.to_thread(registry.cleanup)
        except Exception:
            # Keep the loop alive; the next pass retries
            logger.exception("Rate limit cleanup failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_tables()
    cleanup_task = asyncio.create_task(
        _cleanup_rate_limits(app.state.rate_limiters, app.state.settings.rate_limit_cleanup_interval_seconds)
    )
    try:
        yield
    finally:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass


def create_app(settings=None, rate_limiters: RateLimiterRegistry = None, gate: AuthorizationGate = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_json)

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.settings = settings
    app.state.rate_limiters = rate_limiters or RateLimiterRegistry.from_settings(
        settings, redis_client=_connect_redis(settings)
    )

    # Added first so CORS stays outermost and preflight requests skip the gate
    app.add_middleware(AuthorizationMiddleware, gate=gate or AuthorizationGate(), settings=settings)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS", "HEAD"],
        allow_headers=["*"],
    )

    @app.exception_handler(ApiAuthError)
    async def api_auth_error_handler(request: Request, exc: ApiAuthError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"Unhandled database error on {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )

    app.include_router(auth.router)
    app.include_router(appointments.router)
    app.include_router(health.router)
    app.include_router(pages.router)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("clinicgate.main:app", host="0.0.0.0", port=8000)
