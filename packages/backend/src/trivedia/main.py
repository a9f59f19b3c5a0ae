"""FastAPI application factory.

Learn: App factory pattern. create_app() returns a configured FastAPI
instance. The process-wide collaborators (ConnectionManager,
TokenService and the rate-limit Redis client) are built here once and
stored on app.state; tests pass their own.

Nothing connects at import time. On a serverless platform the first
request into a cold instance triggers the (single) connection attempt.
"""

from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as aioredis
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from trivedia import __version__
from trivedia.api import build_api_router
from trivedia.auth.jwt import TokenService
from trivedia.config import settings
from trivedia.db.engine import ConnectionManager
from trivedia.errors import register_exception_handlers
from trivedia.log import configure_logging
from trivedia.middleware.rate_limit import RateLimitMiddleware
from trivedia.middleware.request_id import RequestIdMiddleware
from trivedia.middleware.security import SecurityHeadersMiddleware

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info(
        "trivedia.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    try:
        await app.state.redis.ping()
        logger.info("trivedia.redis_connected", url=settings.redis_url)
    except Exception as e:
        logger.warning("trivedia.redis_unavailable", error=str(e))

    yield

    logger.info("trivedia.shutdown")
    await app.state.connections.reset()
    await app.state.redis.aclose()


def _redis_from_settings() -> aioredis.Redis:
    # from_url does not connect; the first command does.
    return aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=1.0,
    )


def create_app(
    connections: Optional[ConnectionManager] = None,
    tokens: Optional[TokenService] = None,
    redis: Optional[aioredis.Redis] = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="Trivedia Flow API",
        description="Authentication and authorization core for the Trivedia Flow backend",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.connections = connections or ConnectionManager.from_settings()
    app.state.tokens = tokens or TokenService.from_settings()
    app.state.redis = redis if redis is not None else _redis_from_settings()

    register_exception_handlers(app)

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → Security → RateLimit → CORS → handler
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_middleware(
        RateLimitMiddleware,
        redis=app.state.redis,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(build_api_router())

    return app


configure_logging()

# Default app instance (used by uvicorn: trivedia.main:app)
app = create_app()
