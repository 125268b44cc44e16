"""booking-progress - hierarchical progress tracking for bookings."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from src.core.config import constants, settings
from src.core.db_client import close_connection, init_db
from src.core.logging import configure_logfire, instrument_fastapi
from src.core.redis_client import redis_client
from src.interface.progress_router import router as progress_router
from src.modules.progress.gateway import drain_background_cascades, pending_background_cascades
from src.modules.progress.rollup import get_rollup_policy


logger = logging.getLogger(__name__)


async def check_rollup_service_connectivity() -> None:
    """Verify the remote rollup service (optional service).

    Only checks if a remote rollup service is configured. An unreachable
    service is logged, not fatal: cascades fall back to the local rollup.
    """
    if not settings.rollup_service_url:
        logger.info("startup_validation", extra={"service": "rollup", "status": "database"})
        return

    try:
        async with httpx.AsyncClient(timeout=constants.API_TIMEOUT_SECONDS) as client:
            response = await client.get(f"{settings.rollup_service_url.rstrip('/')}/health")
            if response.is_success:
                logger.info("startup_validation", extra={"service": "rollup", "status": "ok"})
            else:
                logger.warning(
                    "startup_validation",
                    extra={"service": "rollup", "status": "unavailable", "http_status": response.status_code},
                )
    except httpx.RequestError as e:
        logger.warning("startup_validation", extra={"service": "rollup", "status": "unavailable", "error": str(e)})


async def check_redis_connectivity() -> None:
    """Verify Redis connectivity (optional service).

    Only checks if Redis is configured. Logs warning if unavailable but doesn't fail.
    """
    if not redis_client.is_available:
        logger.info("startup_validation", extra={"service": "redis", "status": "disabled"})
        return

    result = await redis_client.ping()
    if result:
        logger.info("startup_validation", extra={"service": "redis", "status": "ok"})
    else:
        logger.warning("startup_validation", extra={"service": "redis", "status": "unavailable"})


async def validate_startup_configuration() -> None:
    """Validate configuration and optional external services.

    Raises:
        SystemExit: If required configuration is missing
    """
    logger.info("startup_validation_begin")

    try:
        if settings.rollup_service_url and settings.is_production:
            settings.require_credential("rollup_service_api_key", "Rollup service API key")
        logger.info("startup_validation", extra={"stage": "credentials", "status": "ok"})

        await check_rollup_service_connectivity()
        await check_redis_connectivity()

        logger.info("startup_validation_complete", extra={"status": "ok"})
    except ValueError as e:
        logger.error("startup_validation_failed", extra={"error": str(e)})
        print(f"\n❌ Startup validation failed: {e}\n", file=sys.stderr)  # noqa: T201
        sys.exit(1)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Startup
    # Configure logging first so validation logs are captured
    configure_logfire()

    await validate_startup_configuration()

    await init_db()
    logger.info("Database initialized")

    yield
    # Shutdown
    await drain_background_cascades()
    await redis_client.close()
    await close_connection()


app = FastAPI(
    title="booking-progress",
    description="Task, milestone and booking progress tracking",
    version="0.1.0",
    lifespan=lifespan,
)

# Instrument FastAPI with Logfire
instrument_fastapi(app)

# Register routers
app.include_router(progress_router)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "healthy"}, status_code=200)


@app.get("/health/rollup")
async def rollup_health_check() -> JSONResponse:
    """Rollup health: primary circuit breaker, background cascades and cache state."""
    policy = get_rollup_policy()
    breaker_state = policy.breaker.state.value
    overall_status = "healthy" if breaker_state == "closed" else "degraded"

    return JSONResponse(
        content={
            "status": overall_status,
            "primary": "remote" if settings.rollup_service_url else "database",
            "circuit_breaker": {"state": breaker_state, "failure_count": policy.breaker.failure_count},
            "background_cascades": pending_background_cascades(),
            "cache": redis_client.get_health_status(),
        },
        status_code=200,
    )
