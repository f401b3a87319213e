"""
Health Check Endpoints

Liveness, readiness and a development-only detailed view of the booking
engine's configuration.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Literal, Optional

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from booking_bot.config import settings
from booking_bot.infra.background import get_background_tasks
from booking_bot.infra.database import check_db_health
from booking_bot.infra.redis import check_redis_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

VERSION = "0.1.0"

DependencyStatus = Literal["ok", "failed", "error"]

# Resolved at call time. Redis failures degrade to in-memory contexts but still fail readiness
DEPENDENCIES: dict[str, Callable[[], Awaitable[bool]]] = {
    "database": lambda: check_db_health(),
    "redis": lambda: check_redis_health(),
}

_start_time: Optional[datetime] = None


def set_start_time() -> None:
    """Record process start. Called once from the lifespan."""
    global _start_time
    _start_time = datetime.now(timezone.utc)


def get_uptime_seconds() -> Optional[float]:
    if _start_time is None:
        return None
    return (datetime.now(timezone.utc) - _start_time).total_seconds()


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
    environment: str


class ReadyResponse(BaseModel):
    """Readiness with per-dependency status."""
    status: str
    timestamp: datetime
    checks: dict[str, DependencyStatus]


class LiveResponse(BaseModel):
    status: str
    timestamp: datetime
    uptime_seconds: Optional[float] = None


class DetailedHealthResponse(ReadyResponse):
    """Readiness plus uptime and booking engine settings."""
    version: str
    environment: str
    uptime_seconds: Optional[float]
    config: dict[str, str]


async def _run_checks() -> dict[str, DependencyStatus]:
    checks: dict[str, DependencyStatus] = {}
    for name, check in DEPENDENCIES.items():
        try:
            checks[name] = "ok" if await check() else "failed"
        except Exception as e:
            logger.error(f"Health check {name} raised: {e}")
            checks[name] = "error"
        if checks[name] != "ok":
            logger.warning(f"Dependency {name} is {checks[name]}")
    return checks


def _booking_engine_config() -> dict[str, str]:
    """Non-secret settings that change booking behaviour."""
    return {
        "environment": settings.app_env,
        "debug": str(settings.debug),
        "email_collection_mode": settings.email_collection_mode,
        "payments_enabled": str(settings.payments_enabled and bool(settings.stripe_api_key)),
        "strict_payment_enforcement": str(settings.strict_payment_enforcement),
        "business_timezone": settings.business_timezone,
        "context_ttl_seconds": str(settings.context_ttl_seconds),
        "background_tasks": str(get_background_tasks().pending),
    }


@router.get(
    "",
    response_model=HealthResponse,
    summary="Basic health check",
    description="Returns 200 while the process serves requests. Dependencies are not checked.",
)
async def health() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=VERSION,
        environment=settings.app_env,
    )


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness check",
    responses={
        200: {"description": "Database and Redis reachable"},
        503: {"description": "A dependency is unavailable"},
    },
)
async def ready() -> ReadyResponse:
    """Readiness check. Returns 503 with the check map when anything is down."""
    checks = await _run_checks()
    all_ok = all(result == "ok" for result in checks.values())
    response = ReadyResponse(
        status="ready" if all_ok else "not_ready",
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )
    if not all_ok:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )
    return response


@router.get("/live", response_model=LiveResponse, summary="Liveness check")
async def live() -> LiveResponse:
    return LiveResponse(
        status="alive",
        timestamp=datetime.now(timezone.utc),
        uptime_seconds=get_uptime_seconds(),
    )


@router.get(
    "/detailed",
    response_model=DetailedHealthResponse,
    summary="Detailed health check",
    include_in_schema=settings.is_development,
)
async def detailed() -> DetailedHealthResponse:
    """Dependency checks plus booking settings. 404 outside development."""
    if not settings.is_development:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    checks = await _run_checks()
    return DetailedHealthResponse(
        status="healthy" if all(r == "ok" for r in checks.values()) else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=VERSION,
        environment=settings.app_env,
        uptime_seconds=get_uptime_seconds(),
        checks=checks,
        config=_booking_engine_config(),
    )
