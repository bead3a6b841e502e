"""
Health Check Endpoints

Liveness and readiness probes for the load balancer.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.config import settings
from app.infra.database import check_db_health
from app.infra.redis import check_redis_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

_start_time: Optional[datetime] = None


def set_start_time() -> None:
    """Set application start time. Called once on startup."""
    global _start_time
    _start_time = datetime.now(timezone.utc)


def get_uptime_seconds() -> Optional[float]:
    if _start_time is None:
        return None
    return (datetime.now(timezone.utc) - _start_time).total_seconds()


class HealthResponse(BaseModel):
    """Liveness response."""
    status: str
    timestamp: datetime
    environment: str
    uptime_seconds: Optional[float] = None


class ReadyResponse(BaseModel):
    """Readiness response with per-dependency status."""
    status: str
    timestamp: datetime
    checks: dict[str, str]


async def collect_checks() -> dict[str, str]:
    """
    Dependency status.

    database is required. redis and the outbound channels only degrade
    the service: turns run unlocked and notifications are skipped.
    """
    checks = {}

    try:
        checks["database"] = "ok" if await check_db_health() else "failed"
    except Exception as e:
        logger.error(f"Readiness check: Database error - {e}")
        checks["database"] = "error"

    try:
        checks["redis"] = "ok" if await check_redis_health() else "degraded"
    except Exception as e:
        logger.error(f"Readiness check: Redis error - {e}")
        checks["redis"] = "degraded"

    checks["agent"] = "ok" if settings.anthropic_api_key else "not_configured"
    whatsapp_ready = settings.whatsapp_phone_number_id and settings.whatsapp_access_token
    checks["whatsapp"] = "ok" if whatsapp_ready else "not_configured"
    return checks


@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Liveness probe",
    description="Returns 200 while the process is running. Does not check dependencies.",
)
async def health() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        environment=settings.app_env,
        uptime_seconds=get_uptime_seconds(),
    )


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness probe",
    description="Returns 503 when the database is unreachable.",
    responses={503: {"description": "Database unavailable"}},
)
async def ready() -> ReadyResponse:
    checks = await collect_checks()
    response = ReadyResponse(
        status="ready" if checks["database"] == "ok" else "not_ready",
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )

    if checks["database"] != "ok":
        logger.warning(f"Readiness check failed: {checks}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )

    return response
