"""Liveness and readiness probes for the container platform."""

from fastapi import APIRouter, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette import status

from core.database import check_db_connection, comprehensive_health_check
from core.logger import SERVICE_NAME
from core.ratelimit import limiter
from schemas import DetailedHealthResponse, HealthResponse, PoolStatusResponse

PROBE_RATE_LIMIT = "30/minute"

router = APIRouter(tags=["health"])


def _engine(request: Request) -> AsyncEngine:
    return request.app.state.engine


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Process is up. Does not touch the database."""
    return HealthResponse(status="healthy", service=SERVICE_NAME)


@router.get("/health/detailed", response_model=DetailedHealthResponse)
@limiter.limit(PROBE_RATE_LIMIT)
async def health_detailed(request: Request) -> DetailedHealthResponse:
    # 200 either way; callers read the component fields
    result = await comprehensive_health_check(_engine(request))
    pool = result["pool"]

    return DetailedHealthResponse(
        status="healthy" if result["database"] else "unhealthy",
        service=SERVICE_NAME,
        database=result["database"],
        pool=PoolStatusResponse(**pool._asdict()) if pool is not None else None,
    )


@router.get(
    "/ready",
    response_model=HealthResponse,
    responses={503: {"description": "Streak store unreachable"}},
)
@limiter.limit(PROBE_RATE_LIMIT)
async def ready(request: Request) -> HealthResponse:
    """Ready to take traffic once the streak store answers."""
    try:
        await check_db_connection(_engine(request))
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable",
        ) from e

    return HealthResponse(status="ready", service=SERVICE_NAME)
