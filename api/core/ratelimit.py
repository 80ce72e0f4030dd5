"""Request rate limits (slowapi).

Member routes are limited per (workspace, member); everything else per client
address. Counters live in RATELIMIT_STORAGE_URI: ``memory://`` is per worker,
so deployments with more than one replica point it at Redis.
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from core.config import Settings, get_settings
from core.logger import get_logger

logger = get_logger(__name__)

RECORD_ACTIVITY_LIMIT = "120/minute"
READ_LIMIT = "60/minute"
ADMIN_LIMIT = "20/minute"

DEFAULT_RETRY_AFTER_SECONDS = 60


def rate_limit_key(request: Request) -> str:
    params = request.path_params
    if params.get("workspace_id") and params.get("user_id"):
        return f"member:{params['workspace_id']}:{params['user_id']}"
    return get_remote_address(request)


def build_limiter(settings: Settings) -> Limiter:
    storage_uri = settings.ratelimit_storage_uri
    if storage_uri == "memory://" and not settings.debug:
        logger.warning(
            "ratelimit.storage.in_memory",
            detail="Counters are per worker; set RATELIMIT_STORAGE_URI to Redis",
        )

    return Limiter(
        key_func=rate_limit_key,
        default_limits=["100/minute"],
        storage_uri=storage_uri,
        # Only Redis can go away at runtime
        in_memory_fallback_enabled=storage_uri.startswith("redis://"),
        key_prefix="streaks:",
        enabled=settings.ratelimit_enabled,
    )


limiter = build_limiter(get_settings())


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    retry_after = getattr(exc, "retry_after", DEFAULT_RETRY_AFTER_SECONDS)
    logger.warning(
        "ratelimit.exceeded",
        identifier=rate_limit_key(request),
        limit=exc.detail,
    )
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Rate limit exceeded. Please slow down.",
            "retry_after": exc.detail,
        },
        headers={"Retry-After": str(retry_after)},
    )
