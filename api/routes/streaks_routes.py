"""Workspace activity streak endpoints.

Membership is not checked here; the membership service decides who may
call these routes before requests reach this service.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from starlette import status

from core import get_logger
from core.config import get_settings
from core.ratelimit import ADMIN_LIMIT, READ_LIMIT, RECORD_ACTIVITY_LIMIT, limiter
from core.wide_event import set_wide_event_field, set_wide_event_fields
from schemas import (
    ErrorResponse,
    LeaderboardEntryResponse,
    RecordActivityRequest,
    StreakResponse,
)
from services.activity_service import StreakService
from services.leaderboard_service import LeaderboardService
from services.streaks_service import (
    StaleEventRejectedError,
    StreakConflictError,
    StreakStoreUnavailableError,
    StreakValidationError,
)

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/workspaces/{workspace_id}/streaks", tags=["streaks"]
)


def get_streak_service(request: Request) -> StreakService:
    return request.app.state.streak_service


def get_leaderboard_service(request: Request) -> LeaderboardService:
    return request.app.state.leaderboard_service


STORE_RETRY_AFTER_SECONDS = "5"
TIMEOUT_RETRY_AFTER_SECONDS = "1"

StreakServiceDep = Annotated[StreakService, Depends(get_streak_service)]
LeaderboardServiceDep = Annotated[LeaderboardService, Depends(get_leaderboard_service)]


async def streak_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map streak engine errors to HTTP responses."""
    if isinstance(exc, StaleEventRejectedError):
        body = ErrorResponse(
            detail=str(exc), streak=StreakResponse.model_validate(exc.state)
        )
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT, content=body.model_dump(mode="json")
        )
    if isinstance(exc, StreakConflictError):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": str(exc)},
            headers={"Retry-After": "1"},
        )
    if isinstance(exc, StreakValidationError):
        return JSONResponse(
            status_code=422,
            content={"detail": str(exc)},
        )
    if isinstance(exc, StreakStoreUnavailableError):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Streak store unavailable"},
            headers={"Retry-After": STORE_RETRY_AFTER_SECONDS},
        )

    logger.error("streak.error.unmapped", exc_type=type(exc).__name__)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An unexpected error occurred. Please try again."},
    )


async def streak_timeout_handler(
    request: Request, exc: TimeoutError
) -> JSONResponse:
    """A streak call ran past STREAK_REQUEST_TIMEOUT_SECONDS and was rolled back."""
    logger.warning(
        "streak.request.timeout",
        path=request.url.path,
        timeout_seconds=get_settings().streak_request_timeout_seconds,
    )
    set_wide_event_field("streak_outcome", "timeout")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Streak request timed out"},
        headers={"Retry-After": TIMEOUT_RETRY_AFTER_SECONDS},
    )


STREAK_ERROR_RESPONSES: dict[int | str, dict] = {
    409: {"model": ErrorResponse, "description": "Stale signal or busy streak"},
    422: {"description": "Malformed or future-dated signal"},
    503: {"description": "Streak store unavailable or request timed out"},
}


@router.get(
    "/leaderboard",
    response_model=list[LeaderboardEntryResponse],
    responses={503: STREAK_ERROR_RESPONSES[503]},
)
@limiter.limit(READ_LIMIT)
async def get_streak_leaderboard(
    request: Request,
    workspace_id: str,
    leaderboard: LeaderboardServiceDep,
    limit: Annotated[int | None, Query()] = None,
) -> list[LeaderboardEntryResponse]:
    """Top members of the workspace by activity score.

    Limits outside 1-50 fall back to 10.
    """
    entries = await leaderboard.get_leaderboard(
        workspace_id,
        limit,
        timeout=get_settings().streak_request_timeout_seconds,
    )
    set_wide_event_fields(workspace_id=workspace_id, leaderboard_size=len(entries))
    return [LeaderboardEntryResponse.model_validate(entry) for entry in entries]


@router.post(
    "/{user_id}/record",
    response_model=StreakResponse,
    responses=STREAK_ERROR_RESPONSES,
)
@limiter.limit(RECORD_ACTIVITY_LIMIT)
async def record_activity(
    request: Request,
    workspace_id: str,
    user_id: str,
    streaks: StreakServiceDep,
    payload: RecordActivityRequest | None = None,
) -> StreakResponse:
    """Credit the member with activity for today (or event_date).

    Repeating the call on the same day returns the unchanged streak.
    """
    set_wide_event_fields(workspace_id=workspace_id, user_id=user_id)
    state = await streaks.record_activity(
        workspace_id,
        user_id,
        event_date=payload.event_date if payload else None,
        timeout=get_settings().streak_request_timeout_seconds,
    )
    return StreakResponse.model_validate(state)


@router.get(
    "/{user_id}",
    response_model=StreakResponse,
    responses={503: STREAK_ERROR_RESPONSES[503]},
)
@limiter.limit(READ_LIMIT)
async def get_member_streak(
    request: Request,
    workspace_id: str,
    user_id: str,
    streaks: StreakServiceDep,
) -> StreakResponse:
    """Get a member's streak. Members never seen active get an empty streak."""
    state = await streaks.get_streak(workspace_id, user_id)
    if state is None:
        return StreakResponse(workspace_id=workspace_id, user_id=user_id)
    return StreakResponse.model_validate(state)


@router.post(
    "/{user_id}/reset",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={409: STREAK_ERROR_RESPONSES[409], 503: STREAK_ERROR_RESPONSES[503]},
)
@limiter.limit(ADMIN_LIMIT)
async def reset_member_streak(
    request: Request,
    workspace_id: str,
    user_id: str,
    streaks: StreakServiceDep,
) -> Response:
    """Administrative reset of the member's current streak."""
    set_wide_event_fields(workspace_id=workspace_id, user_id=user_id)
    await streaks.reset_streak(
        workspace_id,
        user_id,
        timeout=get_settings().streak_request_timeout_seconds,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)

