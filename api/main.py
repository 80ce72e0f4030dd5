"""Workspace streaks service: FastAPI app, lifespan and error handlers."""

import asyncio
from contextlib import asynccontextmanager
from functools import partial

import fastapi
from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from core.config import Settings, get_settings
from core.database import (
    create_engine,
    create_session_maker,
    dispose_engine,
    init_db,
)
from core.logger import configure_logging, get_logger
from core.middleware import RequestTimingMiddleware
from core.ratelimit import limiter, rate_limit_exceeded_handler
from repositories.streak_repository import streak_transaction
from routes import (
    health_router,
    streak_error_handler,
    streak_timeout_handler,
    streaks_router,
)
from services.activity_service import StreakService
from services.leaderboard_service import LeaderboardService
from services.streak_lock_service import get_lock_registry
from services.streaks_service import StreakError

configure_logging()
logger = get_logger(__name__)

STARTUP_TIMEOUT_SECONDS = 60


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled.exception",
        exc_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred. Please try again."},
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    logger.warning(
        "request.validation_error",
        path=request.url.path,
        method=request.method,
        error_count=len(errors),
    )
    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(errors)})


def build_services(app: fastapi.FastAPI) -> None:
    """Put the streak and leaderboard services on app.state.

    Both open transactions from the app's session maker; record and reset
    go through the process-wide per-member lock registry.
    """
    transaction_factory = partial(streak_transaction, app.state.session_maker)
    app.state.streak_service = StreakService(
        transaction_factory, locks=get_lock_registry()
    )
    app.state.leaderboard_service = LeaderboardService(transaction_factory)


@asynccontextmanager
async def lifespan(app: fastapi.FastAPI):
    app.state.engine = create_engine()
    app.state.session_maker = create_session_maker(app.state.engine)
    build_services(app)

    try:
        async with asyncio.timeout(STARTUP_TIMEOUT_SECONDS):
            await init_db(app.state.engine)
    except TimeoutError:
        logger.error("init.timeout", hint="Check DB connectivity")
        raise RuntimeError("Application startup timed out")
    logger.info("init.complete", streak_timezone=get_settings().streak_timezone)

    try:
        yield
    finally:
        await dispose_engine(app.state.engine)


def create_app(settings: Settings) -> fastapi.FastAPI:
    docs = settings.enable_docs or settings.debug
    application = fastapi.FastAPI(
        title="Workspace Streaks API",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if docs else None,
        redoc_url="/redoc" if docs else None,
        openapi_url="/openapi.json" if docs else None,
    )

    application.add_middleware(RequestTimingMiddleware)

    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    application.add_exception_handler(StreakError, streak_error_handler)
    application.add_exception_handler(TimeoutError, streak_timeout_handler)
    application.add_exception_handler(
        RequestValidationError, validation_exception_handler
    )
    application.add_exception_handler(Exception, unhandled_exception_handler)

    application.include_router(health_router)
    application.include_router(streaks_router)
    return application


app = create_app(get_settings())
