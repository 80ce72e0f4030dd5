"""ASGI middleware: request timing and the per-request wide event."""

from __future__ import annotations

import time
import uuid

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from core.logger import SERVICE_NAME, bind_contextvars, clear_contextvars, get_logger
from core.wide_event import clear_wide_event, get_wide_event, init_wide_event

logger = get_logger(__name__)

# Successful requests faster than this are not logged
SLOW_REQUEST_THRESHOLD_MS = 1000


def _should_emit(event: dict, status: int | None, duration_ms: float) -> bool:
    """Errors, slow requests and anything that touched a streak."""
    return (
        status is None
        or status >= 400
        or duration_ms > SLOW_REQUEST_THRESHOLD_MS
        or "streak_outcome" in event
    )


class RequestTimingMiddleware:
    """Times each request and emits its wide event when the body is sent.

    Adds ``x-request-id`` and ``x-request-duration-ms`` response headers;
    the request id is also bound to every log line written meanwhile.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        request_id = str(uuid.uuid4())
        path = scope.get("path", "")
        status: int | None = None

        def elapsed_ms() -> float:
            return (time.perf_counter() - start) * 1000

        clear_contextvars()
        bind_contextvars(request_id=request_id)
        init_wide_event(
            service_name=SERVICE_NAME,
            request_id=request_id,
            http_method=scope.get("method", "UNKNOWN"),
            http_path=path,
        )

        async def send_wrapper(message: Message) -> None:
            nonlocal status

            if message["type"] == "http.response.start":
                status = int(message["status"])
                message["headers"] = [
                    *message.get("headers", []),
                    (b"x-request-duration-ms", f"{elapsed_ms():.2f}".encode()),
                    (b"x-request-id", request_id.encode()),
                ]

            elif message["type"] == "http.response.body" and not message.get(
                "more_body", False
            ):
                duration_ms = elapsed_ms()
                route = scope.get("route")
                # Fields added by routes and services land in the same dict
                event = get_wide_event()
                event.update(
                    http_route=getattr(route, "path", None) or path,
                    http_status_code=status,
                    duration_ms=round(duration_ms, 2),
                    outcome="success" if status and status < 400 else "error",
                )
                if _should_emit(event, status, duration_ms):
                    logger.info("request.completed", **event)

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            clear_wide_event()
            clear_contextvars()
