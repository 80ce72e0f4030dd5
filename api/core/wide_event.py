"""Per-request wide event: one canonical log line per request.

RequestTimingMiddleware opens the event when a request starts and logs it
once when the response finishes. Anything in between (routes, services,
repositories) adds fields to it instead of logging separately:

    set_wide_event_fields(workspace_id=workspace_id, streak_outcome="continued")

Outside a request (tests without the fixture, scripts) there is no open
event and setters do nothing.
"""

from contextvars import ContextVar
from typing import Any

_current: ContextVar[dict[str, Any] | None] = ContextVar(
    "wide_event", default=None
)


def init_wide_event(**fields: Any) -> dict[str, Any]:
    """Open a new event for the current context and return it."""
    event = dict(fields)
    _current.set(event)
    return event


def get_wide_event() -> dict[str, Any]:
    """The open event, or an empty throwaway dict when none is open."""
    event = _current.get()
    return event if event is not None else {}


def set_wide_event_field(key: str, value: Any) -> None:
    set_wide_event_fields(**{key: value})


def set_wide_event_fields(**fields: Any) -> None:
    event = _current.get()
    if event is not None:
        event.update(fields)


def clear_wide_event() -> None:
    _current.set(None)

