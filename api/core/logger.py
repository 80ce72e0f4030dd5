"""Structured logging for the streaks service (structlog).

Every log line, ours and third-party, goes through one stdout handler:
- LOG_FORMAT=json renders JSON lines for the log pipeline
- anything else renders colored console output for local runs
- LOG_LEVEL sets the root level (default INFO)

Event names are dotted (``streak.recorded``, ``streak.lock.timeout``) and
context is passed as keyword arguments, never formatted into the message.

Usage:
    from core import get_logger
    logger = get_logger(__name__)
    logger.info("streak.recorded", workspace_id="ws_1", user_id="u_1")
"""

import logging
import os
import sys

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars
from structlog.types import EventDict, Processor

__all__ = [
    "bind_contextvars",
    "clear_contextvars",
    "configure_logging",
    "get_logger",
]

SERVICE_NAME = "workspace-streaks"

# Libraries that log every request or statement at INFO
_QUIET_LOGGERS = ("uvicorn.access", "aiosqlite", "asyncio")


def _add_service_name(
    _logger: logging.Logger, _method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _level_from_env() -> int:
    name = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _json_from_env() -> bool:
    return os.environ.get("LOG_FORMAT", "").lower() == "json"


def _renderer(json_output: bool) -> Processor:
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=True, exception_formatter=structlog.dev.plain_traceback
    )


def configure_logging(
    *, json_output: bool | None = None, level: int | None = None
) -> None:
    """Route structlog and stdlib logging through one formatter.

    Safe to call more than once; the root handler is replaced each time.
    Arguments override LOG_FORMAT and LOG_LEVEL.
    """
    if json_output is None:
        json_output = _json_from_env()
    if level is None:
        level = _level_from_env()

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_service_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                _renderer(json_output),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Logger for a module; pass ``__name__``."""
    return structlog.stdlib.get_logger(name)
