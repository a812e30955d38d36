"""
Structured logging for the engine, built on structlog over stdlib logging.

Engine operations run with the acting user bound into the structlog context,
so every event they emit (including nested achievement checks) carries
``user_id`` and ``operation`` without passing them by hand.

Environment:
    XP_ENGINE_LOG_LEVEL   stdlib level name, default INFO
    XP_ENGINE_LOG_FORMAT  "json" for one JSON object per line, console otherwise
"""

from __future__ import annotations

import functools
import logging
import os
import sys
from typing import Callable, TypeVar

import structlog

F = TypeVar("F", bound=Callable)


def _engine_name(logger, method_name, event_dict):
    event_dict.setdefault("app", "xp_engine")
    return event_dict


def setup_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """Route structlog and stdlib records through one stderr handler."""

    level = level or os.environ.get("XP_ENGINE_LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.environ.get("XP_ENGINE_LOG_FORMAT", "").lower() == "json"

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _engine_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if json_output:
        # Tracebacks from failed achievement checks become a string field.
        tail = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        tail = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *tail],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_user(method: F) -> F:
    """Bind ``user_id`` and the operation name for the duration of an Engine call.

    The wrapped method must take the user id as its first argument after
    ``self``. Bindings are restored on exit, so nested calls keep the outer
    operation name once they return.
    """

    @functools.wraps(method)
    def wrapper(self, user_id, *args, **kwargs):
        with structlog.contextvars.bound_contextvars(user_id=user_id, operation=method.__name__):
            return method(self, user_id, *args, **kwargs)

    return wrapper


__all__ = ["bind_user", "get_logger", "setup_logging"]
