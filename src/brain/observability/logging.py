from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import Any, MutableMapping

import structlog

session_id_var: ContextVar[str] = ContextVar("session_id", default="")

# BrainConfig levels -> stdlib levels
_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _add_session_id(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    session_id = session_id_var.get("")
    if session_id:
        event_dict["session_id"] = session_id
    return event_dict


def resolve_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    if not level:
        return logging.INFO
    return _LEVELS.get(level.lower(), logging.INFO)


def configure_logging(level: str | int | None = "info") -> None:
    """Configure structlog with JSON output on stderr and contextvar support.

    Hook commands write their host response to stdout, so log records must
    never share that stream.
    """

    timestamper = structlog.processors.TimeStamper(fmt="iso")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            timestamper,
            _add_session_id,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=resolve_level(level), stream=sys.stderr, format="%(message)s")


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a configured structlog logger."""

    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name)


def get_session_id() -> str:
    """Return the session ID bound for the current hook or workflow run."""

    return session_id_var.get("")


logger = get_logger("brain")
