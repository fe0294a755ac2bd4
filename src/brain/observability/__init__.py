"""Brain observability module - structured logging.

Usage:
    from brain.observability import get_logger

    logger = get_logger(__name__)
    logger.info("Agent invoked", agent=agent, session_id=session_id)
"""

from __future__ import annotations

from brain.observability.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
    "init_observability",
]

_OBSERVABILITY_INITIALIZED = False


def init_observability(level: str | None = None) -> None:
    """Initialize logging for the process (idempotent).

    This is intentionally *not* executed on import so `brain` can be used as a
    library without mutating global logging configuration.
    """
    global _OBSERVABILITY_INITIALIZED
    if _OBSERVABILITY_INITIALIZED:
        return
    if level is None:
        from brain.config.settings import get_settings

        level = get_settings().log_level
    configure_logging(level)
    _OBSERVABILITY_INITIALIZED = True
