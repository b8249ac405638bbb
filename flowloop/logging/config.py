"""Process-wide logger used by components that were not given one."""

from __future__ import annotations

import os
from typing import Any

from flowloop.logging.logger import FlowLoopLogger, LogLevel

LOG_LEVEL_ENV = "FLOWLOOP_LOG_LEVEL"

_logger: FlowLoopLogger | None = None


def parse_level(level: LogLevel | str) -> LogLevel:
    """Accept a ``LogLevel`` or its case-insensitive name."""
    if isinstance(level, LogLevel):
        return level
    try:
        return LogLevel(level.strip().lower())
    except ValueError:
        names = ", ".join(member.value for member in LogLevel)
        raise ValueError(f"Unknown log level {level!r}. Expected one of: {names}") from None


def get_logger() -> FlowLoopLogger:
    """Return the global logger, creating it on first use.

    The initial level comes from ``$FLOWLOOP_LOG_LEVEL`` when set.
    """
    global _logger
    if _logger is None:
        _logger = FlowLoopLogger(level=parse_level(os.environ.get(LOG_LEVEL_ENV) or LogLevel.INFO))
    return _logger


def set_logger(logger: FlowLoopLogger) -> None:
    """Install ``logger`` as the global logger."""
    global _logger
    _logger = logger


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    enabled: bool = True,
    **kwargs: Any,
) -> FlowLoopLogger:
    """Replace the global logger with a freshly configured one.

    Extra keyword arguments (``console``, ``show_timestamps``,
    ``show_level``) are passed to ``FlowLoopLogger``.

    Example:
        >>> configure_logging(level="debug", show_timestamps=False)
        >>> get_logger().debug("iteration finished", loop="loop-a")
    """
    logger = FlowLoopLogger(level=parse_level(level), enabled=enabled, **kwargs)
    set_logger(logger)
    return logger


def disable_logging() -> None:
    get_logger().enabled = False


def enable_logging() -> None:
    get_logger().enabled = True
