"""Rich console logging for workflow runs."""

from flowloop.logging.logger import LogLevel, FlowLoopLogger
from flowloop.logging.config import (
    LOG_LEVEL_ENV,
    get_logger,
    set_logger,
    configure_logging,
    disable_logging,
    enable_logging,
    parse_level,
)

__all__ = [
    "LOG_LEVEL_ENV",
    "LogLevel",
    "FlowLoopLogger",
    "get_logger",
    "set_logger",
    "configure_logging",
    "disable_logging",
    "enable_logging",
    "parse_level",
]
