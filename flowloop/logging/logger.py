"""Console logger for workflow runs."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from rich.console import Console
from rich.markup import escape


class LogLevel(str, Enum):
    """Log levels, lowest first."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)


_LEVEL_ORDER = (LogLevel.DEBUG, LogLevel.INFO, LogLevel.WARNING, LogLevel.ERROR)

_LEVEL_STYLES = {
    LogLevel.DEBUG: "dim",
    LogLevel.INFO: "blue",
    LogLevel.WARNING: "yellow",
    LogLevel.ERROR: "red bold",
}

PREVIEW_CHARS = 50


def _preview(text: str) -> str:
    return text if len(text) <= PREVIEW_CHARS else text[:PREVIEW_CHARS] + "..."


class FlowLoopLogger:
    """Rich console logger with helpers for runs, stages, nodes and loops.

    Plain messages are escaped, so node output containing Rich markup is
    printed literally. Keyword context is appended as ``key=value`` pairs.

    Example:
        >>> logger = FlowLoopLogger(level=LogLevel.DEBUG)
        >>> logger.info("Run started", workflow="review")
        >>> logger.loop_iteration("loop-writer", 2, 10, similarity=0.91)
    """

    def __init__(
        self,
        level: LogLevel = LogLevel.INFO,
        console: Console | None = None,
        show_timestamps: bool = True,
        show_level: bool = True,
        enabled: bool = True,
    ) -> None:
        """Initialize logger.

        Args:
            level: Minimum level printed.
            console: Rich console to print to. Defaults to stderr.
            show_timestamps: Prefix lines with ``HH:MM:SS``.
            show_level: Prefix lines with the level name.
            enabled: Print anything at all.
        """
        self.level = level
        self.enabled = enabled
        self._console = console or Console(stderr=True)
        self._show_timestamps = show_timestamps
        self._show_level = show_level

    def is_enabled_for(self, level: LogLevel) -> bool:
        return self.enabled and level.rank >= self.level.rank

    def _prefix(self, level: LogLevel) -> str:
        parts = []
        if self._show_timestamps:
            parts.append(f"[dim]{datetime.now():%H:%M:%S}[/]")
        if self._show_level:
            parts.append(f"[{_LEVEL_STYLES[level]}]{level.value.upper():7}[/]")
        return " ".join(parts)

    def _print(self, level: LogLevel, markup: str) -> None:
        if self.is_enabled_for(level):
            self._console.print(f"{self._prefix(level)} {markup}")

    def log(self, level: LogLevel, message: str, **context: Any) -> None:
        """Print ``message`` at ``level`` with optional context pairs."""
        pairs = "".join(f" [dim]{key}=[/]{escape(str(value))}" for key, value in context.items())
        self._print(level, escape(message) + pairs)

    def debug(self, message: str, **context: Any) -> None:
        self.log(LogLevel.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self.log(LogLevel.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self.log(LogLevel.WARNING, message, **context)

    def error(self, message: str, **context: Any) -> None:
        self.log(LogLevel.ERROR, message, **context)

    # Runs and stages

    def run_start(self, workflow_name: str, stage_count: int, loop_count: int) -> None:
        self._print(
            LogLevel.INFO,
            f"[bold cyan]◆ {escape(workflow_name)}[/] starting "
            f"({stage_count} stages, {loop_count} loops)",
        )

    def run_end(self, workflow_name: str, success: bool, duration_ms: int) -> None:
        if success:
            level, style, outcome = LogLevel.INFO, "bold cyan", "completed"
        else:
            level, style, outcome = LogLevel.ERROR, "bold red", "failed"
        self._print(level, f"[{style}]◆ {escape(workflow_name)}[/] {outcome} ({duration_ms}ms)")

    def stage_start(self, index: int, stage_name: str) -> None:
        self._print(LogLevel.DEBUG, f"  [dim]Stage {index}:[/] {escape(stage_name)}")

    # Nodes

    def node_start(self, node_name: str, input_preview: str | None = None) -> None:
        """Log a node starting, with the head of its input."""
        preview = f' "{escape(_preview(input_preview))}"' if input_preview else ""
        self._print(LogLevel.DEBUG, f"[bold blue]▶ {escape(node_name)}[/] starting{preview}")

    def node_end(self, node_name: str, duration_ms: int) -> None:
        self._print(
            LogLevel.DEBUG,
            f"[bold green]✓ {escape(node_name)}[/] completed ({duration_ms}ms)",
        )

    def node_error(self, node_name: str, error: str) -> None:
        self._print(LogLevel.ERROR, f"[bold red]✗ {escape(node_name)}[/] failed: {escape(error)}")

    # Loops

    def loop_start(self, loop_id: str, node_count: int, max_iterations: int) -> None:
        self._print(
            LogLevel.INFO,
            f"[bold magenta]↻ {escape(loop_id)}[/] starting "
            f"({node_count} nodes, max {max_iterations} iterations)",
        )

    def loop_iteration(
        self,
        loop_id: str,
        iteration: int,
        max_iterations: int,
        similarity: float | None = None,
    ) -> None:
        """Log a completed iteration. Similarity is shown once there are two outputs."""
        detail = f" | similarity {similarity:.2f}" if similarity is not None else ""
        self._print(
            LogLevel.DEBUG,
            f"  [dim]↻ {escape(loop_id)}:[/] iteration {iteration}/{max_iterations}{detail}",
        )

    def loop_end(self, loop_id: str, status: str, iterations: int, reason: str | None = None) -> None:
        """Log how a loop ended; ``reason`` is printed verbatim."""
        failed = status == "error"
        style = "bold red" if failed else "bold magenta"
        suffix = f": {escape(reason)}" if reason else ""
        self._print(
            LogLevel.ERROR if failed else LogLevel.INFO,
            f"[{style}]↻ {escape(loop_id)}[/] {status} after {iterations} iterations{suffix}",
        )
