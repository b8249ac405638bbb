"""Loop and run state.

``LoopMetadata`` is the mutable record of one loop, written only by its
``LoopController``. ``LoopResult`` and ``RunResult`` are the immutable
summaries handed back to callers.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from flowloop.core.types import ExitCondition, LogEntry
from flowloop.errors.exceptions import LoopError, LoopExecutionError


class LoopStatus(str, Enum):
    """Status of a loop. Every value except RUNNING is terminal."""

    RUNNING = "running"
    CONVERGED = "converged"
    MAXED_OUT = "maxed-out"
    TIMED_OUT = "timed-out"
    FORCE_STOPPED = "force-stopped"
    ERROR = "error"
    OSCILLATING = "oscillating"
    CONDITION_MET = "condition-met"

    @property
    def is_terminal(self) -> bool:
        return self is not LoopStatus.RUNNING


class LoopMetadata(BaseModel):
    """Iteration state of one loop region.

    Example:
        >>> loop = LoopMetadata(loop_id="loop-a", nodes=frozenset({"a"}),
        ...                     entry_node="a", exit_node="a",
        ...                     max_iterations=3, start_time=0)
        >>> loop.record_iteration("draft")
        >>> loop.current_iteration
        1
    """

    loop_id: str
    nodes: frozenset[str]
    edges: list[str] = Field(default_factory=list, description="Connection ids inside the loop")
    entry_node: str
    exit_node: str
    current_iteration: int = Field(default=0, ge=0)
    max_iterations: int = Field(..., ge=1)
    start_time: float = Field(..., description="Epoch milliseconds")
    timeout_ms: float | None = Field(None, ge=0)
    history: list[str] = Field(default_factory=list)
    status: LoopStatus = LoopStatus.RUNNING
    stop_reason: str | None = None
    error: str | None = None
    stop_requested: bool = False
    exit_conditions: list[ExitCondition] = Field(default_factory=list)
    convergence_threshold: float | None = Field(None, ge=0.0, le=1.0)
    iteration_durations_ms: list[float] = Field(default_factory=list)

    @property
    def is_running(self) -> bool:
        return self.status is LoopStatus.RUNNING

    def elapsed_ms(self, now_ms: float) -> float:
        return max(0.0, now_ms - self.start_time)

    def record_iteration(self, output: str, duration_ms: float = 0.0) -> None:
        """Append the representative output of a completed iteration."""
        if not self.is_running:
            raise LoopError(
                f"Loop '{self.loop_id}' is {self.status.value}; no further iterations",
                loop_id=self.loop_id,
            )
        if self.current_iteration >= self.max_iterations:
            raise LoopError(
                f"Loop '{self.loop_id}' already ran {self.max_iterations} iterations",
                loop_id=self.loop_id,
            )
        self.history.append(output)
        self.iteration_durations_ms.append(duration_ms)
        self.current_iteration += 1

    def finish(
        self,
        status: LoopStatus,
        reason: str | None = None,
        error: str | None = None,
    ) -> None:
        """Move to a terminal status.

        Raises:
            LoopError: If the loop already left RUNNING or ``status`` is RUNNING.
        """
        if not status.is_terminal:
            raise LoopError(
                f"Loop '{self.loop_id}' cannot finish with status running",
                loop_id=self.loop_id,
            )
        if not self.is_running:
            raise LoopError(
                f"Loop '{self.loop_id}' already finished as {self.status.value}",
                loop_id=self.loop_id,
            )
        self.status = status
        self.stop_reason = reason
        self.error = error

    def request_stop(self) -> None:
        self.stop_requested = True

    def snapshot(self) -> dict[str, Any]:
        """Plain-data view for observers."""
        return {
            "loop_id": self.loop_id,
            "nodes": sorted(self.nodes),
            "entry_node": self.entry_node,
            "exit_node": self.exit_node,
            "current_iteration": self.current_iteration,
            "max_iterations": self.max_iterations,
            "status": self.status.value,
            "stop_reason": self.stop_reason,
            "error": self.error,
            "history_length": len(self.history),
        }


class LoopResult(BaseModel):
    """Final summary of a loop."""

    loop_id: str
    status: LoopStatus
    iterations: int = Field(..., ge=0)
    history: list[str] = Field(default_factory=list)
    stop_reason: str | None = None
    error: str | None = None
    failed_node: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def output(self) -> str | None:
        """Representative output of the last completed iteration."""
        return self.history[-1] if self.history else None

    @property
    def success(self) -> bool:
        return self.status is not LoopStatus.ERROR

    def raise_for_error(self) -> None:
        """Raise ``LoopExecutionError`` when the loop ended in error."""
        if self.status is LoopStatus.ERROR:
            raise LoopExecutionError(
                f"Loop '{self.loop_id}' failed: {self.error or 'unknown error'}",
                loop_id=self.loop_id,
                failed_node=self.failed_node,
                iteration=self.iterations + 1,
            )

    @classmethod
    def from_metadata(cls, loop: LoopMetadata, failed_node: str | None = None) -> LoopResult:
        return cls(
            loop_id=loop.loop_id,
            status=loop.status,
            iterations=loop.current_iteration,
            history=list(loop.history),
            stop_reason=loop.stop_reason,
            error=loop.error,
            failed_node=failed_node,
        )


class RunStatus(str, Enum):
    """Status of a workflow run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunResult(BaseModel):
    """Final result of a workflow run.

    Example:
        >>> result = coordinator.run_sync("Draft a haiku")
        >>> result.loops["loop-writer"].status
        <LoopStatus.CONVERGED: 'converged'>
    """

    status: RunStatus
    output: str | None = Field(None, description="Output of the last node that ran")
    node_outputs: dict[str, str] = Field(default_factory=dict)
    loops: dict[str, LoopResult] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    skipped_nodes: list[str] = Field(default_factory=list)
    logs: list[LogEntry] = Field(default_factory=list)
    duration_ms: int = Field(default=0, ge=0)

    @property
    def success(self) -> bool:
        return self.status is RunStatus.COMPLETED
