"""Unit tests for LoopMetadata, LoopResult and RunResult."""

from __future__ import annotations

import pytest

from flowloop.core.state import LoopMetadata, LoopResult, LoopStatus, RunResult, RunStatus
from flowloop.errors.exceptions import LoopError, LoopExecutionError


def create_loop(max_iterations: int = 3) -> LoopMetadata:
    return LoopMetadata(
        loop_id="loop-a",
        nodes=frozenset({"a", "b"}),
        entry_node="a",
        exit_node="b",
        max_iterations=max_iterations,
        start_time=1000.0,
    )


class TestLoopStatus:
    """Tests for LoopStatus."""

    def test_terminal_statuses(self) -> None:
        assert LoopStatus.RUNNING.is_terminal is False
        assert all(s.is_terminal for s in LoopStatus if s is not LoopStatus.RUNNING)

    def test_wire_values(self) -> None:
        assert LoopStatus.MAXED_OUT.value == "maxed-out"
        assert LoopStatus.FORCE_STOPPED.value == "force-stopped"
        assert LoopStatus.CONDITION_MET.value == "condition-met"


class TestLoopMetadata:
    """Tests for LoopMetadata transitions."""

    def test_record_iteration(self) -> None:
        loop = create_loop()

        loop.record_iteration("one", duration_ms=12.0)
        loop.record_iteration("two")

        assert loop.current_iteration == 2
        assert loop.history == ["one", "two"]
        assert loop.iteration_durations_ms == [12.0, 0.0]

    def test_cannot_exceed_max_iterations(self) -> None:
        loop = create_loop(max_iterations=1)
        loop.record_iteration("one")

        with pytest.raises(LoopError):
            loop.record_iteration("two")
        assert loop.current_iteration == 1

    def test_finish_once(self) -> None:
        loop = create_loop()

        loop.finish(LoopStatus.CONVERGED, "Output converged (similarity: 100.0%)")

        assert loop.is_running is False
        assert loop.stop_reason.startswith("Output converged")
        with pytest.raises(LoopError):
            loop.finish(LoopStatus.ERROR)

    def test_cannot_finish_as_running(self) -> None:
        with pytest.raises(LoopError):
            create_loop().finish(LoopStatus.RUNNING)

    def test_no_iterations_after_finish(self) -> None:
        loop = create_loop()
        loop.finish(LoopStatus.FORCE_STOPPED, "Loop force-stopped")

        with pytest.raises(LoopError) as exc_info:
            loop.record_iteration("late")
        assert exc_info.value.loop_id == "loop-a"

    def test_request_stop_is_idempotent(self) -> None:
        loop = create_loop()

        loop.request_stop()
        loop.request_stop()

        assert loop.stop_requested is True
        assert loop.status is LoopStatus.RUNNING

    def test_elapsed(self) -> None:
        loop = create_loop()

        assert loop.elapsed_ms(1500.0) == 500.0
        assert loop.elapsed_ms(500.0) == 0.0

    def test_snapshot(self) -> None:
        loop = create_loop()
        loop.record_iteration("one")

        snapshot = loop.snapshot()

        assert snapshot["nodes"] == ["a", "b"]
        assert snapshot["current_iteration"] == 1
        assert snapshot["status"] == "running"
        assert snapshot["history_length"] == 1


class TestResults:
    """Tests for LoopResult and RunResult."""

    def test_loop_result_from_metadata(self) -> None:
        loop = create_loop()
        loop.record_iteration("one")
        loop.finish(LoopStatus.ERROR, "Node 'b' failed", error="timeout")

        result = LoopResult.from_metadata(loop, failed_node="b")

        assert result.status is LoopStatus.ERROR
        assert result.iterations == 1
        assert result.output == "one"
        assert result.failed_node == "b"
        assert result.success is False

        with pytest.raises(LoopExecutionError) as exc_info:
            result.raise_for_error()
        assert exc_info.value.failed_node == "b"
        assert exc_info.value.iteration == 2
        assert str(exc_info.value) == "Loop 'loop-a' failed: timeout"

    def test_loop_result_without_history(self) -> None:
        result = LoopResult(loop_id="loop-a", status=LoopStatus.FORCE_STOPPED, iterations=0)

        assert result.output is None
        assert result.success is True
        result.raise_for_error()

    def test_run_result_success(self) -> None:
        assert RunResult(status=RunStatus.COMPLETED).success is True
        assert RunResult(status=RunStatus.CANCELLED).success is False
