"""Break-condition evaluation for loops.

The evaluator only reads ``LoopMetadata``; the loop controller applies the
returned decision.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict
from simpleeval import EvalWithCompoundTypes

from flowloop.core.convergence import ConvergenceInfo, extract_numeric_value
from flowloop.core.state import LoopMetadata, LoopStatus
from flowloop.core.types import ExitCondition, ExitConditionType

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def now_ms() -> float:
    """Wall-clock time in epoch milliseconds."""
    return time.time() * 1000


class StopDecision(BaseModel):
    """Outcome of a break-condition check."""

    should_stop: bool
    status: LoopStatus = LoopStatus.RUNNING
    reason: str | None = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def proceed(cls) -> StopDecision:
        return cls(should_stop=False)

    @classmethod
    def stop(cls, status: LoopStatus, reason: str) -> StopDecision:
        return cls(should_stop=True, status=status, reason=reason)


def _contains(haystack: Any, needle: Any) -> bool:
    return str(needle).lower() in str(haystack).lower()


class BreakConditionEvaluator:
    """Decides whether a loop stops after a completed iteration.

    Checks run in priority order: stop request, iteration cap, timeout,
    convergence, then oscillation (when enabled) and configured exit
    conditions.

    Example:
        >>> evaluator = BreakConditionEvaluator()
        >>> decision = evaluator.evaluate(loop, info)
        >>> decision.status
        <LoopStatus.MAXED_OUT: 'maxed-out'>
    """

    def __init__(
        self,
        clock: Clock | None = None,
        stop_on_oscillation: bool = False,
    ) -> None:
        self._clock = clock or now_ms
        self._stop_on_oscillation = stop_on_oscillation

    def should_stop(self, loop: LoopMetadata, convergence: ConvergenceInfo) -> bool:
        return self.evaluate(loop, convergence).should_stop

    def evaluate(self, loop: LoopMetadata, convergence: ConvergenceInfo) -> StopDecision:
        """Check every break condition in priority order."""
        if loop.stop_requested:
            return StopDecision.stop(LoopStatus.FORCE_STOPPED, "Loop force-stopped")

        if loop.current_iteration >= loop.max_iterations:
            return StopDecision.stop(
                LoopStatus.MAXED_OUT,
                f"Max iterations reached ({loop.max_iterations})",
            )

        if loop.timeout_ms is not None:
            elapsed = loop.elapsed_ms(self._clock())
            if elapsed >= loop.timeout_ms:
                return StopDecision.stop(
                    LoopStatus.TIMED_OUT,
                    f"Loop timeout reached ({elapsed / 1000:.1f}s)",
                )

        if convergence.converged:
            return StopDecision.stop(
                LoopStatus.CONVERGED,
                f"Output converged (similarity: {convergence.similarity * 100:.1f}%)",
            )

        if self._stop_on_oscillation and convergence.oscillating:
            return StopDecision.stop(
                LoopStatus.OSCILLATING,
                "Output is oscillating between states",
            )

        for condition in loop.exit_conditions:
            reason = self.evaluate_exit_condition(condition, loop)
            if reason is not None:
                return StopDecision.stop(LoopStatus.CONDITION_MET, reason)

        return StopDecision.proceed()

    def evaluate_exit_condition(
        self, condition: ExitCondition, loop: LoopMetadata
    ) -> str | None:
        """Evaluate one configured exit condition against the latest output.

        Returns:
            The stop reason when the condition is met, else None.
        """
        if not loop.history:
            return None
        output = loop.history[-1]

        if condition.type is ExitConditionType.VALUE_EQUALS:
            if condition.value is None:
                return None
            target = str(condition.value).lower().strip()
            actual = output.lower().strip()
            if actual == target:
                return f'Output matches target value: "{condition.value}"'
            if target in actual:
                return f'Output contains target value: "{condition.value}"'
            return None

        if condition.type is ExitConditionType.CUSTOM:
            if not condition.value:
                return None
            if self._evaluate_custom(str(condition.value), output, loop):
                return f"Custom condition met: {condition.value}"
            return None

        # max_iterations and convergence are covered by the ordered checks
        return None

    def _evaluate_custom(self, expression: str, output: str, loop: LoopMetadata) -> bool:
        names: dict[str, Any] = {
            "output": output,
            "length": len(output),
            "iteration": loop.current_iteration,
            "value": extract_numeric_value(output),
            "true": True,
            "false": False,
        }
        functions = {
            "len": len,
            "str": str,
            "int": int,
            "float": float,
            "abs": abs,
            # contains("x") searches the output; contains(text, "x") searches text
            "contains": lambda a, b=None: _contains(output, a) if b is None else _contains(a, b),
        }
        try:
            evaluator = EvalWithCompoundTypes(names=names, functions=functions)
            return bool(evaluator.eval(expression))
        except Exception as e:
            logger.warning(f"Exit condition eval error for loop {loop.loop_id}: {e}")
            return False

    def get_estimated_remaining_time(self, loop: LoopMetadata) -> float | None:
        """Milliseconds left before the timeout, or None without a timeout."""
        if loop.timeout_ms is None:
            return None
        return max(0.0, loop.timeout_ms - loop.elapsed_ms(self._clock()))

    def get_estimated_remaining_iterations(self, loop: LoopMetadata) -> int:
        return max(0, loop.max_iterations - loop.current_iteration)

    def get_average_iteration_ms(self, loop: LoopMetadata) -> float | None:
        """Mean wall time per completed iteration, or None before the first."""
        if loop.current_iteration == 0:
            return None
        return loop.elapsed_ms(self._clock()) / loop.current_iteration
