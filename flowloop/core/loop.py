"""Loop execution controller.

Runs one loop region iteration by iteration until a break condition ends
it. The controller is the only writer of its ``LoopMetadata``.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Sequence

from flowloop.core.conditions import BreakConditionEvaluator, Clock, now_ms
from flowloop.core.config import EngineConfig
from flowloop.core.convergence import ConvergenceDetector, ConvergenceInfo
from flowloop.core.graph import LoopRegion
from flowloop.core.state import LoopMetadata, LoopResult, LoopStatus
from flowloop.core.types import (
    ExitConditionType,
    LogType,
    NodeResult,
    OUTPUT_SEPARATOR,
)
from flowloop.logging import FlowLoopLogger, get_logger
from flowloop.tracking.callbacks import CallbackEvent, CallbackManager

# (node_id, iteration, feedback) -> result. ``feedback`` is the previous
# iteration's representative output, None on the first iteration.
NodeExecuteFn = Callable[[str, int, "str | None"], Awaitable[NodeResult]]
LogFn = Callable[[LogType, str], Awaitable[None]]


def build_loop_metadata(
    region: LoopRegion,
    config: EngineConfig,
    clock: Clock | None = None,
) -> LoopMetadata:
    """Initial metadata for a region, resolving loop edge settings against defaults."""
    loop_config = region.loop_config
    if loop_config is not None:
        max_iterations = loop_config.max_iterations
        timeout_seconds = loop_config.timeout_seconds
        exit_conditions = list(loop_config.exit_conditions)
        threshold = loop_config.convergence_threshold
    else:
        max_iterations = config.default_max_iterations
        timeout_seconds = config.default_timeout_seconds
        exit_conditions = []
        threshold = None

    if threshold is None:
        for condition in exit_conditions:
            if condition.type is ExitConditionType.CONVERGENCE and condition.threshold is not None:
                threshold = condition.threshold
                break

    return LoopMetadata(
        loop_id=region.loop_id,
        nodes=region.nodes,
        edges=list(region.edges),
        entry_node=region.entry_node,
        exit_node=region.exit_node,
        max_iterations=max_iterations,
        start_time=(clock or now_ms)(),
        timeout_ms=None if timeout_seconds is None else timeout_seconds * 1000,
        exit_conditions=exit_conditions,
        convergence_threshold=threshold,
    )


class LoopController:
    """Drives one loop through its state machine.

    ``running`` moves to exactly one terminal status: converged, maxed-out,
    timed-out, force-stopped, error, oscillating or condition-met. A stop
    request is honored before an iteration starts and after it completes;
    a node call already in flight always finishes.

    Example:
        >>> controller = LoopController(metadata, ["draft", "critic"], execute_node)
        >>> result = await controller.run()
        >>> result.status
        <LoopStatus.CONVERGED: 'converged'>
    """

    def __init__(
        self,
        metadata: LoopMetadata,
        order: Sequence[str],
        execute_node: NodeExecuteFn,
        *,
        terminal_nodes: Sequence[str] = (),
        detector: ConvergenceDetector | None = None,
        evaluator: BreakConditionEvaluator | None = None,
        callbacks: CallbackManager | None = None,
        logger: FlowLoopLogger | None = None,
        log: LogFn | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize controller.

        Args:
            metadata: Loop state, owned by this controller from now on.
            order: Body nodes in execution order.
            execute_node: Runs one body node.
            terminal_nodes: Nodes whose outputs form the iteration output.
                Defaults to the last node of ``order``.
            detector: Convergence detector (default thresholds if None).
            evaluator: Break-condition evaluator.
            callbacks: Receives loop events.
            logger: Console logger (global logger if None).
            log: Appends entries to the run log.
            clock: Epoch-millisecond clock.
        """
        if not order:
            raise ValueError("A loop needs at least one node")
        self._loop = metadata
        self._order = list(order)
        self._execute_node = execute_node
        self._terminal_nodes = list(terminal_nodes) or [self._order[-1]]
        self._clock = clock or now_ms
        self._detector = detector or ConvergenceDetector()
        self._evaluator = evaluator or BreakConditionEvaluator(clock=self._clock)
        self._callbacks = callbacks
        self._logger = logger
        self._log = log
        self._failed_node: str | None = None

    @classmethod
    def from_region(
        cls,
        region: LoopRegion,
        execute_node: NodeExecuteFn,
        config: EngineConfig | None = None,
        **kwargs,
    ) -> LoopController:
        """Build a controller with metadata and checks derived from ``config``."""
        config = config or EngineConfig()
        clock = kwargs.get("clock") or now_ms
        kwargs.setdefault(
            "detector",
            ConvergenceDetector(
                threshold=config.convergence_threshold,
                oscillation_threshold=config.oscillation_threshold,
                window=config.convergence_window,
            ),
        )
        kwargs.setdefault(
            "evaluator",
            BreakConditionEvaluator(clock=clock, stop_on_oscillation=config.stop_on_oscillation),
        )
        return cls(
            build_loop_metadata(region, config, clock),
            region.order,
            execute_node,
            terminal_nodes=region.terminal_nodes,
            **kwargs,
        )

    @property
    def loop_id(self) -> str:
        return self._loop.loop_id

    @property
    def metadata(self) -> LoopMetadata:
        return self._loop

    @property
    def evaluator(self) -> BreakConditionEvaluator:
        return self._evaluator

    def force_stop(self) -> None:
        """Request a stop at the next iteration boundary. Idempotent."""
        self._loop.request_stop()

    async def run(self) -> LoopResult:
        """Iterate until a break condition fires."""
        loop = self._loop
        loop.start_time = self._clock()
        feedback: str | None = None

        self._get_logger().loop_start(loop.loop_id, len(self._order), loop.max_iterations)
        await self._emit(CallbackEvent.LOOP_START, **loop.snapshot())
        await self._write_log(
            LogType.INFO,
            f"Loop {loop.loop_id} started ({len(self._order)} nodes, "
            f"max {loop.max_iterations} iterations)",
        )

        while loop.is_running:
            if loop.stop_requested:
                loop.finish(LoopStatus.FORCE_STOPPED, "Loop force-stopped")
                break

            iteration = loop.current_iteration + 1
            iteration_started = self._clock()
            outputs = await self._run_iteration(iteration, feedback)
            if outputs is None:
                break

            representative = self._representative_output(outputs)
            loop.record_iteration(representative, self._clock() - iteration_started)

            info = (
                self._detector.check(loop.history, loop.convergence_threshold)
                if len(loop.history) >= 2
                else ConvergenceInfo.undetermined()
            )
            decision = self._evaluator.evaluate(loop, info)

            self._get_logger().loop_iteration(
                loop.loop_id,
                loop.current_iteration,
                loop.max_iterations,
                info.similarity if len(loop.history) >= 2 else None,
            )
            await self._emit(
                CallbackEvent.LOOP_ITERATION,
                iteration=loop.current_iteration,
                max_iterations=loop.max_iterations,
                similarity=info.similarity,
                converged=info.converged,
                oscillating=info.oscillating,
                change_rate=info.change_rate,
                output=representative,
                estimated_remaining_ms=self._evaluator.get_estimated_remaining_time(loop),
            )
            await self._write_log(
                LogType.RUNNING,
                f"Loop {loop.loop_id} iteration {loop.current_iteration}/{loop.max_iterations}"
                + (f" (similarity {info.similarity:.2f})" if len(loop.history) >= 2 else ""),
            )

            if decision.should_stop:
                loop.finish(decision.status, decision.reason)
            else:
                feedback = representative

        self._get_logger().loop_end(
            loop.loop_id, loop.status.value, loop.current_iteration, loop.error or loop.stop_reason
        )
        await self._emit(CallbackEvent.LOOP_END, **loop.snapshot())
        if loop.status is LoopStatus.ERROR:
            await self._write_log(
                LogType.ERROR,
                f"Loop {loop.loop_id} failed at iteration {loop.current_iteration + 1}: {loop.error}",
            )
        else:
            await self._write_log(
                LogType.SUCCESS,
                f"Loop {loop.loop_id} {loop.status.value} after "
                f"{loop.current_iteration} iterations: {loop.stop_reason}",
            )

        return LoopResult.from_metadata(loop, self._failed_node)

    async def _run_iteration(self, iteration: int, feedback: str | None) -> dict[str, str] | None:
        """Execute the body once. Returns None if a node failed."""
        outputs: dict[str, str] = {}
        for node_id in self._order:
            try:
                result = await self._execute_node(node_id, iteration, feedback)
            except Exception as e:
                result = NodeResult(node_id=node_id, success=False, error=f"{type(e).__name__}: {e}")

            if not result.success:
                self._failed_node = node_id
                self._loop.finish(
                    LoopStatus.ERROR,
                    reason=f"Node '{node_id}' failed",
                    error=result.error or "Node execution failed",
                )
                return None
            outputs[node_id] = result.output
        return outputs

    def _representative_output(self, outputs: dict[str, str]) -> str:
        values = [outputs.get(node_id, "") for node_id in self._terminal_nodes]
        if len(values) == 1:
            return values[0]
        return OUTPUT_SEPARATOR.join(values)

    def _get_logger(self) -> FlowLoopLogger:
        return self._logger or get_logger()

    async def _emit(self, event: CallbackEvent, **data) -> None:
        if self._callbacks is not None:
            data.pop("loop_id", None)
            await self._callbacks.emit(event, loop_id=self._loop.loop_id, **data)

    async def _write_log(self, type: LogType, message: str) -> None:
        if self._log is not None:
            await self._log(type, message)
