"""Run coordinator: executes a whole workflow.

Stages run in declared order. Inside a stage, plain nodes and loop regions
are execution units; units whose dependencies are done run concurrently,
and each loop region is handed to its own ``LoopController``.
"""

from __future__ import annotations

import asyncio
import json
import time

from flowloop.core.conditions import Clock, now_ms
from flowloop.core.config import EngineConfig, FailurePolicy
from flowloop.core.graph import ExecutionPlan, ExecutionUnit, UnitKind
from flowloop.core.loop import LoopController
from flowloop.core.nodes import NodeRunner
from flowloop.core.state import LoopResult, LoopStatus, RunResult, RunStatus
from flowloop.core.types import (
    Connection,
    LogEntry,
    LogType,
    NodeResult,
    NodeStatus,
    OUTPUT_SEPARATOR,
    Workflow,
    WorkflowNode,
)
from flowloop.errors.exceptions import WorkflowError
from flowloop.functions.executor import FunctionExecutor
from flowloop.invoker.agent import AgentInvoker
from flowloop.invoker.base import BaseInvoker
from flowloop.invoker.retrying import RetryingInvoker
from flowloop.logging import FlowLoopLogger, get_logger
from flowloop.tracking.callbacks import CallbackEvent, CallbackManager, Subscription

_LOG_METHODS = {
    LogType.ERROR: "error",
    LogType.WARNING: "warning",
    LogType.RUNNING: "debug",
    LogType.INFO: "info",
    LogType.SUCCESS: "info",
}


class RunCoordinator:
    """Executes a workflow containing plain nodes and loops.

    The caller's workflow is copied; runtime fields (status, output,
    execution counts) are written to the copy, available via ``workflow``.

    Example:
        >>> coordinator = RunCoordinator(workflow, AgentInvoker())
        >>> sub = coordinator.subscribe()
        >>> result = await coordinator.run("Write a product description")
        >>> result.loops["loop-writer"].status
        <LoopStatus.CONVERGED: 'converged'>
    """

    def __init__(
        self,
        workflow: Workflow,
        invoker: BaseInvoker | None = None,
        *,
        config: EngineConfig | None = None,
        callbacks: CallbackManager | None = None,
        logger: FlowLoopLogger | None = None,
        clock: Clock | None = None,
        function_executor: FunctionExecutor | None = None,
    ) -> None:
        """Initialize coordinator.

        Args:
            workflow: Workflow definition. Not mutated.
            invoker: Agent service client. Defaults to an ``AgentInvoker``
                configured from the environment.
            config: Engine configuration.
            callbacks: Observer channel. A private one is created if None.
            logger: Console logger. The global logger is used if None.
            clock: Epoch-millisecond clock.
            function_executor: Evaluator for function nodes.

        Raises:
            EmptyWorkflowError: If the workflow has no nodes.
            InvalidWorkflowError: On duplicate node ids or dangling connections.
        """
        self._config = config or EngineConfig()
        self._workflow = workflow.model_copy(deep=True)
        self._plan = ExecutionPlan.build(self._workflow)
        self._callbacks = callbacks or CallbackManager()
        self._logger = logger
        self._clock = clock or now_ms

        invoker = invoker or AgentInvoker()
        if self._config.retry.enabled:
            invoker = RetryingInvoker(invoker, self._config.retry.to_policy())
        self._runner = NodeRunner(invoker, function_executor)

        self._nodes: dict[str, WorkflowNode] = {n.id: n for n in self._workflow.all_nodes()}
        self._incoming: dict[str, list[Connection]] = {n: [] for n in self._nodes}
        for conn in self._workflow.connections:
            self._incoming[conn.to_node_id].append(conn)

        self._controllers: dict[str, LoopController] = {}
        self._pending_stops: set[str] = set()
        self._results: dict[str, NodeResult] = {}
        self._loop_results: dict[str, LoopResult] = {}
        self._logs: list[LogEntry] = []
        self._run_input = ""
        self._cancelled = False
        self._running = False
        self._has_run = False

    @property
    def workflow(self) -> Workflow:
        """Working copy of the workflow, with runtime fields."""
        return self._workflow

    @property
    def plan(self) -> ExecutionPlan:
        return self._plan

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def callbacks(self) -> CallbackManager:
        return self._callbacks

    @property
    def logs(self) -> list[LogEntry]:
        return list(self._logs)

    @property
    def loop_ids(self) -> list[str]:
        return list(self._plan.loops)

    def subscribe(self, maxsize: int = 1000) -> Subscription:
        """Open a bounded queue of run events. Full queues drop new events."""
        return self._callbacks.subscribe(maxsize)

    def get_node(self, node_id: str) -> WorkflowNode:
        return self._workflow.get_node(node_id)

    def loop_state(self, loop_id: str) -> dict | None:
        """Snapshot of a loop in the current or last run."""
        controller = self._controllers.get(loop_id)
        if controller is None:
            return None
        snapshot = controller.metadata.snapshot()
        snapshot["estimated_remaining_ms"] = controller.evaluator.get_estimated_remaining_time(
            controller.metadata
        )
        return snapshot

    def force_stop(self, loop_id: str) -> None:
        """Stop one loop at its next iteration boundary.

        Calling it again, or for a loop that already stopped, has no effect.
        Before the first run the stop is queued, so that loop ends
        force-stopped without running. Between runs it is ignored.
        """
        if loop_id not in self._plan.loops:
            self._get_logger().warning("force_stop for unknown loop ignored", loop=loop_id)
            return
        controller = self._controllers.get(loop_id)
        if self._running and controller is not None:
            controller.force_stop()
        elif not self._has_run:
            self._pending_stops.add(loop_id)
        else:
            self._get_logger().warning("force_stop outside a run ignored", loop=loop_id)

    def cancel(self) -> None:
        """Stop every loop and start no further units.

        Before the first run this cancels that run. Between runs it is ignored.
        """
        if self._has_run and not self._running:
            self._get_logger().warning("cancel outside a run ignored")
            return
        self._cancelled = True
        for loop_id in self._plan.loops:
            self.force_stop(loop_id)

    def run_sync(self, input: str = "") -> RunResult:
        """Run synchronously (blocking)."""
        return asyncio.run(self.run(input))

    async def run(self, input: str = "") -> RunResult:
        """Execute every stage.

        Node failures never raise; they are reported in the returned
        ``RunResult`` and the run log. One coordinator runs one workflow
        at a time.

        Raises:
            WorkflowError: If a run is already in progress.
        """
        if self._running:
            raise WorkflowError("A run is already in progress on this coordinator")
        started = time.monotonic()
        self._reset(input)
        workflow_name = self._workflow.name
        errors: list[str] = []
        skipped: list[str] = []
        blocked: set[str] = set()
        last_output: str | None = None
        halted = False

        self._get_logger().run_start(
            workflow_name, len(self._workflow.stages), len(self._plan.loops)
        )
        await self._callbacks.emit(
            CallbackEvent.RUN_START,
            workflow=workflow_name,
            input=input,
            loops=list(self._plan.loops),
        )
        await self._add_log(LogType.INFO, "Workflow execution started")

        try:
            for index, units in enumerate(self._plan.stages):
                if not units:
                    continue
                if halted or self._cancelled:
                    skipped.extend(n for u in units for n in u.node_ids)
                    blocked.update(u.unit_id for u in units)
                    continue

                await self._callbacks.emit(
                    CallbackEvent.STAGE_START, stage=index, units=[u.unit_id for u in units]
                )
                self._get_logger().stage_start(index + 1, self._workflow.stages[index].name)
                await self._add_log(
                    LogType.INFO, f"Stage {index + 1}: processing {len(units)} unit(s)"
                )

                stage_errors, stage_output = await self._run_stage(units, blocked, skipped)
                if stage_output is not None:
                    last_output = stage_output

                await self._callbacks.emit(
                    CallbackEvent.STAGE_END, stage=index, success=not stage_errors
                )
                if stage_errors:
                    errors.extend(stage_errors)
                    await self._add_log(LogType.ERROR, f"Stage {index + 1} failed")
                    if self._config.failure_policy is FailurePolicy.HALT:
                        halted = True
                else:
                    await self._add_log(LogType.SUCCESS, f"Stage {index + 1} completed")

            if self._cancelled:
                status = RunStatus.CANCELLED
                await self._add_log(LogType.WARNING, "Workflow execution cancelled")
            elif errors:
                status = RunStatus.FAILED
                await self._add_log(LogType.ERROR, "Workflow execution failed")
            else:
                status = RunStatus.COMPLETED
                await self._add_log(LogType.SUCCESS, "Workflow execution completed")

            duration_ms = int((time.monotonic() - started) * 1000)
            self._get_logger().run_end(workflow_name, status is RunStatus.COMPLETED, duration_ms)
            await self._callbacks.emit(
                CallbackEvent.RUN_END, status=status.value, errors=list(errors)
            )
        finally:
            self._running = False
            self._has_run = True
            self._cancelled = False
            self._pending_stops.clear()
            self._callbacks.close_subscriptions()

        return RunResult(
            status=status,
            output=last_output,
            node_outputs={
                node_id: result.output
                for node_id, result in self._results.items()
                if result.success
            },
            loops=dict(self._loop_results),
            errors=errors,
            skipped_nodes=skipped,
            logs=list(self._logs),
            duration_ms=duration_ms,
        )

    def _reset(self, input: str) -> None:
        self._run_input = input
        self._results.clear()
        self._loop_results.clear()
        self._logs.clear()
        self._running = True

        for node in self._nodes.values():
            node.status = NodeStatus.IDLE
            node.output = None
            node.tool_outputs = []
            node.execution_count = 0
            node.previous_outputs = []
            region = self._plan.loop_for_node(node.id)
            node.loop_id = region.loop_id if region else None

        self._controllers = {}
        for loop_id, region in self._plan.loops.items():
            controller = LoopController.from_region(
                region,
                self._loop_executor(region.feedback_edges),
                self._config,
                callbacks=self._callbacks,
                logger=self._logger,
                log=self._add_log,
                clock=self._clock,
            )
            if loop_id in self._pending_stops:
                controller.force_stop()
            self._controllers[loop_id] = controller
        self._pending_stops.clear()

    async def _run_stage(
        self,
        units: list[ExecutionUnit],
        blocked: set[str],
        skipped: list[str],
    ) -> tuple[list[str], str | None]:
        """Run one stage's units by dependency.

        Returns:
            Errors raised by failed units, and the output of the last unit
            (in declared order) that completed.
        """
        pending = list(units)
        done: set[str] = set()
        outputs: dict[str, str] = {}
        errors: list[str] = []
        semaphore = (
            asyncio.Semaphore(self._config.max_concurrent_units)
            if self._config.max_concurrent_units
            else None
        )

        async def run_limited(unit: ExecutionUnit) -> tuple[bool, str | None]:
            if semaphore is None:
                return await self._run_unit(unit)
            async with semaphore:
                return await self._run_unit(unit)

        while pending:
            if errors or self._cancelled:
                break

            runnable: list[ExecutionUnit] = []
            for unit in list(pending):
                if (unit.depends_on | self._upstream_units(unit)) & blocked:
                    pending.remove(unit)
                    blocked.add(unit.unit_id)
                    skipped.extend(unit.node_ids)
                    await self._add_log(
                        LogType.WARNING,
                        f"Skipping {unit.unit_id}: an upstream unit did not complete",
                    )
                    continue
                if unit.depends_on <= done:
                    runnable.append(unit)

            if not runnable:
                break
            for unit in runnable:
                pending.remove(unit)

            results = await asyncio.gather(*(run_limited(u) for u in runnable))
            for unit, (success, output) in zip(runnable, results):
                if success:
                    done.add(unit.unit_id)
                    if output is not None:
                        outputs[unit.unit_id] = output
                else:
                    blocked.add(unit.unit_id)
                    errors.append(self._unit_error(unit))

        for unit in pending:
            blocked.add(unit.unit_id)
            skipped.extend(unit.node_ids)

        last_output = None
        for unit in units:
            if unit.unit_id in outputs:
                last_output = outputs[unit.unit_id]
        return errors, last_output

    def _upstream_units(self, unit: ExecutionUnit) -> set[str]:
        members = set(unit.node_ids)
        return {
            self._plan.node_units[conn.from_node_id]
            for node_id in unit.node_ids
            for conn in self._incoming[node_id]
            if conn.from_node_id not in members and conn.from_node_id in self._plan.node_units
        }

    def _unit_error(self, unit: ExecutionUnit) -> str:
        if unit.kind is UnitKind.LOOP:
            result = self._loop_results.get(unit.unit_id)
            detail = result.error if result else None
            return f"Loop {unit.unit_id} failed: {detail or 'unknown error'}"
        result = self._results.get(unit.unit_id)
        detail = result.error if result else None
        return f"Node {unit.unit_id} failed: {detail or 'unknown error'}"

    async def _run_unit(self, unit: ExecutionUnit) -> tuple[bool, str | None]:
        if unit.kind is UnitKind.LOOP:
            controller = self._controllers[unit.unit_id]
            result = await controller.run()
            self._loop_results[unit.unit_id] = result
            return result.status is not LoopStatus.ERROR, result.output

        node_id = unit.node_ids[0]
        result = await self._execute_node(node_id)
        return result.success, result.output if result.success else None

    def _loop_executor(self, feedback_edges: tuple[str, ...]):
        edges = frozenset(feedback_edges)

        async def execute(node_id: str, iteration: int, feedback: str | None) -> NodeResult:
            return await self._execute_node(node_id, edges, feedback, iteration=iteration)

        return execute

    def assemble_input(
        self,
        node_id: str,
        feedback_edges: frozenset[str] = frozenset(),
        feedback: str | None = None,
    ) -> str:
        """Join the outputs reaching ``node_id``, or fall back to the run input.

        Feedback edges contribute the previous iteration's output once, and
        nothing before the first iteration completes.
        """
        parts: list[str] = []
        fed_back = False
        for conn in self._incoming[node_id]:
            if conn.id in feedback_edges:
                if feedback is not None and not fed_back:
                    parts.append(feedback)
                    fed_back = True
                continue
            source = self._results.get(conn.from_node_id)
            if source is None or not source.success:
                continue
            text = source.port(conn.from_output_port)
            if text:
                parts.append(text)
        return OUTPUT_SEPARATOR.join(parts) if parts else self._run_input

    async def _execute_node(
        self,
        node_id: str,
        feedback_edges: frozenset[str] = frozenset(),
        feedback: str | None = None,
        iteration: int | None = None,
    ) -> NodeResult:
        node = self._nodes[node_id]
        input = self.assemble_input(node_id, feedback_edges, feedback)

        node.status = NodeStatus.RUNNING
        self._get_logger().node_start(node.label, input)
        await self._callbacks.emit(
            CallbackEvent.NODE_START,
            node_id=node_id,
            loop_id=node.loop_id,
            status=node.status.value,
            iteration=iteration,
            input_length=len(input),
        )
        await self._add_log(
            LogType.INFO,
            f"Starting {node.node_type} {node.label} (input length: {len(input)} chars)",
        )
        if node.node_type == "agent":
            for tool in node.tools:
                await self._add_log(LogType.RUNNING, f"Executing tool: {tool.tool_id}")

        result = await self._runner.run(node, input, user_input=self._run_input)
        self._results[node_id] = result
        node.execution_count += 1

        if result.success:
            if node.output is not None and node.loop_id is not None:
                node.previous_outputs.append(node.output)
            node.output = result.output
            node.tool_outputs = list(result.tool_outputs)
            node.status = NodeStatus.COMPLETE
            for tool_output in result.tool_outputs:
                await self._add_log(
                    LogType.INFO,
                    f"Tool output [{tool_output.tool_id}]: "
                    f"{json.dumps(tool_output.output, indent=2, default=str)}",
                )
            self._get_logger().node_end(node.label, result.duration_ms)
            await self._add_log(
                LogType.SUCCESS,
                f"✓ {node.label} completed (output length: {len(result.output)} chars)",
            )
            await self._callbacks.emit(
                CallbackEvent.NODE_END,
                node_id=node_id,
                loop_id=node.loop_id,
                status=node.status.value,
                iteration=iteration,
                output=node.output,
                execution_count=node.execution_count,
                duration_ms=result.duration_ms,
            )
        else:
            node.status = NodeStatus.ERROR
            node.output = f"Error: {result.error}"
            self._get_logger().node_error(node.label, result.error or "unknown error")
            await self._add_log(LogType.ERROR, f"✗ {node.label} failed: {result.error}")
            await self._callbacks.emit(
                CallbackEvent.NODE_ERROR,
                node_id=node_id,
                loop_id=node.loop_id,
                status=node.status.value,
                iteration=iteration,
                error=result.error,
                execution_count=node.execution_count,
            )
        return result

    async def _add_log(self, type: LogType, message: str) -> None:
        entry = LogEntry(type=type, message=message)
        self._logs.append(entry)
        getattr(self._get_logger(), _LOG_METHODS[type])(message)
        await self._callbacks.emit(
            CallbackEvent.LOG, time=entry.time, type=entry.type.value, message=entry.message
        )

    def _get_logger(self) -> FlowLoopLogger:
        return self._logger or get_logger()
