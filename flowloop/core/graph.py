"""Graph analysis: loop regions and the per-stage execution plan.

Loops are strongly connected components of the connection graph, found
with Tarjan's algorithm once before a run starts. Each loop is stored as a
``LoopRegion`` (a node-id set plus a body ordering), so the workflow data
itself never holds object cycles.
"""

from __future__ import annotations

from collections import deque
from enum import Enum
from typing import Iterable, Sequence

from pydantic import BaseModel, ConfigDict, Field

from flowloop.core.types import Connection, LoopEdgeConfig, Workflow
from flowloop.errors.exceptions import EmptyWorkflowError


class LoopRegion(BaseModel):
    """A cyclic subgraph executed iteratively by a loop controller.

    Attributes:
        order: Body nodes in execution order, entry node first.
        feedback_edges: Connections that carry an iteration's output back
            into the next iteration.
        terminal_nodes: Sources of the feedback edges; their outputs form the
            representative output of an iteration.
    """

    loop_id: str
    nodes: frozenset[str]
    edges: tuple[str, ...] = ()
    entry_node: str
    exit_node: str
    entry_points: tuple[str, ...] = ()
    exit_points: tuple[str, ...] = ()
    order: tuple[str, ...] = ()
    feedback_edges: tuple[str, ...] = ()
    terminal_nodes: tuple[str, ...] = ()
    loop_config: LoopEdgeConfig | None = None

    model_config = ConfigDict(frozen=True)

    def contains(self, node_id: str) -> bool:
        return node_id in self.nodes


class LoopDetector:
    """Finds loops in a set of connections.

    Example:
        >>> detector = LoopDetector(workflow.connections, [n.id for n in workflow.all_nodes()])
        >>> [loop.loop_id for loop in detector.detect_loops()]
        ['loop-writer']
    """

    def __init__(
        self,
        connections: Sequence[Connection],
        node_ids: Iterable[str] | None = None,
    ) -> None:
        """Initialize detector.

        Args:
            connections: Graph edges.
            node_ids: Nodes in declared order. Defaults to connection endpoints
                in order of first appearance.
        """
        self._connections = list(connections)
        ordered: dict[str, None] = {}
        for node_id in node_ids or ():
            ordered[node_id] = None
        for conn in self._connections:
            ordered.setdefault(conn.from_node_id, None)
            ordered.setdefault(conn.to_node_id, None)
        self._node_ids = list(ordered)
        self._position = {node_id: i for i, node_id in enumerate(self._node_ids)}

        self._adjacency: dict[str, list[str]] = {n: [] for n in self._node_ids}
        for conn in self._connections:
            self._adjacency[conn.from_node_id].append(conn.to_node_id)

    def detect_loops(self) -> list[LoopRegion]:
        """Detect every loop, ordered by the position of its first node."""
        components = self._strongly_connected_components()
        loops = [self._build_region(component) for component in components]
        loops.sort(key=lambda loop: min(self._position[n] for n in loop.nodes))
        return loops

    def _strongly_connected_components(self) -> list[set[str]]:
        index = 0
        stack: list[str] = []
        indices: dict[str, int] = {}
        low_links: dict[str, int] = {}
        on_stack: set[str] = set()
        components: list[set[str]] = []

        def strong_connect(node_id: str) -> None:
            nonlocal index
            indices[node_id] = index
            low_links[node_id] = index
            index += 1
            stack.append(node_id)
            on_stack.add(node_id)

            for neighbor in self._adjacency[node_id]:
                if neighbor not in indices:
                    strong_connect(neighbor)
                    low_links[node_id] = min(low_links[node_id], low_links[neighbor])
                elif neighbor in on_stack:
                    low_links[node_id] = min(low_links[node_id], indices[neighbor])

            if low_links[node_id] == indices[node_id]:
                component: set[str] = set()
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.add(member)
                    if member == node_id:
                        break
                # A lone node is a loop only when it feeds itself
                if len(component) > 1 or node_id in self._adjacency[node_id]:
                    components.append(component)

        for node_id in self._node_ids:
            if node_id not in indices:
                strong_connect(node_id)

        return components

    def _build_region(self, members: set[str]) -> LoopRegion:
        declared = sorted(members, key=self._position.__getitem__)
        internal = [
            c for c in self._connections
            if c.from_node_id in members and c.to_node_id in members
        ]

        entry_points = tuple(
            n for n in declared
            if any(c.to_node_id == n and c.from_node_id not in members for c in self._connections)
        )
        exit_points = tuple(
            n for n in declared
            if any(c.from_node_id == n and c.to_node_id not in members for c in self._connections)
        )
        entry_node = entry_points[0] if entry_points else declared[0]

        feedback = self._feedback_edges(internal, entry_node)
        feedback_ids = {c.id for c in feedback}
        order = self._body_order(
            declared, [c for c in internal if c.id not in feedback_ids], entry_node
        )

        terminal_nodes: list[str] = []
        for node_id in order:
            if any(c.from_node_id == node_id for c in feedback):
                terminal_nodes.append(node_id)

        if exit_points:
            exit_node = exit_points[0]
        else:
            exit_node = terminal_nodes[-1] if terminal_nodes else order[-1]

        return LoopRegion(
            loop_id=f"loop-{entry_node}",
            nodes=frozenset(members),
            edges=tuple(c.id for c in internal),
            entry_node=entry_node,
            exit_node=exit_node,
            entry_points=entry_points,
            exit_points=exit_points,
            order=tuple(order),
            feedback_edges=tuple(c.id for c in feedback),
            terminal_nodes=tuple(terminal_nodes),
            loop_config=self._loop_config(internal),
        )

    @staticmethod
    def _loop_config(internal: list[Connection]) -> LoopEdgeConfig | None:
        flagged = [c for c in internal if c.is_loop_edge and c.loop_config is not None]
        if flagged:
            return flagged[0].loop_config
        configured = [c for c in internal if c.loop_config is not None]
        return configured[0].loop_config if configured else None

    def _feedback_edges(self, internal: list[Connection], entry_node: str) -> list[Connection]:
        """Pick the internal edges that close the cycle.

        Edges flagged ``is_loop_edge`` are used when removing them leaves an
        acyclic body that starts at the entry node. Otherwise back edges of a
        depth-first walk from the entry node are used.
        """
        flagged = [c for c in internal if c.is_loop_edge]
        if flagged:
            remaining = [c for c in internal if not c.is_loop_edge]
            if not _has_cycle(remaining) and not any(
                c.to_node_id == entry_node for c in remaining
            ):
                return flagged

        adjacency: dict[str, list[Connection]] = {}
        # Flagged edges last, so they are preferred as back edges
        for conn in sorted(internal, key=lambda c: c.is_loop_edge):
            adjacency.setdefault(conn.from_node_id, []).append(conn)

        visited: set[str] = set()
        rec_stack: set[str] = set()
        back_edges: list[Connection] = []

        def dfs(node_id: str) -> None:
            visited.add(node_id)
            rec_stack.add(node_id)
            for conn in adjacency.get(node_id, []):
                if conn.to_node_id in rec_stack:
                    back_edges.append(conn)
                elif conn.to_node_id not in visited:
                    dfs(conn.to_node_id)
            rec_stack.remove(node_id)

        dfs(entry_node)
        return back_edges

    def _body_order(
        self,
        declared: list[str],
        forward: list[Connection],
        entry_node: str,
    ) -> list[str]:
        """Kahn topological sort of the body, entry first, ties by declared order."""
        in_degree = {n: 0 for n in declared}
        adjacency: dict[str, list[str]] = {n: [] for n in declared}
        for conn in forward:
            in_degree[conn.to_node_id] += 1
            adjacency[conn.from_node_id].append(conn.to_node_id)

        def priority(node_id: str) -> tuple[int, int]:
            return (0 if node_id == entry_node else 1, self._position[node_id])

        ready = sorted((n for n, d in in_degree.items() if d == 0), key=priority)
        result: list[str] = []
        while ready:
            node_id = ready.pop(0)
            result.append(node_id)
            for neighbor in adjacency[node_id]:
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    ready.append(neighbor)
            ready.sort(key=priority)
        return result


def _has_cycle(connections: Iterable[Connection]) -> bool:
    adjacency: dict[str, list[str]] = {}
    for conn in connections:
        adjacency.setdefault(conn.from_node_id, []).append(conn.to_node_id)

    visited: set[str] = set()
    rec_stack: set[str] = set()

    def dfs(node_id: str) -> bool:
        visited.add(node_id)
        rec_stack.add(node_id)
        for neighbor in adjacency.get(node_id, []):
            if neighbor not in visited:
                if dfs(neighbor):
                    return True
            elif neighbor in rec_stack:
                return True
        rec_stack.remove(node_id)
        return False

    return any(dfs(n) for n in list(adjacency) if n not in visited)


def is_node_in_loop(node_id: str, loops: Iterable[LoopRegion]) -> bool:
    return any(loop.contains(node_id) for loop in loops)


def get_loops_for_node(node_id: str, loops: Iterable[LoopRegion]) -> list[LoopRegion]:
    return [loop for loop in loops if loop.contains(node_id)]


def would_create_loop(connections: Iterable[Connection], from_id: str, to_id: str) -> bool:
    """Whether adding ``from_id -> to_id`` would close a cycle."""
    if from_id == to_id:
        return True
    adjacency: dict[str, list[str]] = {}
    for conn in connections:
        adjacency.setdefault(conn.from_node_id, []).append(conn.to_node_id)

    seen = {to_id}
    queue = deque([to_id])
    while queue:
        node_id = queue.popleft()
        for neighbor in adjacency.get(node_id, []):
            if neighbor == from_id:
                return True
            if neighbor not in seen:
                seen.add(neighbor)
                queue.append(neighbor)
    return False


class UnitKind(str, Enum):
    NODE = "node"
    LOOP = "loop"


class ExecutionUnit(BaseModel):
    """A schedulable piece of a stage: one plain node or one whole loop."""

    unit_id: str
    kind: UnitKind
    node_ids: tuple[str, ...]
    loop: LoopRegion | None = None
    depends_on: frozenset[str] = Field(default_factory=frozenset)

    model_config = ConfigDict(frozen=True)


class ExecutionPlan(BaseModel):
    """Stages broken into dependency-ordered execution units.

    A loop belongs to the stage holding its entry node; its other nodes are
    not scheduled again in later stages. ``depends_on`` lists units of the
    same stage whose output a unit consumes.
    """

    stages: list[list[ExecutionUnit]]
    loops: dict[str, LoopRegion]
    node_units: dict[str, str] = Field(description="Node id to owning unit id")

    model_config = ConfigDict(frozen=True)

    @classmethod
    def build(cls, workflow: Workflow) -> ExecutionPlan:
        """Analyze a workflow.

        Raises:
            EmptyWorkflowError: If the workflow has no nodes.
            InvalidWorkflowError: On duplicate ids or dangling connections.
        """
        nodes = workflow.all_nodes()
        if not nodes:
            raise EmptyWorkflowError()
        workflow.validate_structure()

        loops = LoopDetector(workflow.connections, [n.id for n in nodes]).detect_loops()
        loop_of: dict[str, LoopRegion] = {}
        for loop in loops:
            for node_id in loop.nodes:
                loop_of[node_id] = loop

        node_units: dict[str, str] = {}
        staged: list[list[tuple[str, UnitKind, tuple[str, ...], LoopRegion | None]]] = []
        for stage in workflow.stages:
            units: list[tuple[str, UnitKind, tuple[str, ...], LoopRegion | None]] = []
            for node in stage.nodes:
                loop = loop_of.get(node.id)
                if loop is None:
                    units.append((node.id, UnitKind.NODE, (node.id,), None))
                    node_units[node.id] = node.id
                elif node.id == loop.entry_node:
                    units.append((loop.loop_id, UnitKind.LOOP, loop.order, loop))
                    for member in loop.nodes:
                        node_units[member] = loop.loop_id
            staged.append(units)

        stages: list[list[ExecutionUnit]] = []
        for units in staged:
            stage_ids = {unit_id for unit_id, _, _, _ in units}
            built: list[ExecutionUnit] = []
            for unit_id, kind, node_ids, loop in units:
                members = set(node_ids)
                depends_on = {
                    node_units[c.from_node_id]
                    for c in workflow.connections
                    if c.to_node_id in members and c.from_node_id not in members
                } & stage_ids
                built.append(
                    ExecutionUnit(
                        unit_id=unit_id,
                        kind=kind,
                        node_ids=node_ids,
                        loop=loop,
                        depends_on=frozenset(depends_on - {unit_id}),
                    )
                )
            stages.append(built)

        return cls(
            stages=stages,
            loops={loop.loop_id: loop for loop in loops},
            node_units=node_units,
        )

    def loop_for_node(self, node_id: str) -> LoopRegion | None:
        unit_id = self.node_units.get(node_id)
        return self.loops.get(unit_id) if unit_id else None
