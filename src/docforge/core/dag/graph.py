# src/docforge/core/dag/graph.py
"""DependencyGraph: validation, ordering, and traversal.

Nodes are processor keys; edges point from a dependency to its dependent.
The graph is built once per run from the registry and is read-only
afterwards, so it needs no synchronization.
"""

from __future__ import annotations

import heapq
from collections import deque
from typing import TYPE_CHECKING

import networkx as nx
from networkx import DiGraph

from docforge.contracts.errors import CycleError
from docforge.core.dag.models import ExecutionPlan, GraphWarning
from docforge.core.logging import get_logger

if TYPE_CHECKING:
    from docforge.core.registry import ProcessorRegistry

logger = get_logger(__name__)


class DependencyGraph:
    """Dependency graph for a processor registry.

    Wraps a NetworkX DiGraph with domain-specific operations.
    """

    def __init__(self) -> None:
        self._graph: DiGraph[str] = nx.DiGraph()
        self._plan: ExecutionPlan | None = None

    @classmethod
    def from_registry(cls, registry: ProcessorRegistry) -> DependencyGraph:
        """Build the graph from a validated registry.

        The registry guarantees every dependency exists, so every edge
        endpoint is a node.
        """
        graph = cls()
        for descriptor in registry:
            graph.add_node(descriptor.key)
        for descriptor in registry:
            for dependency in sorted(descriptor.dependencies):
                graph.add_dependency(descriptor.key, dependency)
        return graph

    def add_node(self, key: str) -> None:
        self._graph.add_node(key)
        self._plan = None

    def add_dependency(self, key: str, dependency: str) -> None:
        """Record that key depends on dependency.

        Raises:
            KeyError: If either endpoint is not a node
        """
        for endpoint in (key, dependency):
            if endpoint not in self._graph:
                raise KeyError(f"Unknown processor '{endpoint}'")
        self._graph.add_edge(dependency, key)
        self._plan = None

    @property
    def node_count(self) -> int:
        return self._graph.number_of_nodes()

    @property
    def edge_count(self) -> int:
        return self._graph.number_of_edges()

    def __contains__(self, key: object) -> bool:
        return key in self._graph

    def get_nx_graph(self) -> DiGraph[str]:
        """Frozen copy of the underlying graph."""
        return nx.freeze(self._graph.copy())

    # === Resolution ===

    def resolve(self) -> list[str]:
        """Produce the deterministic topological execution order.

        Kahn's algorithm, iterative; among ready nodes the smallest key is
        always taken first, so the order is reproducible across runs.

        Returns:
            Keys, every dependency before its dependents

        Raises:
            CycleError: With the minimal cycle if the graph is cyclic
        """
        return list(self.plan().order)

    def plan(self) -> ExecutionPlan:
        """Resolve once and memoize the order with its level metadata."""
        if self._plan is not None:
            return self._plan

        in_degree = {key: self._graph.in_degree(key) for key in self._graph.nodes}
        ready = [key for key, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)
        levels = dict.fromkeys(ready, 0)
        order: list[str] = []

        while ready:
            key = heapq.heappop(ready)
            order.append(key)
            for dependent in self._graph.successors(key):
                levels[dependent] = max(levels.get(dependent, 0), levels[key] + 1)
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, dependent)

        if len(order) != self._graph.number_of_nodes():
            remaining = set(self._graph.nodes) - set(order)
            cycle = self._minimal_cycle(remaining)
            logger.debug("dependency_cycle", cycle=cycle)
            raise CycleError(cycle)

        self._plan = ExecutionPlan(
            order=tuple(order),
            index={key: position for position, key in enumerate(order)},
            levels=levels,
        )
        return self._plan

    def _minimal_cycle(self, remaining: set[str]) -> list[str]:
        """Find the shortest cycle among nodes Kahn's algorithm could not order.

        Walks "depends on" edges (the reverse of graph edges), so in the
        result each key depends on the next and the last depends on the
        first. Ties between equally short cycles go to the one found from the
        smallest starting key, which is then also the cycle's first element.
        """
        best: list[str] | None = None
        for start in sorted(remaining):
            cycle = self._shortest_cycle_through(start, remaining)
            if cycle is not None and (best is None or len(cycle) < len(best)):
                best = cycle
                if len(best) == 2:
                    break
        # Every node left over by Kahn's algorithm lies on or downstream of a cycle
        assert best is not None, "Kahn's algorithm left nodes without a cycle"
        pivot = best.index(min(best))
        return best[pivot:] + best[:pivot]

    def _shortest_cycle_through(self, start: str, allowed: set[str]) -> list[str] | None:
        parents: dict[str, str] = {}
        queue: deque[str] = deque([start])
        visited = {start}
        while queue:
            node = queue.popleft()
            for dependency in sorted(self._graph.predecessors(node)):
                if dependency not in allowed:
                    continue
                if dependency == start:
                    path = [node]
                    while path[-1] != start:
                        path.append(parents[path[-1]])
                    path.reverse()
                    return path
                if dependency not in visited:
                    visited.add(dependency)
                    parents[dependency] = node
                    queue.append(dependency)
        return None

    # === Traversal ===

    def dependencies_of(self, key: str) -> list[str]:
        """Direct dependencies of key, ascending."""
        return sorted(self._graph.predecessors(key))

    def dependents_of(self, key: str) -> list[str]:
        """Direct dependents of key, ascending."""
        return sorted(self._graph.successors(key))

    def ancestors(self, key: str) -> set[str]:
        """Every processor key transitively depends on."""
        return set(nx.ancestors(self._graph, key))

    def descendants(self, key: str) -> set[str]:
        """Every processor that transitively depends on key."""
        return set(nx.descendants(self._graph, key))

    def warnings(self) -> list[GraphWarning]:
        """Non-fatal observations about the graph's shape."""
        found: list[GraphWarning] = []
        if self._graph.number_of_nodes() > 1 and self._graph.number_of_edges() > 0:
            isolated = sorted(nx.isolates(self._graph))
            if isolated:
                found.append(
                    GraphWarning(
                        code="isolated_processors",
                        message="Processors with no dependencies and no dependents",
                        keys=tuple(isolated),
                    )
                )
        return found
