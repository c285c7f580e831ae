"""Dependency graph utilities and the resource graph builder."""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from aws_provisioner.engine.errors import CycleError, DuplicateAddressError, UnknownReferenceError

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable, Mapping, Sequence

    from aws_provisioner.resources.base import Resource

logger = logging.getLogger(__name__)


class DependencyGraph:
    """A directed graph where nodes depend on other nodes."""

    def __init__(
        self,
        nodes: Iterable[str],
        dependencies: Mapping[str, Iterable[str]],
        priorities: Mapping[str, int] | None = None,
    ) -> None:
        self._nodes = set(nodes)
        self._priorities = priorities or {}
        # node -> filtered deps within graph
        self._deps: dict[str, set[str]] = {}
        for node in self._nodes:
            deps = set(dependencies.get(node, []))
            self._deps[node] = {d for d in deps if d in self._nodes}

    def _key(self, node: str) -> tuple[int, str]:
        return (self._priorities.get(node, 0), node)

    def _indegrees(self) -> tuple[dict[str, int], dict[str, set[str]]]:
        indegree: dict[str, int] = dict.fromkeys(self._nodes, 0)
        dependents: dict[str, set[str]] = {n: set() for n in self._nodes}
        for node, deps in self._deps.items():
            indegree[node] = len(deps)
            for dep in deps:
                dependents[dep].add(node)
        return indegree, dependents

    def _raise_cycle(self, visited: Collection[str]) -> None:
        remaining = sorted(self._nodes - set(visited))
        raise CycleError(remaining)

    def topological_order(self) -> list[str]:
        """Return deterministic topo order (priority, then lexicographic tie-break)."""
        indegree, dependents = self._indegrees()

        ready: list[tuple[int, str]] = [self._key(n) for n, deg in indegree.items() if deg == 0]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            _, node = heapq.heappop(ready)
            order.append(node)
            for child in sorted(dependents[node]):
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, self._key(child))

        if len(order) != len(self._nodes):
            self._raise_cycle(order)

        return order

    def reverse_topological_order(self) -> list[str]:
        order = self.topological_order()
        order.reverse()
        return order

    def waves(self) -> list[list[str]]:
        """Group nodes into waves; every dependency of a node sits in an earlier wave."""
        indegree, dependents = self._indegrees()
        current = sorted((n for n, deg in indegree.items() if deg == 0), key=self._key)

        waves: list[list[str]] = []
        seen = 0
        while current:
            waves.append(current)
            seen += len(current)
            ready: list[str] = []
            for node in current:
                for child in dependents[node]:
                    indegree[child] -= 1
                    if indegree[child] == 0:
                        ready.append(child)
            current = sorted(ready, key=self._key)

        if seen != len(self._nodes):
            self._raise_cycle([n for wave in waves for n in wave])

        return waves

    def dependents_of(self, node: str) -> set[str]:
        """Nodes that depend on *node*, directly or transitively."""
        _, dependents = self._indegrees()
        found: set[str] = set()
        stack = [node]
        while stack:
            for child in dependents.get(stack.pop(), ()):
                if child not in found:
                    found.add(child)
                    stack.append(child)
        return found


@dataclass(frozen=True)
class ResourceGraph:
    """Declared resources keyed by address plus their dependency edges."""

    resources: dict[str, Resource]
    dependencies: dict[str, list[str]]
    priorities: dict[str, int] = field(default_factory=dict)

    def _graph(self) -> DependencyGraph:
        return DependencyGraph(self.resources, self.dependencies, priorities=self.priorities)

    def topological_order(self) -> list[str]:
        return self._graph().topological_order()

    def reverse_topological_order(self) -> list[str]:
        return self._graph().reverse_topological_order()

    def waves(self) -> list[list[str]]:
        return self._graph().waves()

    def dependents_of(self, address: str) -> set[str]:
        return self._graph().dependents_of(address)


def build_resource_graph(
    resources: Sequence[Resource],
    *,
    tracked: Collection[str] = (),
) -> ResourceGraph:
    """Build the dependency graph of *resources*.

    Edges come from ``${...}`` references and explicit ``depends_on``.
    *tracked* holds addresses recorded in state; it only enriches the error
    raised for a reference to a resource that is no longer declared.

    Raises:
        DuplicateAddressError: Two declarations share an address.
        UnknownReferenceError: A reference names an undeclared resource.
        CycleError: The declarations form a dependency cycle.
    """
    by_addr: dict[str, Resource] = {}
    for r in resources:
        if r.address in by_addr:
            raise DuplicateAddressError(r.address)
        by_addr[r.address] = r

    dependencies: dict[str, list[str]] = {}
    for addr, r in by_addr.items():
        deps = r.dependency_addresses()
        for dep in deps:
            if dep not in by_addr:
                raise UnknownReferenceError(addr, dep, tracked=dep in tracked)
        dependencies[addr] = deps

    graph = ResourceGraph(
        resources=by_addr,
        dependencies=dependencies,
        priorities={addr: r.plan_priority for addr, r in by_addr.items()},
    )
    # Fail on cycles at build time, before anything talks to AWS.
    graph.topological_order()
    logger.debug("Built resource graph: %d resources", len(by_addr))
    return graph
