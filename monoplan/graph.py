"""Dependency graph utilities.

Builds the internal dependency graph of a workspace and provides
topological ordering. Packages must be released in dependency order so
that when package A depends on package B, B's new version exists first.

Packages live in a dense array sorted by name; adjacency lists (forward and
transposed) hold integer indices into it. Every traversal visits neighbours
in index order, which is name order, so all output is deterministic.
"""

from __future__ import annotations

import heapq
from collections import deque
from collections.abc import Iterable, Mapping

from .errors import GraphError
from .models import DependencyEdge, ExternalReference, Package, Workspace


def topo_sort(deps: Mapping[str, Iterable[str]]) -> list[str]:
    """Topologically sort names by their dependencies.

    Uses Kahn's algorithm to produce an order where dependencies come
    before dependents. Whenever several names are ready, the
    alphabetically smallest goes first.

    Args:
        deps: Map of name → names it depends on. Dependencies that are not
              keys of the map are ignored.

    Returns:
        Names in dependency order.

    Raises:
        GraphError: If a dependency cycle is detected.

    Example:
        If A depends on B, and B depends on C:
        topo_sort({A: [B], B: [C], C: []}) → [C, B, A]
    """
    order, remaining = _kahn(deps)
    if remaining:
        raise GraphError(
            f"Dependency cycle detected involving: {', '.join(remaining)}", packages=remaining
        )
    return order


def _kahn(deps: Mapping[str, Iterable[str]]) -> tuple[list[str], list[str]]:
    """Kahn's algorithm; returns (ordered, sorted names left in cycles)."""
    in_degree = {n: 0 for n in deps}
    reverse_deps: dict[str, list[str]] = {n: [] for n in deps}
    for name, targets in deps.items():
        for dep in set(targets):
            # Dependencies outside the map are already satisfied
            if dep in deps:
                in_degree[name] += 1
                reverse_deps[dep].append(name)

    queue = [n for n, d in in_degree.items() if d == 0]
    heapq.heapify(queue)
    order: list[str] = []
    while queue:
        node = heapq.heappop(queue)
        order.append(node)
        for dependent in reverse_deps[node]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(queue, dependent)

    done = set(order)
    return order, sorted(n for n in deps if n not in done)


def _strongly_connected(forward: tuple[tuple[int, ...], ...]) -> list[list[int]]:
    """Tarjan's algorithm, iterative so deep chains cannot hit the recursion limit."""
    n = len(forward)
    index = [-1] * n
    low = [0] * n
    on_stack = [False] * n
    stack: list[int] = []
    components: list[list[int]] = []
    counter = 0

    for start in range(n):
        if index[start] != -1:
            continue
        work = [(start, 0)]
        while work:
            node, child = work[-1]
            if child == 0:
                index[node] = low[node] = counter
                counter += 1
                stack.append(node)
                on_stack[node] = True
            if child < len(forward[node]):
                work[-1] = (node, child + 1)
                nxt = forward[node][child]
                if index[nxt] == -1:
                    work.append((nxt, 0))
                elif on_stack[nxt]:
                    low[node] = min(low[node], index[nxt])
                continue
            work.pop()
            if work:
                parent = work[-1][0]
                low[parent] = min(low[parent], low[node])
            if low[node] == index[node]:
                component: list[int] = []
                while True:
                    member = stack.pop()
                    on_stack[member] = False
                    component.append(member)
                    if member == node:
                        break
                components.append(sorted(component))
    return components


class DependencyGraph:
    """Directed graph of internal packages; an edge points at a dependency.

    Cycles are allowed here and reported in :attr:`cycles`; whether a cycle
    is fatal is decided by the validator and the planner.

    Attributes:
        names: Internal package names, sorted.
        edges: Every internal dependency edge, sorted.
        externals: Every dependency on a non-member package, sorted.
        cycles: Each cycle as a sorted tuple of names, sorted.
    """

    def __init__(self, workspace: Workspace) -> None:
        self.workspace = workspace
        self.names: tuple[str, ...] = tuple(sorted(p.name for p in workspace.packages))
        self.index: dict[str, int] = {n: i for i, n in enumerate(self.names)}
        self._packages: dict[str, Package] = {p.name: p for p in workspace.packages}

        forward: list[set[int]] = [set() for _ in self.names]
        reverse: list[set[int]] = [set() for _ in self.names]
        edges: list[DependencyEdge] = []
        externals: list[ExternalReference] = []
        for pkg in workspace.packages:
            src = self.index[pkg.name]
            for edge in pkg.dependencies:
                dst = self.index.get(edge.to_package)
                if dst is None:
                    externals.append(
                        ExternalReference(
                            name=edge.to_package, package=pkg.name, range=edge.range, kind=edge.kind
                        )
                    )
                    continue
                forward[src].add(dst)
                reverse[dst].add(src)
                edges.append(edge)

        self.forward: tuple[tuple[int, ...], ...] = tuple(tuple(sorted(s)) for s in forward)
        self.reverse: tuple[tuple[int, ...], ...] = tuple(tuple(sorted(s)) for s in reverse)
        self.edges: tuple[DependencyEdge, ...] = tuple(
            sorted(edges, key=lambda e: (e.from_package, e.to_package, e.kind.value))
        )
        by_source: dict[str, list[DependencyEdge]] = {}
        by_target: dict[str, list[DependencyEdge]] = {}
        for edge in self.edges:
            by_source.setdefault(edge.from_package, []).append(edge)
            by_target.setdefault(edge.to_package, []).append(edge)
        self._edges_from = {n: tuple(es) for n, es in by_source.items()}
        self._edges_to = {n: tuple(es) for n, es in by_target.items()}
        self.externals: tuple[ExternalReference, ...] = tuple(
            sorted(externals, key=lambda e: (e.name, e.package, e.kind.value))
        )

        cycles: list[tuple[str, ...]] = []
        for component in _strongly_connected(self.forward):
            node = component[0]
            if len(component) > 1 or node in self.forward[node]:
                cycles.append(tuple(self.names[i] for i in component))
        self.cycles: tuple[tuple[str, ...], ...] = tuple(sorted(cycles))
        self._cyclic = frozenset(n for c in self.cycles for n in c)

    def __len__(self) -> int:
        return len(self.names)

    def __contains__(self, name: object) -> bool:
        return name in self.index

    def package(self, name: str) -> Package:
        return self._packages[name]

    def version(self, name: str) -> str:
        return self._packages[name].version

    @property
    def external_names(self) -> tuple[str, ...]:
        return tuple(sorted({e.name for e in self.externals}))

    @property
    def is_acyclic(self) -> bool:
        return not self.cycles

    def _idx(self, name: str) -> int:
        try:
            return self.index[name]
        except KeyError:
            raise GraphError(f"Unknown package: {name}", packages=[name]) from None

    def dependencies(self, name: str) -> tuple[str, ...]:
        """Internal packages ``name`` depends on."""
        return tuple(self.names[i] for i in self.forward[self._idx(name)])

    def dependents(self, name: str) -> tuple[str, ...]:
        """Internal packages that depend on ``name``."""
        return tuple(self.names[i] for i in self.reverse[self._idx(name)])

    def edges_from(self, name: str) -> tuple[DependencyEdge, ...]:
        return self._edges_from.get(name, ())

    def edges_to(self, name: str) -> tuple[DependencyEdge, ...]:
        return self._edges_to.get(name, ())

    def in_cycle(self, name: str) -> bool:
        return name in self._cyclic

    def topo_order(self, subset: Iterable[str] | None = None) -> list[str]:
        """Dependencies-first order of ``subset`` (default: every package).

        Raises:
            GraphError: If the subset contains a cycle.
        """
        chosen = set(self.names if subset is None else subset)
        return topo_sort({n: self.dependencies(n) for n in sorted(chosen)})

    def propagation_order(self) -> list[str]:
        """Dependencies-first order that tolerates cycles.

        Packages on or behind a cycle come last, alphabetically.
        """
        order, remaining = _kahn({n: self.dependencies(n) for n in self.names})
        return order + remaining

    def reachable_dependents(self, start: Iterable[str]) -> tuple[str, ...]:
        """Breadth-first walk of the transposed graph.

        Returns:
            ``start`` plus every package that depends on any of it,
            directly or transitively, sorted.
        """
        seen = {self._idx(n) for n in start}
        queue = deque(sorted(seen))
        while queue:
            node = queue.popleft()
            for dependent in self.reverse[node]:
                if dependent not in seen:
                    seen.add(dependent)
                    queue.append(dependent)
        return tuple(self.names[i] for i in sorted(seen))


def build_graph(workspace: Workspace) -> DependencyGraph:
    return DependencyGraph(workspace)
