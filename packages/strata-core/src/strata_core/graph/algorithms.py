"""Graph algorithms shared by the dependency builder, splitter and resolver.

All functions take a node collection plus a ``deps`` mapping where
``deps[n]`` is the set of nodes ``n`` depends on (must come before ``n``).
Iteration is always in sorted order so results are deterministic.
"""

from __future__ import annotations

import heapq
from collections.abc import Callable, Iterable, Mapping, Set
from typing import Any

from strata_core.errors import DependencyCycleError


def _dependents(nodes: list[str], deps: Mapping[str, Set[str]]) -> dict[str, set[str]]:
    dependents: dict[str, set[str]] = {node: set() for node in nodes}
    for node in nodes:
        for dep in deps.get(node, ()):
            if dep in dependents:
                dependents[dep].add(node)
    return dependents


def topological_batches(
    nodes: Iterable[str],
    deps: Mapping[str, Set[str]],
    *,
    scope: str = "resource",
) -> list[list[str]]:
    """Kahn's algorithm producing parallel-eligible batches.

    Each batch holds every node whose dependencies all appear in earlier
    batches, sorted by id.

    Raises:
        DependencyCycleError: With the full cycle path if one exists.
    """
    ordered = sorted(set(nodes))
    known = set(ordered)
    remaining = {
        node: len({dep for dep in deps.get(node, ()) if dep in known and dep != node})
        for node in ordered
    }
    dependents = _dependents(ordered, deps)

    batches: list[list[str]] = []
    ready = sorted(node for node, count in remaining.items() if count == 0)
    while ready:
        batches.append(ready)
        next_ready: list[str] = []
        for node in ready:
            del remaining[node]
            for dependent in dependents[node]:
                if dependent == node:
                    continue
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    next_ready.append(dependent)
        ready = sorted(next_ready)

    if remaining:
        cycle = find_cycle(remaining, deps)
        raise DependencyCycleError(cycle or sorted(remaining), scope=scope)
    return batches


def priority_topological_order(
    nodes: Iterable[str],
    deps: Mapping[str, Set[str]],
    key: Callable[[str], Any],
    *,
    scope: str = "resource",
) -> list[str]:
    """Topological order that always emits the ready node with the smallest key."""
    ordered = sorted(set(nodes))
    known = set(ordered)
    remaining = {
        node: len({dep for dep in deps.get(node, ()) if dep in known and dep != node})
        for node in ordered
    }
    dependents = _dependents(ordered, deps)

    heap = [(key(node), node) for node, count in remaining.items() if count == 0]
    heapq.heapify(heap)
    result: list[str] = []
    while heap:
        _, node = heapq.heappop(heap)
        result.append(node)
        del remaining[node]
        for dependent in sorted(dependents[node]):
            if dependent == node:
                continue
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(heap, (key(dependent), dependent))

    if remaining:
        cycle = find_cycle(remaining, deps)
        raise DependencyCycleError(cycle or sorted(remaining), scope=scope)
    return result


def find_cycle(nodes: Iterable[str], deps: Mapping[str, Set[str]]) -> list[str] | None:
    """Return one cycle as ``[a, b, ..., a]``, or None if the subgraph is acyclic.

    Only edges between members of ``nodes`` are considered.
    """
    members = set(nodes)
    state: dict[str, int] = {}  # 1 = on stack, 2 = done

    for start in sorted(members):
        if start in state:
            continue
        path: list[str] = [start]
        iterators = [iter(sorted(d for d in deps.get(start, ()) if d in members))]
        state[start] = 1
        while iterators:
            advanced = False
            for dep in iterators[-1]:
                if state.get(dep) == 1:
                    return [*path[path.index(dep) :], dep]
                if dep not in state:
                    state[dep] = 1
                    path.append(dep)
                    iterators.append(iter(sorted(d for d in deps.get(dep, ()) if d in members)))
                    advanced = True
                    break
            if not advanced:
                state[path.pop()] = 2
                iterators.pop()
    return None


def strongly_connected_components(
    nodes: Iterable[str],
    deps: Mapping[str, Set[str]],
) -> list[list[str]]:
    """Tarjan's algorithm, iterative. Components are sorted internally."""
    members = sorted(set(nodes))
    member_set = set(members)
    index: dict[str, int] = {}
    lowlink: dict[str, int] = {}
    on_stack: set[str] = set()
    stack: list[str] = []
    components: list[list[str]] = []
    counter = 0

    for root in members:
        if root in index:
            continue
        work: list[tuple[str, list[str]]] = [
            (root, sorted(d for d in deps.get(root, ()) if d in member_set))
        ]
        index[root] = lowlink[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)

        while work:
            node, pending = work[-1]
            if pending:
                dep = pending.pop(0)
                if dep not in index:
                    index[dep] = lowlink[dep] = counter
                    counter += 1
                    stack.append(dep)
                    on_stack.add(dep)
                    work.append((dep, sorted(d for d in deps.get(dep, ()) if d in member_set)))
                elif dep in on_stack:
                    lowlink[node] = min(lowlink[node], index[dep])
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node])
            if lowlink[node] == index[node]:
                component: list[str] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                components.append(sorted(component))

    return components
