"""Unit tests for graph algorithms."""

from __future__ import annotations

import pytest

from strata_core.errors import DependencyCycleError
from strata_core.graph.algorithms import (
    find_cycle,
    priority_topological_order,
    strongly_connected_components,
    topological_batches,
)


class TestTopologicalBatches:
    """Tests for Kahn batching."""

    def test_diamond(self) -> None:
        """Independent nodes share a batch; batches are sorted."""
        deps = {"a": set(), "b": {"a"}, "c": {"a"}, "d": {"b", "c"}}
        assert topological_batches(deps, deps) == [["a"], ["b", "c"], ["d"]]

    def test_ignores_unknown_and_self_edges(self) -> None:
        """Edges to non-members and self edges do not block a node."""
        deps = {"a": {"a", "outside"}, "b": {"a"}}
        assert topological_batches(["a", "b"], deps) == [["a"], ["b"]]

    def test_cycle_raises_with_path(self) -> None:
        """A cycle is reported with its full path."""
        deps = {"a": {"c"}, "b": {"a"}, "c": {"b"}, "d": set()}
        with pytest.raises(DependencyCycleError) as exc_info:
            topological_batches(deps, deps, scope="unit")
        cycle = exc_info.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b", "c"}
        assert exc_info.value.scope == "unit"

    def test_empty(self) -> None:
        """No nodes, no batches."""
        assert topological_batches([], {}) == []


class TestPriorityOrder:
    """Tests for priority-driven topological order."""

    def test_smallest_ready_key_first(self) -> None:
        """Among ready nodes the smallest key wins."""
        deps: dict[str, set[str]] = {"x": set(), "y": set(), "z": {"y"}}
        priority = {"x": 2, "y": 1, "z": 0}
        assert priority_topological_order(deps, deps, priority.__getitem__) == ["y", "z", "x"]

    def test_dependencies_override_priority(self) -> None:
        """A low key never jumps ahead of its dependencies."""
        deps = {"a": {"b"}, "b": set()}
        assert priority_topological_order(deps, deps, {"a": 0, "b": 9}.__getitem__) == ["b", "a"]


class TestFindCycle:
    """Tests for cycle detection."""

    def test_two_node_cycle(self) -> None:
        """The cycle path starts and ends at the same node."""
        assert find_cycle(["a", "b"], {"a": {"b"}, "b": {"a"}}) == ["a", "b", "a"]

    def test_acyclic(self) -> None:
        """Acyclic graphs return None."""
        assert find_cycle(["a", "b"], {"b": {"a"}}) is None

    def test_only_member_edges_count(self) -> None:
        """Edges leaving the member set are ignored."""
        assert find_cycle(["a"], {"a": {"b"}, "b": {"a"}}) is None


class TestStronglyConnectedComponents:
    """Tests for Tarjan's algorithm."""

    def test_components(self) -> None:
        """Cycles collapse into one component, others stay singletons."""
        deps = {"a": {"b"}, "b": {"a"}, "c": {"a"}}
        components = sorted(strongly_connected_components(deps, deps))
        assert components == [["a", "b"], ["c"]]
