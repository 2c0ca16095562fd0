"""Dependency graph construction.

Derives "must deploy before" edges from three sources:
- reference markers inside resource payloads
- parent/child containment (declared, or inferred from type and name)
- explicit ``depends_on`` declarations

Unknown targets and genuine cycles are fatal: they mean the input graph is
malformed, not that something transient went wrong.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from strata_core.errors import DependencyCycleError, MissingDependencyError
from strata_core.graph.algorithms import find_cycle, topological_batches
from strata_core.graph.models import DependencyEdge, EdgeKind, ResourceGraph, ResourceNode

logger = structlog.get_logger(__name__)


def infer_parent_id(node: ResourceNode) -> str | None:
    """Infer the containing resource id from a hierarchical type and name.

    ``Microsoft.Network/virtualNetworks/subnets`` named ``vnet/app`` has the
    parent ``Microsoft.Network/virtualNetworks/vnet``.
    """
    type_parts = node.type.split("/")
    name_parts = node.name.split("/")
    if len(type_parts) < 3 or len(name_parts) != len(type_parts) - 1:
        return None
    parent_type = "/".join(type_parts[:-1])
    parent_name = "/".join(name_parts[:-1])
    return f"{parent_type}/{parent_name}"


class DependencyGraph:
    """Directed dependency graph keyed by resource id.

    Attributes:
        graph: The resource graph the edges were derived from.
        edges: All edges, sorted by (source, target, kind).
    """

    def __init__(self, graph: ResourceGraph, edges: Iterable[DependencyEdge]) -> None:
        self.graph = graph
        self.edges = sorted(edges, key=lambda e: (e.source, e.target, e.kind.value))
        self._deps: dict[str, set[str]] = {node.id: set() for node in graph.resources}
        self._dependents: dict[str, set[str]] = {node.id: set() for node in graph.resources}
        for edge in self.edges:
            self._deps[edge.source].add(edge.target)
            self._dependents[edge.target].add(edge.source)

    @property
    def ids(self) -> list[str]:
        """Resource ids in declaration order."""
        return self.graph.ids

    @property
    def deps(self) -> dict[str, set[str]]:
        """Mapping of resource id to the ids it depends on."""
        return self._deps

    def node(self, resource_id: str) -> ResourceNode:
        """Return the node for ``resource_id``."""
        node = self.graph.get(resource_id)
        if node is None:
            raise KeyError(resource_id)
        return node

    def dependencies_of(self, resource_id: str) -> set[str]:
        """Ids ``resource_id`` depends on."""
        return set(self._deps[resource_id])

    def dependents_of(self, resource_id: str) -> set[str]:
        """Ids depending on ``resource_id``."""
        return set(self._dependents[resource_id])

    def batches(self) -> list[list[str]]:
        """Parallel-eligible resource batches, deterministic."""
        return topological_batches(self.ids, self._deps)

    def topological_order(self) -> list[str]:
        """Deterministic linear deployment order of all resources."""
        return [resource_id for batch in self.batches() for resource_id in batch]

    def __len__(self) -> int:
        return len(self._deps)


class DependencyGraphBuilder:
    """Builds a validated DependencyGraph from a ResourceGraph.

    Example:
        >>> builder = DependencyGraphBuilder()
        >>> dependency_graph = builder.build(resource_graph)
        >>> dependency_graph.dependencies_of("Microsoft.Web/sites/api")
        {'Microsoft.Web/serverfarms/plan'}
    """

    def __init__(self) -> None:
        self._log = logger.bind(component="dependency_graph_builder")

    def build(self, graph: ResourceGraph) -> DependencyGraph:
        """Derive all edges and reject missing targets and cycles.

        Raises:
            MissingDependencyError: If any edge targets an unknown id.
            DependencyCycleError: If the edges form a cycle.
        """
        edges: dict[tuple[str, str], DependencyEdge] = {}

        for node in graph.resources:
            for edge in self._edges_for(node, graph):
                # First kind wins for a (source, target) pair
                edges.setdefault((edge.source, edge.target), edge)

        dependency_graph = DependencyGraph(graph, edges.values())

        cycle = find_cycle(dependency_graph.ids, dependency_graph.deps)
        if cycle is not None:
            raise DependencyCycleError(cycle, scope="resource")

        self._log.info(
            "dependency_graph_built",
            resources=len(graph),
            edges=len(dependency_graph.edges),
        )
        return dependency_graph

    def _edges_for(self, node: ResourceNode, graph: ResourceGraph) -> Iterable[DependencyEdge]:
        parent = node.parent
        if parent is None:
            inferred = infer_parent_id(node)
            if inferred is not None and inferred in graph:
                parent = inferred
        if parent is not None:
            self._require(node.id, parent, graph)
            yield DependencyEdge(source=node.id, target=parent, kind=EdgeKind.PARENT_CHILD)

        for target, _ in node.references():
            if target == node.id:
                continue
            self._require(node.id, target, graph)
            yield DependencyEdge(source=node.id, target=target, kind=EdgeKind.REFERENCE)

        for target in node.depends_on:
            if target == node.id:
                continue
            self._require(node.id, target, graph)
            yield DependencyEdge(source=node.id, target=target, kind=EdgeKind.EXPLICIT)

    @staticmethod
    def _require(source_id: str, target_id: str, graph: ResourceGraph) -> None:
        if target_id not in graph:
            raise MissingDependencyError(source_id, target_id)
