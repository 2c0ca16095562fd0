"""Resource graph model and dependency graph construction.

The categorizer lives in ``strata_core.graph.categorizer``; it depends on
engine configuration and is not re-exported here.
"""

from __future__ import annotations

from strata_core.graph.algorithms import (
    find_cycle,
    priority_topological_order,
    strongly_connected_components,
    topological_batches,
)
from strata_core.graph.builder import DependencyGraph, DependencyGraphBuilder, infer_parent_id
from strata_core.graph.models import (
    AffinityRule,
    AffinityStrength,
    DependencyEdge,
    EdgeKind,
    InlineCode,
    ResourceGraph,
    ResourceNode,
    Tier,
    is_reference,
    iter_references,
)

__all__ = [
    "AffinityRule",
    "AffinityStrength",
    "DependencyEdge",
    "DependencyGraph",
    "DependencyGraphBuilder",
    "EdgeKind",
    "InlineCode",
    "ResourceGraph",
    "ResourceNode",
    "Tier",
    "find_cycle",
    "infer_parent_id",
    "is_reference",
    "iter_references",
    "priority_topological_order",
    "strongly_connected_components",
    "topological_batches",
]
