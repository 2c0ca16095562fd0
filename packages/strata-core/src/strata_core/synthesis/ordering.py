"""Deployment order resolution.

Units are sorted topologically with Kahn's algorithm. Every batch holds the
units whose producers all sit in earlier batches and may deploy in
parallel. Batches and their members are sorted by unit name, so the same
input always yields the same order.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Set

import structlog
from pydantic import BaseModel, ConfigDict, Field

from strata_core.graph.algorithms import topological_batches
from strata_core.synthesis.models import CrossUnitReference

logger = structlog.get_logger(__name__)


class DeploymentOrder(BaseModel):
    """Ordered batches of unit names."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    batches: tuple[tuple[str, ...], ...] = Field(default=())

    def linear(self) -> list[str]:
        """Flatten batches into one deterministic sequence."""
        return [name for batch in self.batches for name in batch]

    def position(self, unit_name: str) -> int:
        """Index of the batch containing ``unit_name``."""
        for index, batch in enumerate(self.batches):
            if unit_name in batch:
                return index
        raise KeyError(unit_name)

    def as_lists(self) -> list[list[str]]:
        return [list(batch) for batch in self.batches]


def unit_dependencies(
    unit_names: Iterable[str],
    references: Iterable[CrossUnitReference],
) -> dict[str, set[str]]:
    """Consumer unit to the set of producer units it depends on."""
    deps: dict[str, set[str]] = {name: set() for name in unit_names}
    for reference in references:
        if reference.consumer_unit != reference.producer_unit:
            deps.setdefault(reference.consumer_unit, set()).add(reference.producer_unit)
            deps.setdefault(reference.producer_unit, set())
    return deps


class DeploymentOrderResolver:
    """Resolves a deterministic, dependency-safe unit order.

    Example:
        >>> resolver = DeploymentOrderResolver()
        >>> order = resolver.resolve(["shop-compute-01", "shop-foundation-01"], references)
        >>> order.batches
        (('shop-foundation-01',), ('shop-compute-01',))
    """

    def __init__(self) -> None:
        self._log = logger.bind(component="deployment_order_resolver")

    def resolve(
        self,
        unit_names: Iterable[str],
        references: Iterable[CrossUnitReference],
    ) -> DeploymentOrder:
        """Order units so every producer precedes its consumers.

        Raises:
            DependencyCycleError: With the full unit cycle path.
        """
        deps = unit_dependencies(unit_names, references)
        batches = topological_batches(deps.keys(), deps, scope="unit")
        order = DeploymentOrder(batches=tuple(tuple(batch) for batch in batches))
        self._log.debug("deployment_order_resolved", units=len(deps), batches=len(batches))
        return order


def order_resources(resource_ids: Iterable[str], deps: Mapping[str, Set[str]]) -> list[str]:
    """Deterministic dependency order of the resources inside one unit."""
    return [rid for batch in topological_batches(resource_ids, deps) for rid in batch]
