"""Resource categorization: deployment tiers and affinity.

This module provides:
- TierTable: Injectable type-pattern to Tier lookup
- AffinityTable: Static co-location rules
- ResourceCategorizer: Assigns tiers and matches affinity over dependency edges
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from fnmatch import fnmatchcase

import structlog

from strata_core.config import CategorizerConfig
from strata_core.graph.builder import DependencyGraph
from strata_core.graph.models import AffinityRule, AffinityStrength, Tier

logger = structlog.get_logger(__name__)

DEFAULT_TIER_RULES: tuple[tuple[str, Tier], ...] = (
    # Foundation: storage, data, network, identity, secrets, workspaces
    ("Microsoft.Storage/storageAccounts", Tier.FOUNDATION),
    ("Microsoft.Storage/storageAccounts/*", Tier.FOUNDATION),
    ("Microsoft.DocumentDB/databaseAccounts", Tier.FOUNDATION),
    ("Microsoft.DocumentDB/databaseAccounts/*", Tier.FOUNDATION),
    ("Microsoft.Sql/servers", Tier.FOUNDATION),
    ("Microsoft.Sql/servers/*", Tier.FOUNDATION),
    ("Microsoft.Network/*", Tier.FOUNDATION),
    ("Microsoft.KeyVault/vaults", Tier.FOUNDATION),
    ("Microsoft.KeyVault/vaults/*", Tier.FOUNDATION),
    ("Microsoft.ManagedIdentity/userAssignedIdentities", Tier.FOUNDATION),
    ("Microsoft.OperationalInsights/workspaces", Tier.FOUNDATION),
    # Compute: hosting plans and runtimes
    ("Microsoft.Web/serverfarms", Tier.COMPUTE),
    ("Microsoft.Web/sites", Tier.COMPUTE),
    ("Microsoft.Web/sites/config", Tier.COMPUTE),
    ("Microsoft.ContainerInstance/containerGroups", Tier.COMPUTE),
    ("Microsoft.Compute/virtualMachines", Tier.COMPUTE),
    ("Microsoft.Compute/virtualMachines/*", Tier.COMPUTE),
    ("Microsoft.ContainerService/managedClusters", Tier.COMPUTE),
    # Application: functions, APIs, observability-facing resources
    ("Microsoft.Web/sites/functions", Tier.APPLICATION),
    ("Microsoft.ApiManagement/service", Tier.APPLICATION),
    ("Microsoft.ApiManagement/service/*", Tier.APPLICATION),
    ("Microsoft.Insights/components", Tier.APPLICATION),
    ("Microsoft.Cdn/profiles", Tier.APPLICATION),
    ("Microsoft.Cdn/profiles/*", Tier.APPLICATION),
    # Configuration: access, diagnostics, alerting, scaling
    ("Microsoft.Authorization/roleAssignments", Tier.CONFIGURATION),
    ("Microsoft.Insights/diagnosticSettings", Tier.CONFIGURATION),
    ("Microsoft.Insights/metricAlerts", Tier.CONFIGURATION),
    ("Microsoft.Insights/autoscalesettings", Tier.CONFIGURATION),
)

DEFAULT_AFFINITY_RULES: tuple[AffinityRule, ...] = (
    AffinityRule(
        parent_pattern="Microsoft.Web/sites",
        child_pattern="Microsoft.Web/sites/functions",
    ),
    AffinityRule(
        parent_pattern="Microsoft.Web/sites",
        child_pattern="Microsoft.Web/sites/config",
    ),
    AffinityRule(
        parent_pattern="Microsoft.DocumentDB/databaseAccounts",
        child_pattern="Microsoft.DocumentDB/databaseAccounts/sqlDatabases",
    ),
    AffinityRule(
        parent_pattern="Microsoft.Storage/storageAccounts",
        child_pattern="Microsoft.Storage/storageAccounts/blobServices",
    ),
    AffinityRule(
        parent_pattern="Microsoft.Network/virtualNetworks",
        child_pattern="Microsoft.Network/virtualNetworks/subnets",
    ),
    AffinityRule(
        parent_pattern="Microsoft.Compute/virtualMachines",
        child_pattern="Microsoft.Compute/virtualMachines/extensions",
    ),
    AffinityRule(
        parent_pattern="Microsoft.Web/serverfarms",
        child_pattern="Microsoft.Web/sites",
        strength=AffinityStrength.WEAK,
    ),
    AffinityRule(
        parent_pattern="Microsoft.Insights/components",
        child_pattern="Microsoft.Web/sites",
        strength=AffinityStrength.WEAK,
    ),
)


def _is_glob(pattern: str) -> bool:
    return any(char in pattern for char in "*?[")


class TierTable:
    """Ordered type-pattern to tier lookup.

    Exact type matches win over glob patterns; among globs the first
    matching rule wins.

    Example:
        >>> table = TierTable()
        >>> table.lookup("Microsoft.Network/virtualNetworks")
        <Tier.FOUNDATION: 'foundation'>
        >>> table.lookup("Contoso.Custom/widgets") is None
        True
    """

    def __init__(self, rules: Iterable[tuple[str, Tier]] = DEFAULT_TIER_RULES) -> None:
        self._exact: dict[str, Tier] = {}
        self._globs: list[tuple[str, Tier]] = []
        for pattern, tier in rules:
            if _is_glob(pattern):
                self._globs.append((pattern.lower(), tier))
            else:
                self._exact.setdefault(pattern.lower(), tier)

    def lookup(self, resource_type: str) -> Tier | None:
        """Return the tier for ``resource_type`` or None if unrecognized."""
        key = resource_type.lower()
        if key in self._exact:
            return self._exact[key]
        for pattern, tier in self._globs:
            if fnmatchcase(key, pattern):
                return tier
        return None


class AffinityTable:
    """Static affinity rules, matched symmetrically on resource types."""

    def __init__(self, rules: Iterable[AffinityRule] = DEFAULT_AFFINITY_RULES) -> None:
        self.rules: tuple[AffinityRule, ...] = tuple(rules)

    def match(self, type_a: str, type_b: str) -> AffinityStrength | None:
        """Return the strongest rule strength joining two types, if any."""
        a, b = type_a.lower(), type_b.lower()
        best: AffinityStrength | None = None
        for rule in self.rules:
            parent, child = rule.parent_pattern.lower(), rule.child_pattern.lower()
            if (fnmatchcase(a, parent) and fnmatchcase(b, child)) or (
                fnmatchcase(b, parent) and fnmatchcase(a, child)
            ):
                if rule.strength is AffinityStrength.STRONG:
                    return AffinityStrength.STRONG
                best = AffinityStrength.WEAK
        return best


@dataclass(frozen=True)
class Categorization:
    """Categorizer output consumed by the splitter.

    Attributes:
        tiers: Tier per resource id.
        strong_pairs: Pairs that must share a unit, each sorted.
        weak_pairs: Pairs that should share a unit, each sorted.
        defaulted: Resource ids that received the fallback tier.
    """

    tiers: dict[str, Tier]
    strong_pairs: tuple[tuple[str, str], ...] = ()
    weak_pairs: tuple[tuple[str, str], ...] = ()
    defaulted: tuple[str, ...] = field(default=())

    def tier_of(self, resource_id: str) -> Tier:
        """Return the tier of ``resource_id``."""
        return self.tiers[resource_id]


class ResourceCategorizer:
    """Assigns tiers and affinity constraints to every node.

    Unknown resource types fall back to the configured tier with a warning;
    they never block synthesis.
    """

    def __init__(
        self,
        config: CategorizerConfig | None = None,
        *,
        tier_table: TierTable | None = None,
        affinity_table: AffinityTable | None = None,
    ) -> None:
        self.config = config or CategorizerConfig()
        self.tier_table = tier_table or TierTable()
        self.affinity_table = affinity_table or AffinityTable()
        self._log = logger.bind(component="resource_categorizer")

    def categorize(self, dependency_graph: DependencyGraph) -> Categorization:
        """Categorize every node of ``dependency_graph``."""
        tiers: dict[str, Tier] = {}
        defaulted: list[str] = []
        for node in dependency_graph.graph.resources:
            tier = self.tier_table.lookup(node.type)
            if tier is None:
                tier = self.config.fallback_tier
                defaulted.append(node.id)
                self._log.warning(
                    "unknown_resource_type",
                    resource_id=node.id,
                    resource_type=node.type,
                    fallback_tier=tier.value,
                )
            tiers[node.id] = tier

        strong, weak = self._affinity_pairs(dependency_graph)

        self._log.info(
            "resources_categorized",
            resources=len(tiers),
            defaulted=len(defaulted),
            strong_pairs=len(strong),
            weak_pairs=len(weak),
        )
        return Categorization(
            tiers=tiers,
            strong_pairs=tuple(strong),
            weak_pairs=tuple(weak),
            defaulted=tuple(defaulted),
        )

    def _affinity_pairs(
        self, dependency_graph: DependencyGraph
    ) -> tuple[Sequence[tuple[str, str]], Sequence[tuple[str, str]]]:
        strong: set[tuple[str, str]] = set()
        weak: set[tuple[str, str]] = set()
        for edge in dependency_graph.edges:
            pair = tuple(sorted((edge.source, edge.target)))
            strength = self.affinity_table.match(
                dependency_graph.node(edge.source).type,
                dependency_graph.node(edge.target).type,
            )
            if strength is AffinityStrength.STRONG:
                strong.add(pair)  # type: ignore[arg-type]
            elif strength is AffinityStrength.WEAK:
                weak.add(pair)  # type: ignore[arg-type]
        return sorted(strong), sorted(weak - strong)
