"""Unit tests for resource categorization."""

from __future__ import annotations

import pytest

from strata_core.config import CategorizerConfig
from strata_core.graph.builder import DependencyGraphBuilder
from strata_core.graph.categorizer import AffinityTable, ResourceCategorizer, TierTable
from strata_core.graph.models import (
    AffinityRule,
    AffinityStrength,
    ResourceGraph,
    ResourceNode,
    Tier,
)


class TestTierTable:
    """Tests for tier lookup."""

    @pytest.mark.parametrize(
        ("resource_type", "tier"),
        [
            ("Microsoft.Storage/storageAccounts", Tier.FOUNDATION),
            ("Microsoft.Network/virtualNetworks/subnets", Tier.FOUNDATION),
            ("Microsoft.Web/serverfarms", Tier.COMPUTE),
            ("Microsoft.Web/sites", Tier.COMPUTE),
            ("Microsoft.Web/sites/functions", Tier.APPLICATION),
            ("Microsoft.Authorization/roleAssignments", Tier.CONFIGURATION),
        ],
    )
    def test_default_rules(self, resource_type: str, tier: Tier) -> None:
        """Well-known types map to their tier."""
        assert TierTable().lookup(resource_type) is tier

    def test_case_insensitive(self) -> None:
        """Type matching ignores case."""
        assert TierTable().lookup("microsoft.web/SITES") is Tier.COMPUTE

    def test_exact_beats_glob(self) -> None:
        """An exact rule wins even when a glob is listed first."""
        table = TierTable(
            [("Contoso.Widgets/*", Tier.FOUNDATION), ("Contoso.Widgets/gears", Tier.COMPUTE)]
        )
        assert table.lookup("Contoso.Widgets/gears") is Tier.COMPUTE
        assert table.lookup("Contoso.Widgets/cogs") is Tier.FOUNDATION

    def test_unknown_type(self) -> None:
        """Unknown types have no tier."""
        assert TierTable().lookup("Contoso.Custom/widgets") is None


class TestAffinityTable:
    """Tests for affinity matching."""

    def test_strong_pair_is_symmetric(self) -> None:
        """Either side may come first."""
        table = AffinityTable()
        assert table.match("Microsoft.Web/sites", "Microsoft.Web/sites/functions") is (
            AffinityStrength.STRONG
        )
        assert table.match("Microsoft.Web/sites/functions", "Microsoft.Web/sites") is (
            AffinityStrength.STRONG
        )

    def test_weak_pair(self) -> None:
        """Plans prefer to sit with their sites."""
        assert AffinityTable().match("Microsoft.Web/serverfarms", "Microsoft.Web/sites") is (
            AffinityStrength.WEAK
        )

    def test_strong_wins_over_weak(self) -> None:
        """When rules of both strengths match, strong wins."""
        table = AffinityTable(
            [
                AffinityRule(
                    parent_pattern="A.B/x",
                    child_pattern="A.B/y",
                    strength=AffinityStrength.WEAK,
                ),
                AffinityRule(parent_pattern="A.B/*", child_pattern="A.B/y"),
            ]
        )
        assert table.match("A.B/x", "A.B/y") is AffinityStrength.STRONG

    def test_no_match(self) -> None:
        """Unrelated types have no affinity."""
        table = AffinityTable()
        assert table.match("Microsoft.Web/sites", "Microsoft.Storage/storageAccounts") is None


class TestResourceCategorizer:
    """Tests for ResourceCategorizer.categorize."""

    def test_tiers_and_pairs(self, web_app_graph: ResourceGraph) -> None:
        """Tiers come from the table, pairs from dependency edges."""
        graph = DependencyGraphBuilder().build(web_app_graph)
        result = ResourceCategorizer().categorize(graph)

        assert result.tier_of("Microsoft.Network/virtualNetworks/vnet") is Tier.FOUNDATION
        assert result.tier_of("Microsoft.Authorization/roleAssignments/api-data") is (
            Tier.CONFIGURATION
        )
        assert result.strong_pairs == (
            (
                "Microsoft.Network/virtualNetworks/subnets/vnet/app",
                "Microsoft.Network/virtualNetworks/vnet",
            ),
        )
        assert result.weak_pairs == (
            ("Microsoft.Web/serverfarms/plan", "Microsoft.Web/sites/api"),
        )
        assert result.defaulted == ()

    def test_unknown_type_falls_back_with_warning(
        self, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Unknown types get the fallback tier and a warning; nothing fails."""
        graph = DependencyGraphBuilder().build(
            ResourceGraph(resources=(ResourceNode(type="Contoso.Custom/widgets", name="w"),))
        )
        categorizer = ResourceCategorizer(CategorizerConfig(fallback_tier=Tier.CONFIGURATION))

        result = categorizer.categorize(graph)

        assert result.tier_of("Contoso.Custom/widgets/w") is Tier.CONFIGURATION
        assert result.defaulted == ("Contoso.Custom/widgets/w",)
        assert "unknown_resource_type" in capsys.readouterr().out

    def test_injected_tables(self) -> None:
        """Custom tier and affinity tables replace the defaults."""
        graph = DependencyGraphBuilder().build(
            ResourceGraph(
                resources=(
                    ResourceNode(type="Contoso.Custom/a", name="one"),
                    ResourceNode(
                        type="Contoso.Custom/b",
                        name="two",
                        properties={"peer": {"$ref": "Contoso.Custom/a/one"}},
                    ),
                )
            )
        )
        categorizer = ResourceCategorizer(
            tier_table=TierTable([("Contoso.Custom/*", Tier.COMPUTE)]),
            affinity_table=AffinityTable(
                [AffinityRule(parent_pattern="Contoso.Custom/a", child_pattern="Contoso.Custom/b")]
            ),
        )

        result = categorizer.categorize(graph)

        assert set(result.tiers.values()) == {Tier.COMPUTE}
        assert result.strong_pairs == (("Contoso.Custom/a/one", "Contoso.Custom/b/two"),)
