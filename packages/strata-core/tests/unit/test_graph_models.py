"""Unit tests for resource graph models."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from strata_core.graph.models import (
    InlineCode,
    ResourceGraph,
    ResourceNode,
    Tier,
    is_reference,
    iter_references,
)


class TestResourceNode:
    """Tests for ResourceNode."""

    def test_id_is_type_and_name(self) -> None:
        """The id joins type and name."""
        node = ResourceNode(type="Microsoft.Web/sites/functions", name="api/hello")
        assert node.id == "Microsoft.Web/sites/functions/api/hello"

    def test_is_immutable(self) -> None:
        """Nodes are frozen."""
        node = ResourceNode(type="Microsoft.Web/sites", name="api")
        with pytest.raises(ValidationError):
            node.name = "other"  # type: ignore[misc]

    def test_rejects_unknown_fields(self) -> None:
        """Unknown fields are rejected."""
        with pytest.raises(ValidationError):
            ResourceNode.model_validate(
                {"type": "Microsoft.Web/sites", "name": "api", "kind": "app"}
            )

    def test_payload_size_is_canonical_length(self) -> None:
        """payload_size is the canonical encoding length of the properties."""
        node = ResourceNode(type="Microsoft.Web/sites", name="api", properties={"b": 1, "a": 2})
        assert node.payload_size == len(b'{"a":2,"b":1}')

    def test_references_are_found_recursively(self) -> None:
        """Markers nested in dicts and lists are yielded with their property."""
        node = ResourceNode(
            type="Microsoft.Web/sites",
            name="api",
            properties={
                "serverFarmId": {"$ref": "Microsoft.Web/serverfarms/plan"},
                "settings": [
                    {
                        "value": {
                            "$ref": "Microsoft.Storage/storageAccounts/data",
                            "property": "key",
                        }
                    }
                ],
            },
        )
        assert sorted(node.references()) == [
            ("Microsoft.Storage/storageAccounts/data", "key"),
            ("Microsoft.Web/serverfarms/plan", "id"),
        ]

    def test_type_depth(self) -> None:
        """type_depth counts segments after the namespace."""
        assert ResourceNode(type="A.B/c/d", name="x/y").type_depth == 2


class TestReferenceMarkers:
    """Tests for marker detection."""

    def test_plain_marker(self) -> None:
        """A dict with only $ref is a marker."""
        assert is_reference({"$ref": "A.B/c/x"})

    def test_marker_with_property(self) -> None:
        """A property key is allowed."""
        assert is_reference({"$ref": "A.B/c/x", "property": "name"})

    def test_extra_keys_are_not_markers(self) -> None:
        """Other keys make it ordinary data."""
        assert not is_reference({"$ref": "A.B/c/x", "other": 1})
        assert list(iter_references({"$ref": 3})) == []


class TestResourceGraph:
    """Tests for ResourceGraph."""

    def test_duplicate_ids_rejected(self) -> None:
        """Two resources with the same id are rejected."""
        node = ResourceNode(type="Microsoft.Web/sites", name="api")
        with pytest.raises(ValidationError, match="Duplicate resource id"):
            ResourceGraph(resources=(node, node))

    def test_stack_name_pattern(self) -> None:
        """Stack names are lowercase slugs."""
        with pytest.raises(ValidationError):
            ResourceGraph(stack="My Stack")

    def test_lookup(self, web_app_graph: ResourceGraph) -> None:
        """Nodes are found by id and ids keep declaration order."""
        assert "Microsoft.Web/sites/api" in web_app_graph
        assert web_app_graph.get("Microsoft.Web/sites/missing") is None
        assert web_app_graph.ids[0] == "Microsoft.Network/virtualNetworks/vnet"
        assert len(web_app_graph) == 6

    def test_from_json_file(self, tmp_path: Path) -> None:
        """Graphs load from JSON."""
        path = tmp_path / "graph.json"
        path.write_text(
            json.dumps(
                {
                    "stack": "demo",
                    "resources": [
                        {
                            "type": "Microsoft.Web/sites/functions",
                            "name": "api/hello",
                            "inline_code": {"source": "exports.x = 1;"},
                        }
                    ],
                }
            )
        )
        graph = ResourceGraph.from_file(path)
        node = graph.resources[0]
        assert graph.stack == "demo"
        assert isinstance(node.inline_code, InlineCode)
        assert node.inline_code.runtime == "node"

    def test_from_yaml_file(self, tmp_path: Path) -> None:
        """Graphs load from YAML."""
        path = tmp_path / "graph.yaml"
        path.write_text(
            "stack: demo\n"
            "resources:\n"
            "  - type: Microsoft.Storage/storageAccounts\n"
            "    name: data\n"
            "    properties:\n"
            "      accessTier: Hot\n"
        )
        graph = ResourceGraph.from_file(path)
        assert graph.ids == ["Microsoft.Storage/storageAccounts/data"]


class TestTier:
    """Tests for tier ordering."""

    def test_rank_follows_deployment_order(self) -> None:
        """Foundation deploys first, configuration last."""
        ranks = [tier.rank for tier in (Tier.FOUNDATION, Tier.COMPUTE, Tier.APPLICATION)]
        assert ranks == [0, 1, 2]
        assert Tier.CONFIGURATION.rank == 3
