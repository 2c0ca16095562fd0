"""Unit tests for the validation pipeline and its layers."""

from __future__ import annotations

from typing import Any

import pytest

from strata_core.config import SplitterConfig, ValidationConfig, ValidationLevel
from strata_core.errors import ValidationFailedError
from strata_core.graph.builder import DependencyGraph, DependencyGraphBuilder
from strata_core.graph.categorizer import ResourceCategorizer
from strata_core.graph.models import InlineCode, ResourceGraph, ResourceNode
from strata_core.synthesis.models import CrossUnitReference, SplitResult
from strata_core.synthesis.splitter import TemplateSplitter
from strata_core.validation.layers import (
    BaseLayer,
    DeploymentLayer,
    ResourceLayer,
    SchemaLayer,
    StructureLayer,
    TransformationLayer,
    ValidationContext,
)
from strata_core.validation.models import (
    LayerStatus,
    Severity,
    ValidationIssue,
    is_blocking,
)
from strata_core.validation.pipeline import ValidationPipeline
from strata_core.validation.schema import RequiredPropertiesContract, SchemaRegistry

LAYER_NAMES = ["resources", "transformation", "structure", "deployment", "schema"]


def _synthesize(
    graph: ResourceGraph, config: SplitterConfig | None = None
) -> tuple[DependencyGraph, SplitResult]:
    dependency_graph = DependencyGraphBuilder().build(graph)
    categorization = ResourceCategorizer().categorize(dependency_graph)
    return dependency_graph, TemplateSplitter(config).split(dependency_graph, categorization)


def _codes(issues: list[ValidationIssue]) -> set[str]:
    return {issue.code for issue in issues}


def _replace_unit(split: SplitResult, name: str, **update: Any) -> SplitResult:
    units = tuple(
        unit.model_copy(update=update) if unit.name == name else unit for unit in split.units
    )
    return split.model_copy(update={"units": units})


def _with_root_resources(split: SplitResult, resources: list[dict[str, Any]]) -> SplitResult:
    assert split.root is not None
    template = {**split.root.template, "resources": resources}
    return split.model_copy(update={"root": split.root.model_copy(update={"template": template})})


class TestIsBlocking:
    """Tests for the level to severity mapping."""

    @pytest.mark.parametrize(
        ("level", "blocking"),
        [
            (ValidationLevel.STRICT, {Severity.CRITICAL, Severity.ERROR, Severity.WARNING}),
            (ValidationLevel.NORMAL, {Severity.CRITICAL, Severity.ERROR}),
            (ValidationLevel.LENIENT, {Severity.CRITICAL}),
            (ValidationLevel.OFF, set()),
        ],
    )
    def test_levels(self, level: ValidationLevel, blocking: set[Severity]) -> None:
        """Each level blocks a fixed set of severities."""
        assert {s for s in Severity if is_blocking(s, level)} == blocking


class TestValidationPipeline:
    """Tests for ValidationPipeline.run."""

    def test_valid_split_passes(
        self, web_app_graph: ResourceGraph, split_config: SplitterConfig
    ) -> None:
        """A fresh split passes every layer; missing contracts are warnings."""
        graph, split = _synthesize(web_app_graph, split_config)

        report = ValidationPipeline(splitter_config=split_config).run(graph, split)

        assert report.passed
        assert [layer.name for layer in report.layers] == LAYER_NAMES
        assert {layer.status for layer in report.layers} == {LayerStatus.PASSED}
        assert _codes(report.warnings()) == {"no_schema_contract"}

    def test_strict_blocks_warnings(self, web_app_graph: ResourceGraph) -> None:
        """At strict level the missing contracts fail the schema layer."""
        graph, split = _synthesize(web_app_graph)
        pipeline = ValidationPipeline(ValidationConfig.uniform(ValidationLevel.STRICT))

        report = pipeline.run(graph, split)

        assert report.failed_layer == "schema"

    def test_first_failure_stops_pipeline(self) -> None:
        """Layers after the failing one are reported as not run."""
        graph, split = _synthesize(
            ResourceGraph(
                resources=(
                    ResourceNode(
                        type="Microsoft.Storage/storageAccounts",
                        name="data",
                        api_version="latest",
                    ),
                )
            )
        )

        report = ValidationPipeline().run(graph, split)

        assert report.failed_layer == "resources"
        assert _codes(report.blocking_issues()) == {"invalid_api_version"}
        assert [layer.status for layer in report.layers[1:]] == [LayerStatus.NOT_RUN] * 4

    def test_lenient_lets_errors_through(self) -> None:
        """Errors do not block a lenient layer."""
        graph, split = _synthesize(
            ResourceGraph(
                resources=(
                    ResourceNode(
                        type="Microsoft.Storage/storageAccounts",
                        name="data",
                        api_version="latest",
                    ),
                )
            )
        )
        config = ValidationConfig(resources=ValidationLevel.LENIENT)

        report = ValidationPipeline(config).run(graph, split)

        assert report.layers[0].status is LayerStatus.PASSED
        assert _codes(report.layers[0].issues) == {"invalid_api_version"}

    def test_off_skips_with_warning(
        self,
        web_app_graph: ResourceGraph,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """A disabled layer is skipped and the skip is logged."""
        graph, split = _synthesize(web_app_graph)
        config = ValidationConfig(schema=ValidationLevel.OFF)

        report = ValidationPipeline(config).run(graph, split)

        assert report.layers[-1].status is LayerStatus.SKIPPED
        assert report.passed
        assert "validation_layer_disabled" in capsys.readouterr().out

    def test_layer_error_is_critical(self, web_app_graph: ResourceGraph) -> None:
        """An exception inside a layer becomes a critical issue."""

        class ExplodingLayer(BaseLayer):
            name = "structure"

            def _execute(self, context: ValidationContext) -> list[ValidationIssue]:
                raise RuntimeError("boom")

        graph, split = _synthesize(web_app_graph)
        pipeline = ValidationPipeline(
            ValidationConfig.uniform(ValidationLevel.LENIENT),
            layers=[ExplodingLayer(), SchemaLayer()],
        )

        report = pipeline.run(graph, split)

        assert report.failed_layer == "structure"
        issue = report.blocking_issues()[0]
        assert issue.code == "layer_error"
        assert issue.severity is Severity.CRITICAL
        assert "boom" in issue.message
        assert report.layers[1].status is LayerStatus.NOT_RUN

    def test_validate_or_raise(self) -> None:
        """A failing report raises with the report attached."""
        graph, split = _synthesize(
            ResourceGraph(
                resources=(
                    ResourceNode(type="Microsoft.Web/sites/functions", name="hello"),
                )
            )
        )

        with pytest.raises(ValidationFailedError) as exc_info:
            ValidationPipeline().validate_or_raise(graph, split)

        assert exc_info.value.report.failed_layer == "resources"
        assert "Validation failed in layer 'resources'" in str(exc_info.value)

    def test_report_text(self, web_app_graph: ResourceGraph) -> None:
        """The text report lists every layer and issue."""
        graph, split = _synthesize(web_app_graph)
        text = ValidationPipeline().run(graph, split).to_text()

        assert "STRATA VALIDATION REPORT" in text
        assert "Status: PASSED" in text
        for name in LAYER_NAMES:
            assert f"{name} [normal]" in text
        assert "WARNING no_schema_contract" in text


class TestResourceLayer:
    """Tests for input well-formedness checks."""

    def test_malformed_nodes(self) -> None:
        """Bad types, names and empty code are all reported."""
        graph = DependencyGraphBuilder().build(
            ResourceGraph(
                resources=(
                    ResourceNode(type="widgets", name="w"),
                    ResourceNode(type="Microsoft.Web/sites", name="a//b"),
                    ResourceNode(type="Microsoft.Network/virtualNetworks/subnets", name="app"),
                    ResourceNode(
                        type="Microsoft.Web/sites/functions",
                        name="api/empty",
                        inline_code=InlineCode(source="   "),
                    ),
                )
            )
        )
        context = ValidationContext(graph=graph, split=SplitResult(), splitter=SplitterConfig())

        result = ResourceLayer().run(context, ValidationLevel.NORMAL)

        assert result.status is LayerStatus.FAILED
        assert {"invalid_resource_type", "empty_name_segment", "name_depth_mismatch"} <= (
            _codes(result.issues)
        )
        assert "empty_inline_code" in _codes(result.issues)


class TestTransformationLayer:
    """Tests for rendered-output checks."""

    def test_missing_api_version(self) -> None:
        """Rendered resources need an apiVersion."""
        graph, split = _synthesize(
            ResourceGraph(resources=(ResourceNode(type="Microsoft.Web/sites", name="api"),))
        )
        context = ValidationContext(graph=graph, split=split, splitter=SplitterConfig())

        result = TransformationLayer().run(context, ValidationLevel.NORMAL)

        assert _codes(result.issues) == {"missing_api_version"}
        assert result.issues[0].suggestion == "Set api_version on the resource"

    def test_unassigned_resource(
        self, web_app_graph: ResourceGraph, split_config: SplitterConfig
    ) -> None:
        """Dropping a unit leaves its resources unassigned."""
        graph, split = _synthesize(web_app_graph, split_config)
        tampered = split.model_copy(update={"units": split.units[:-1]})
        context = ValidationContext(graph=graph, split=tampered, splitter=split_config)

        result = TransformationLayer().run(context, ValidationLevel.NORMAL)

        assert _codes(result.issues) == {"resource_unassigned"}
        assert result.issues[0].subject == "Microsoft.Authorization/roleAssignments/api-data"

    def test_leftover_marker(self, web_app_graph: ResourceGraph) -> None:
        """A reference marker surviving rendering is critical."""
        graph, split = _synthesize(web_app_graph)
        unit = split.units[0]
        resources = [dict(r) for r in unit.template["resources"]]
        resources[0]["properties"] = {"peer": {"$ref": "Microsoft.Web/sites/api"}}
        tampered = _replace_unit(
            split, unit.name, template={**unit.template, "resources": resources}
        )
        context = ValidationContext(graph=graph, split=tampered, splitter=SplitterConfig())

        result = TransformationLayer().run(context, ValidationLevel.NORMAL)

        assert "unresolved_reference" in _codes(result.issues)


class TestStructureLayer:
    """Tests for serialized template structure."""

    def test_broken_template(self, web_app_graph: ResourceGraph) -> None:
        """Schema, expressions and parameters are checked."""
        graph, split = _synthesize(web_app_graph)
        unit = split.units[0]
        resources = [dict(r) for r in unit.template["resources"]]
        resources[0]["properties"] = {
            "a": "[parameters('ghost')]",
            "b": "[concat('x'",
            "c": "[[literal bracket",
        }
        resources[1]["dependsOn"] = ["[resourceId('Microsoft.Web/sites', 'elsewhere')]"]
        template = {
            **unit.template,
            "$schema": "http://example.com/schema.json",
            "contentVersion": "1.0",
            "resources": [*resources, resources[0]],
        }
        tampered = _replace_unit(split, unit.name, template=template)
        context = ValidationContext(graph=graph, split=tampered, splitter=SplitterConfig())

        result = StructureLayer().run(context, ValidationLevel.NORMAL)

        assert _codes(result.issues) == {
            "invalid_schema",
            "invalid_content_version",
            "undeclared_parameter",
            "malformed_expression",
            "dangling_depends_on",
            "duplicate_resource",
        }


class TestDeploymentLayer:
    """Tests for simulated deployment order."""

    def _run(self, graph: DependencyGraph, split: SplitResult) -> set[str]:
        context = ValidationContext(graph=graph, split=split, splitter=SplitterConfig())
        return _codes(DeploymentLayer().run(context, ValidationLevel.NORMAL).issues)

    def test_valid(self, web_app_graph: ResourceGraph, split_config: SplitterConfig) -> None:
        """The splitter's own output deploys cleanly."""
        assert self._run(*_synthesize(web_app_graph, split_config)) == set()

    def test_missing_output(
        self, web_app_graph: ResourceGraph, split_config: SplitterConfig
    ) -> None:
        """A producer that stopped declaring its outputs is reported."""
        graph, split = _synthesize(web_app_graph, split_config)
        tampered = _replace_unit(split, "shop-foundation-01", outputs=())
        assert self._run(graph, tampered) == {"missing_output"}

    def test_missing_parameter(
        self, web_app_graph: ResourceGraph, split_config: SplitterConfig
    ) -> None:
        """A consumer that stopped declaring its inputs is reported."""
        graph, split = _synthesize(web_app_graph, split_config)
        tampered = _replace_unit(split, "shop-configuration-01", inputs=())
        assert self._run(graph, tampered) == {"missing_parameter"}

    def test_unit_cycle(self, web_app_graph: ResourceGraph, split_config: SplitterConfig) -> None:
        """A reference back to a consumer creates a cycle."""
        graph, split = _synthesize(web_app_graph, split_config)
        back = CrossUnitReference(
            consumer_unit="shop-foundation-01",
            consumer_parameter="sites_api_id",
            producer_unit="shop-compute-01",
            producer_output="sites_api_id",
            source_resource="Microsoft.Storage/storageAccounts/data",
            target_resource="Microsoft.Web/sites/api",
            property="id",
        )
        tampered = split.model_copy(update={"references": (*split.references, back)})
        assert self._run(graph, tampered) == {"unit_cycle"}

    def test_root_order_violation(
        self, web_app_graph: ResourceGraph, split_config: SplitterConfig
    ) -> None:
        """A deployment listed before its producer is reported."""
        graph, split = _synthesize(web_app_graph, split_config)
        assert split.root is not None
        tampered = _with_root_resources(split, split.root.template["resources"][::-1])
        assert self._run(graph, tampered) == {"root_order_violation"}

    def test_unit_not_deployed(
        self, web_app_graph: ResourceGraph, split_config: SplitterConfig
    ) -> None:
        """Every unit must be deployed by the root."""
        graph, split = _synthesize(web_app_graph, split_config)
        assert split.root is not None
        resources = split.root.template["resources"]
        kept = [r for r in resources if "configuration" not in r["name"]]
        tampered = _with_root_resources(split, kept)
        assert self._run(graph, tampered) == {"unit_not_deployed"}


class TestSchemaLayer:
    """Tests for type contract checks."""

    def test_contract_violation(self, web_app_graph: ResourceGraph) -> None:
        """Registered contracts are applied to rendered payloads."""
        registry = SchemaRegistry()
        registry.register("Microsoft.Storage/*", RequiredPropertiesContract(["accessTier", "sku"]))
        graph, split = _synthesize(web_app_graph)
        context = ValidationContext(graph=graph, split=split, splitter=SplitterConfig())

        result = SchemaLayer(registry).run(context, ValidationLevel.NORMAL)

        violations = [i for i in result.issues if i.code == "schema_violation"]
        assert [(i.subject, i.message) for i in violations] == [
            (
                "Microsoft.Storage/storageAccounts/data",
                "missing required property 'sku'",
            )
        ]
        assert result.status is LayerStatus.FAILED
