"""Validation pipeline.

Runs the layers strictly in order. A layer reports every issue it finds; the
first layer that fails at its configured level stops the pipeline and the
remaining layers are reported as not run.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from strata_core.config import SplitterConfig, ValidationConfig, ValidationLevel
from strata_core.errors import ValidationFailedError
from strata_core.graph.builder import DependencyGraph
from strata_core.synthesis.models import SplitResult
from strata_core.validation.layers import (
    BaseLayer,
    DeploymentLayer,
    ResourceLayer,
    SchemaLayer,
    StructureLayer,
    TransformationLayer,
    ValidationContext,
)
from strata_core.validation.models import LayerResult, LayerStatus, ValidationReport
from strata_core.validation.schema import SchemaRegistry

logger = structlog.get_logger(__name__)


class ValidationPipeline:
    """Five-layer validation of a split result.

    Args:
        config: Per-layer validation levels.
        registry: Type contracts for the schema layer.
        splitter_config: Budgets the transformation layer checks against.
        layers: Override the layer sequence (mostly for tests).

    Example:
        >>> pipeline = ValidationPipeline(ValidationConfig())
        >>> report = pipeline.run(dependency_graph, split)
        >>> report.passed
        True
    """

    def __init__(
        self,
        config: ValidationConfig | None = None,
        *,
        registry: SchemaRegistry | None = None,
        splitter_config: SplitterConfig | None = None,
        layers: Sequence[BaseLayer] | None = None,
    ) -> None:
        self.config = config or ValidationConfig()
        self.splitter_config = splitter_config or SplitterConfig()
        if layers is None:
            layers = (
                ResourceLayer(),
                TransformationLayer(),
                StructureLayer(),
                DeploymentLayer(),
                SchemaLayer(registry),
            )
        self.layers = tuple(layers)
        self._log = logger.bind(component="validation_pipeline")

    def run(self, dependency_graph: DependencyGraph, split: SplitResult) -> ValidationReport:
        """Validate ``split`` and return the report; never raises for issues."""
        context = ValidationContext(
            graph=dependency_graph,
            split=split,
            splitter=self.splitter_config,
        )
        results: list[LayerResult] = []
        failed_layer: str | None = None

        for layer in self.layers:
            level = self.config.level_for(layer.name)
            if failed_layer is not None:
                results.append(
                    LayerResult(name=layer.name, level=level, status=LayerStatus.NOT_RUN)
                )
                continue
            if level is ValidationLevel.OFF:
                self._log.warning("validation_layer_disabled", layer=layer.name)
                results.append(
                    LayerResult(name=layer.name, level=level, status=LayerStatus.SKIPPED)
                )
                continue

            result = layer.run(context, level)
            results.append(result)
            blocking = result.blocking_issues()
            for issue in result.issues:
                if issue not in blocking:
                    self._log.warning(
                        "validation_warning",
                        layer=layer.name,
                        code=issue.code,
                        subject=issue.subject,
                    )
            if result.status is LayerStatus.FAILED:
                failed_layer = layer.name

        report = ValidationReport(layers=results, failed_layer=failed_layer)
        self._log.info(
            "validation_completed",
            passed=report.passed,
            failed_layer=failed_layer,
            issues=len(report.issues()),
        )
        return report

    def validate_or_raise(
        self, dependency_graph: DependencyGraph, split: SplitResult
    ) -> ValidationReport:
        """Run the pipeline and raise ``ValidationFailedError`` if any layer failed."""
        report = self.run(dependency_graph, split)
        if not report.passed:
            raise ValidationFailedError(report)
        return report
