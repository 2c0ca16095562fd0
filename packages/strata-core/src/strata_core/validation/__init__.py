"""Five-layer validation of synthesized templates."""

from __future__ import annotations

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
    LayerResult,
    LayerStatus,
    Severity,
    ValidationIssue,
    ValidationReport,
    is_blocking,
)
from strata_core.validation.pipeline import ValidationPipeline
from strata_core.validation.schema import (
    JsonSchemaContract,
    ModelContract,
    RequiredPropertiesContract,
    SchemaRegistry,
    TypeContract,
)

__all__ = [
    "BaseLayer",
    "DeploymentLayer",
    "JsonSchemaContract",
    "LayerResult",
    "LayerStatus",
    "ModelContract",
    "RequiredPropertiesContract",
    "ResourceLayer",
    "SchemaLayer",
    "SchemaRegistry",
    "Severity",
    "StructureLayer",
    "TransformationLayer",
    "TypeContract",
    "ValidationContext",
    "ValidationIssue",
    "ValidationPipeline",
    "ValidationReport",
    "is_blocking",
]
