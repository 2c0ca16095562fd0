"""Template splitting, rendering and deployment ordering."""

from __future__ import annotations

from strata_core.synthesis.models import (
    CrossUnitReference,
    SplitResult,
    TemplateUnit,
    UnitOutput,
    UnitParameter,
)
from strata_core.synthesis.ordering import (
    DeploymentOrder,
    DeploymentOrderResolver,
    order_resources,
    unit_dependencies,
)
from strata_core.synthesis.splitter import TemplateSplitter

__all__ = [
    "CrossUnitReference",
    "DeploymentOrder",
    "DeploymentOrderResolver",
    "SplitResult",
    "TemplateSplitter",
    "TemplateUnit",
    "UnitOutput",
    "UnitParameter",
    "order_resources",
    "unit_dependencies",
]
