"""Validation layers.

Each layer collects every issue it finds; the pipeline decides from the
configured level whether the layer failed.

Layers, in pipeline order:
1. resources: well-formedness of the input nodes
2. transformation: rendered resources and unit budgets
3. structure: serialized template structure and expression syntax
4. deployment: simulated deployment order of units
5. schema: resource payloads against their type contracts
"""

from __future__ import annotations

import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import structlog

from strata_core.config import SplitterConfig, ValidationLevel
from strata_core.errors import DependencyCycleError
from strata_core.graph.builder import DependencyGraph
from strata_core.graph.models import REF_KEY, RESOURCE_TYPE_PATTERN, is_reference
from strata_core.synthesis.models import CrossUnitReference, SplitResult, TemplateUnit
from strata_core.synthesis.ordering import DeploymentOrder, DeploymentOrderResolver
from strata_core.synthesis.templates import (
    CONTENT_VERSION,
    DEPLOYMENTS_TYPE,
    TEMPLATE_SCHEMA,
    referenced_parameters,
    resource_id_for,
)
from strata_core.validation.models import LayerResult, LayerStatus, Severity, ValidationIssue
from strata_core.validation.schema import SchemaRegistry

logger = structlog.get_logger(__name__)

API_VERSION_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}(-[A-Za-z0-9]+)?$")
CONTENT_VERSION_PATTERN = re.compile(r"^\d+(\.\d+){3}$")
SCHEMA_PREFIX = "https://schema.management.azure.com/schemas/"
DEPLOYMENT_REFERENCE = re.compile(
    r"^\[resourceId\('Microsoft\.Resources/deployments', '([^']+)'\)\]$"
)


@dataclass(frozen=True)
class ValidationContext:
    """Everything a layer may inspect."""

    graph: DependencyGraph
    split: SplitResult
    splitter: SplitterConfig


class BaseLayer(ABC):
    """Base class for validation layers.

    Provides timing, logging and conversion of unexpected errors into a
    critical issue.
    """

    name: str = ""

    def __init__(self) -> None:
        self._log = logger.bind(layer=self.name)

    def run(self, context: ValidationContext, level: ValidationLevel) -> LayerResult:
        """Run the layer and classify the outcome for ``level``."""
        start_time = time.monotonic()
        self._log.debug("layer_started", level=level.value)
        try:
            issues = self._execute(context)
        except Exception as e:
            self._log.error("layer_error", error=str(e), error_type=type(e).__name__)
            issues = [
                self.issue(
                    "layer_error",
                    Severity.CRITICAL,
                    self.name,
                    f"Layer raised {type(e).__name__}: {e}",
                )
            ]
        duration_ms = int((time.monotonic() - start_time) * 1000)

        result = LayerResult(
            name=self.name,
            level=level,
            status=LayerStatus.PASSED,
            issues=issues,
            duration_ms=duration_ms,
        )
        if result.blocking_issues():
            result = result.model_copy(update={"status": LayerStatus.FAILED})

        self._log.info(
            "layer_completed",
            status=result.status.value,
            issues=len(issues),
            duration_ms=duration_ms,
        )
        return result

    @abstractmethod
    def _execute(self, context: ValidationContext) -> list[ValidationIssue]:
        """Return every issue found."""

    def issue(
        self,
        code: str,
        severity: Severity,
        subject: str,
        message: str,
        suggestion: str | None = None,
    ) -> ValidationIssue:
        return ValidationIssue(
            layer=self.name,
            code=code,
            severity=severity,
            subject=subject,
            message=message,
            suggestion=suggestion,
        )


class ResourceLayer(BaseLayer):
    """Input nodes are well formed."""

    name = "resources"

    def _execute(self, context: ValidationContext) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for node in context.graph.graph.resources:
            if not RESOURCE_TYPE_PATTERN.match(node.type):
                issues.append(
                    self.issue(
                        "invalid_resource_type",
                        Severity.ERROR,
                        node.id,
                        f"Resource type '{node.type}' is not of the form "
                        "Namespace.Provider/type",
                    )
                )
            segments = node.name.split("/")
            if any(not segment for segment in segments):
                issues.append(
                    self.issue(
                        "empty_name_segment", Severity.ERROR, node.id, "Name has an empty segment"
                    )
                )
            elif len(segments) != node.type_depth:
                issues.append(
                    self.issue(
                        "name_depth_mismatch",
                        Severity.ERROR,
                        node.id,
                        f"Name has {len(segments)} segment(s) but type '{node.type}' "
                        f"requires {node.type_depth}",
                        "Child resources are named 'parent/child'",
                    )
                )
            if node.api_version is not None and not API_VERSION_PATTERN.match(node.api_version):
                issues.append(
                    self.issue(
                        "invalid_api_version",
                        Severity.ERROR,
                        node.id,
                        f"API version '{node.api_version}' is not a YYYY-MM-DD date",
                    )
                )
            if node.inline_code is not None and not node.inline_code.source.strip():
                issues.append(
                    self.issue(
                        "empty_inline_code",
                        Severity.ERROR,
                        node.id,
                        "Inline code has an empty source",
                    )
                )
        return issues


class TransformationLayer(BaseLayer):
    """Rendered resources are complete and units respect their budgets."""

    name = "transformation"

    def _execute(self, context: ValidationContext) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        config = context.splitter
        seen: dict[str, str] = {}

        for unit in context.split.units:
            if unit.size_bytes > config.max_unit_bytes or len(unit.encode()) != unit.size_bytes:
                issues.append(
                    self.issue(
                        "unit_size_exceeded",
                        Severity.CRITICAL,
                        unit.name,
                        f"Unit is {len(unit.encode())} bytes, limit {config.max_unit_bytes}",
                    )
                )
            if unit.resource_count > config.max_resources_per_unit:
                issues.append(
                    self.issue(
                        "unit_count_exceeded",
                        Severity.CRITICAL,
                        unit.name,
                        f"Unit holds {unit.resource_count} resources, "
                        f"cap {config.max_resources_per_unit}",
                    )
                )
            for rid in unit.resource_ids:
                if rid in seen:
                    issues.append(
                        self.issue(
                            "resource_duplicated",
                            Severity.CRITICAL,
                            rid,
                            f"Resource placed in both '{seen[rid]}' and '{unit.name}'",
                        )
                    )
                seen[rid] = unit.name

            for index, resource in enumerate(unit.template.get("resources", [])):
                subject = f"{unit.name}#{index}"
                for field_name in ("type", "apiVersion", "name"):
                    if not resource.get(field_name):
                        issues.append(
                            self.issue(
                                f"missing_{_snake(field_name)}",
                                Severity.ERROR,
                                f"{subject}:{resource.get('name', '?')}",
                                f"Rendered resource has no '{field_name}'",
                                _suggestion_for(field_name),
                            )
                        )
                if _contains_marker(resource):
                    issues.append(
                        self.issue(
                            "unresolved_reference",
                            Severity.CRITICAL,
                            subject,
                            "Rendered resource still contains a reference marker",
                        )
                    )

        for rid in context.graph.ids:
            if rid not in seen:
                issues.append(
                    self.issue(
                        "resource_unassigned",
                        Severity.CRITICAL,
                        rid,
                        "Resource is not part of any template unit",
                    )
                )
        return issues


class StructureLayer(BaseLayer):
    """Serialized templates are structurally valid."""

    name = "structure"

    def _execute(self, context: ValidationContext) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for unit in context.split.all_units():
            issues.extend(self._check_unit(unit))
        return issues

    def _check_unit(self, unit: TemplateUnit) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        template = unit.template

        schema = template.get("$schema")
        if not isinstance(schema, str) or not schema.startswith(SCHEMA_PREFIX):
            issues.append(
                self.issue(
                    "invalid_schema",
                    Severity.ERROR,
                    unit.name,
                    f"Template $schema must start with {SCHEMA_PREFIX}",
                    f"Use {TEMPLATE_SCHEMA}",
                )
            )
        version = template.get("contentVersion")
        if not isinstance(version, str) or not CONTENT_VERSION_PATTERN.match(version):
            issues.append(
                self.issue(
                    "invalid_content_version",
                    Severity.ERROR,
                    unit.name,
                    f"contentVersion must look like {CONTENT_VERSION}",
                )
            )

        resources = template.get("resources")
        if not isinstance(resources, list):
            issues.append(
                self.issue("missing_resources", Severity.CRITICAL, unit.name, "No resources list")
            )
            return issues

        declared = set(template.get("parameters", {}))
        used = referenced_parameters(resources) | referenced_parameters(template.get("outputs", {}))
        for name in sorted(used - declared):
            issues.append(
                self.issue(
                    "undeclared_parameter",
                    Severity.ERROR,
                    unit.name,
                    f"Expression references undeclared parameter '{name}'",
                )
            )

        local_ids: set[str] = set()
        names: set[tuple[str, str]] = set()
        for resource in resources:
            key = (str(resource.get("type", "")).lower(), str(resource.get("name", "")).lower())
            if key in names:
                issues.append(
                    self.issue(
                        "duplicate_resource",
                        Severity.ERROR,
                        unit.name,
                        f"Duplicate resource {key[0]}/{key[1]}",
                    )
                )
            names.add(key)
            local_ids.add(_resource_expression(resource))

        for resource in resources:
            for message in _malformed_expressions(resource):
                issues.append(
                    self.issue("malformed_expression", Severity.ERROR, unit.name, message)
                )
            for dep in resource.get("dependsOn", []):
                if not isinstance(dep, str) or dep not in local_ids:
                    issues.append(
                        self.issue(
                            "dangling_depends_on",
                            Severity.ERROR,
                            unit.name,
                            f"'{resource.get('name')}' depends on '{dep}' outside this template",
                        )
                    )
        return issues


class DeploymentLayer(BaseLayer):
    """Units can be deployed in an order where producers come first."""

    name = "deployment"

    def __init__(self, resolver: DeploymentOrderResolver | None = None) -> None:
        super().__init__()
        self.resolver = resolver or DeploymentOrderResolver()

    def _execute(self, context: ValidationContext) -> list[ValidationIssue]:
        split = context.split
        issues: list[ValidationIssue] = []
        try:
            order = self.resolver.resolve([unit.name for unit in split.units], split.references)
        except DependencyCycleError as e:
            return [
                self.issue(
                    "unit_cycle",
                    Severity.CRITICAL,
                    " -> ".join(e.cycle),
                    e.user_message,
                    e.remediation,
                )
            ]

        units = {unit.name: unit for unit in split.units}
        for reference in split.references:
            issues.extend(self._check_reference(reference, units, order))
        if split.root is not None:
            issues.extend(self._check_root(split.root, order))
        return issues

    def _check_reference(
        self,
        reference: CrossUnitReference,
        units: dict[str, TemplateUnit],
        order: DeploymentOrder,
    ) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        producer = units.get(reference.producer_unit)
        consumer = units.get(reference.consumer_unit)
        subject = f"{reference.source_resource} -> {reference.target_resource}"
        if producer is None or consumer is None:
            return [
                self.issue(
                    "unknown_unit", Severity.CRITICAL, subject, "Reference names an unknown unit"
                )
            ]
        if order.position(producer.name) >= order.position(consumer.name):
            issues.append(
                self.issue(
                    "producer_not_earlier",
                    Severity.CRITICAL,
                    subject,
                    f"Unit '{producer.name}' is not deployed strictly before '{consumer.name}'",
                )
            )
        if reference.producer_output not in {output.name for output in producer.outputs}:
            issues.append(
                self.issue(
                    "missing_output",
                    Severity.ERROR,
                    subject,
                    f"Unit '{producer.name}' does not declare output '{reference.producer_output}'",
                )
            )
        if reference.consumer_parameter not in {param.name for param in consumer.inputs}:
            issues.append(
                self.issue(
                    "missing_parameter",
                    Severity.ERROR,
                    subject,
                    f"Unit '{consumer.name}' does not declare parameter "
                    f"'{reference.consumer_parameter}'",
                )
            )
        return issues

    def _check_root(self, root: TemplateUnit, order: DeploymentOrder) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        deployed: set[str] = set()
        for resource in root.template.get("resources", []):
            name = resource.get("name", "")
            if resource.get("type") != DEPLOYMENTS_TYPE:
                issues.append(
                    self.issue(
                        "unexpected_root_resource",
                        Severity.ERROR,
                        root.name,
                        f"Root template holds non-deployment resource '{name}'",
                    )
                )
                continue
            for dep in resource.get("dependsOn", []):
                match = DEPLOYMENT_REFERENCE.match(dep)
                if match is None or match.group(1) not in deployed:
                    issues.append(
                        self.issue(
                            "root_order_violation",
                            Severity.CRITICAL,
                            root.name,
                            f"Deployment '{name}' depends on '{dep}' "
                            "which is not declared before it",
                        )
                    )
            deployed.add(name)
        missing = set(order.linear()) - deployed
        for name in sorted(missing):
            issues.append(
                self.issue(
                    "unit_not_deployed",
                    Severity.CRITICAL,
                    name,
                    "Root template does not deploy this unit",
                )
            )
        return issues


class SchemaLayer(BaseLayer):
    """Resource payloads comply with their type contracts."""

    name = "schema"

    def __init__(self, registry: SchemaRegistry | None = None) -> None:
        super().__init__()
        self.registry = registry or SchemaRegistry()

    def _execute(self, context: ValidationContext) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        missing: set[str] = set()
        for unit in context.split.units:
            for resource in unit.template.get("resources", []):
                resource_type = str(resource.get("type", ""))
                subject = f"{resource_type}/{resource.get('name', '')}"
                contract = self.registry.get(resource_type)
                if contract is None:
                    if resource_type not in missing:
                        missing.add(resource_type)
                        issues.append(
                            self.issue(
                                "no_schema_contract",
                                Severity.WARNING,
                                resource_type,
                                "No contract registered for this resource type",
                            )
                        )
                    continue
                for message in contract.validate(resource.get("properties", {})):
                    issues.append(
                        self.issue("schema_violation", Severity.ERROR, subject, message)
                    )
        return issues


def _suggestion_for(field_name: str) -> str | None:
    return "Set api_version on the resource" if field_name == "apiVersion" else None


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _contains_marker(value: Any) -> bool:
    if is_reference(value) or (isinstance(value, dict) and REF_KEY in value):
        return True
    if isinstance(value, dict):
        return any(_contains_marker(item) for item in value.values())
    if isinstance(value, list):
        return any(_contains_marker(item) for item in value)
    return False


def _resource_expression(resource: dict[str, Any]) -> str:
    resource_type = str(resource.get("type", ""))
    return f"[{resource_id_for(resource_type, str(resource.get('name', '')))}]"


def _malformed_expressions(value: Any) -> list[str]:
    if isinstance(value, str):
        if value.startswith("[") and not value.startswith("[["):
            if not value.endswith("]"):
                return [f"Expression '{value[:60]}' is not closed"]
            if value.count("(") != value.count(")"):
                return [f"Expression '{value[:60]}' has unbalanced parentheses"]
        return []
    if isinstance(value, dict):
        return [message for item in value.values() for message in _malformed_expressions(item)]
    if isinstance(value, list):
        return [message for item in value for message in _malformed_expressions(item)]
    return []


__all__ = [
    "BaseLayer",
    "DeploymentLayer",
    "ResourceLayer",
    "SchemaLayer",
    "StructureLayer",
    "TransformationLayer",
    "ValidationContext",
]
