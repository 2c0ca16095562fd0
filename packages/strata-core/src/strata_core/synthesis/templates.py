"""ARM template rendering.

Reference markers are resolved here: a marker whose target shares the unit
becomes a ``resourceId``/``reference`` expression, any other marker becomes
a ``parameters(...)`` lookup bound to the producer unit's output.

Unit sizes are computed arithmetically from the canonical encodings of the
parts, which equals the length of the canonical encoding of the assembled
template.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from strata_core.encoding import canonical_json, content_hash, serialized_size
from strata_core.graph.models import REF_KEY, ResourceNode, is_reference
from strata_core.packaging.models import BuildArtifact, PackagingStrategy

TEMPLATE_SCHEMA = (
    "https://schema.management.azure.com/schemas/2019-04-01/deploymentTemplate.json#"
)
CONTENT_VERSION = "1.0.0.0"
DEPLOYMENTS_TYPE = "Microsoft.Resources/deployments"
DEPLOYMENTS_API_VERSION = "2022-09-01"

PACKAGE_URI_PROPERTY = "packageUri"
INLINE_FILES_PROPERTY = "files"

TEMPLATE_URI_PREFIX = "templateUri_"

PARAMETER_EXPRESSION = re.compile(r"parameters\('([^']*)'\)")

NodeLookup = Callable[[str], ResourceNode]


def arm_literal(value: str) -> str:
    """Quote ``value`` as an ARM string literal."""
    return "'" + value.replace("'", "''") + "'"


def resource_id_for(resource_type: str, name: str) -> str:
    """``resourceId(...)`` call for a type and hierarchical name, without brackets."""
    segments = [arm_literal(resource_type), *(arm_literal(part) for part in name.split("/"))]
    return f"resourceId({', '.join(segments)})"


def resource_id_expression(node: ResourceNode) -> str:
    return resource_id_for(node.type, node.name)


def reference_value(node: ResourceNode, prop: str) -> str:
    """Same-template value of ``prop`` on ``node``."""
    if prop == "id":
        return f"[{resource_id_expression(node)}]"
    if prop == "name":
        return node.name
    return f"[reference({resource_id_expression(node)}).{prop}]"


def parameter_expression(name: str) -> str:
    return f"[parameters('{name}')]"


def deployment_output_expression(unit_name: str, output: str) -> str:
    return f"[reference({arm_literal(unit_name)}).outputs.{output}.value]"


def deployment_id_expression(unit_name: str) -> str:
    return f"[resourceId({arm_literal(DEPLOYMENTS_TYPE)}, {arm_literal(unit_name)})]"


def sanitize_name(value: str) -> str:
    """Restrict ``value`` to characters valid in parameter and output names."""
    cleaned = re.sub(r"[^A-Za-z0-9_]", "_", value)
    return cleaned if cleaned[:1].isalpha() else f"p_{cleaned}"


def template_parameter_name(unit_name: str) -> str:
    return f"{TEMPLATE_URI_PREFIX}{sanitize_name(unit_name)}"


class ReferenceNamer:
    """Assigns one output/parameter name per (target resource, property).

    Names are computed up front from the full key set, so they do not depend
    on the order in which units are built.
    """

    def __init__(self, keys: Iterable[tuple[str, str]], lookup: NodeLookup) -> None:
        self._names: dict[tuple[str, str], str] = {}
        by_base: dict[str, list[tuple[str, str]]] = {}
        for key in sorted(set(keys)):
            node = lookup(key[0])
            type_segment = node.type.rsplit("/", 1)[-1]
            base = sanitize_name(f"{type_segment}_{node.name}_{key[1]}")
            by_base.setdefault(base, []).append(key)

        for base, members in by_base.items():
            if len(members) == 1:
                self._names[members[0]] = base
                continue
            for key in members:
                digest = content_hash(f"{key[0]}|{key[1]}".encode()).removeprefix("sha256:")
                self._names[key] = f"{base}_{digest[:8]}"

    def name(self, target_id: str, prop: str) -> str:
        return self._names[(target_id, prop)]


def resolve_markers(value: Any, resolve: Callable[[str, str], Any]) -> Any:
    """Replace every reference marker in ``value`` with ``resolve(target, property)``."""
    if is_reference(value):
        return resolve(value[REF_KEY], value.get("property", "id"))
    if isinstance(value, dict):
        return {key: resolve_markers(item, resolve) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_markers(item, resolve) for item in value]
    return value


def apply_package(properties: Mapping[str, Any], artifact: BuildArtifact | None) -> dict[str, Any]:
    """Attach a built package to a resource payload according to its strategy."""
    result = dict(properties)
    if artifact is None:
        return result
    if artifact.strategy is PackagingStrategy.INLINE:
        result[INLINE_FILES_PROPERTY] = dict(sorted(artifact.files.items()))
    elif artifact.strategy is PackagingStrategy.ARCHIVE:
        result[PACKAGE_URI_PROPERTY] = parameter_expression(artifact.parameter_name)
    else:
        result[PACKAGE_URI_PROPERTY] = artifact.external_uri
    return result


def render_resource(
    node: ResourceNode,
    *,
    local_ids: Mapping[str, Any] | set[str] | frozenset[str],
    dependencies: Iterable[str],
    lookup: NodeLookup,
    namer: ReferenceNamer,
    artifact: BuildArtifact | None = None,
) -> dict[str, Any]:
    """Render one resource for a unit containing ``local_ids``."""

    def resolve(target: str, prop: str) -> Any:
        if target in local_ids:
            return reference_value(lookup(target), prop)
        return parameter_expression(namer.name(target, prop))

    resource: dict[str, Any] = {
        "type": node.type,
        "name": node.name,
        "properties": resolve_markers(apply_package(node.properties, artifact), resolve),
    }
    if node.api_version is not None:
        resource["apiVersion"] = node.api_version
    if node.location is not None:
        resource["location"] = node.location

    local_deps = sorted(
        f"[{resource_id_expression(lookup(dep))}]"
        for dep in set(dependencies)
        if dep in local_ids and dep != node.id
    )
    if local_deps:
        resource["dependsOn"] = local_deps
    return resource


def unit_template(
    resources: list[dict[str, Any]],
    parameters: Mapping[str, dict[str, Any]],
    outputs: Mapping[str, dict[str, Any]],
) -> dict[str, Any]:
    """Assemble a deployment template document."""
    return {
        "$schema": TEMPLATE_SCHEMA,
        "contentVersion": CONTENT_VERSION,
        "parameters": dict(parameters),
        "resources": list(resources),
        "outputs": dict(outputs),
    }


SKELETON_SIZE = serialized_size(unit_template([], {}, {}))


def entry_size(key: str, value: Any) -> int:
    """Encoded size of one ``"key":value`` object member."""
    return len(canonical_json(key)) + 1 + serialized_size(value)


def template_size(
    resource_sizes: Iterable[int],
    parameter_sizes: Iterable[int],
    output_sizes: Iterable[int],
) -> int:
    """Exact encoded size of a unit template from its part sizes.

    ``resource_sizes`` are encoded resource lengths; the other two are
    :func:`entry_size` values.
    """
    total = SKELETON_SIZE
    for sizes in (resource_sizes, parameter_sizes, output_sizes):
        items = list(sizes)
        if items:
            total += sum(items) + len(items) - 1
    return total


def deployment_resource(
    unit_name: str,
    *,
    depends_on: Iterable[str],
    parameters: Mapping[str, str],
) -> dict[str, Any]:
    """Root-template resource deploying one linked unit."""
    resource: dict[str, Any] = {
        "type": DEPLOYMENTS_TYPE,
        "apiVersion": DEPLOYMENTS_API_VERSION,
        "name": unit_name,
        "properties": {
            "mode": "Incremental",
            "templateLink": {
                "uri": parameter_expression(template_parameter_name(unit_name)),
                "contentVersion": CONTENT_VERSION,
            },
            "parameters": {name: {"value": value} for name, value in sorted(parameters.items())},
        },
    }
    producers = sorted(set(depends_on))
    if producers:
        resource["dependsOn"] = [deployment_id_expression(name) for name in producers]
    return resource


def referenced_parameters(value: Any) -> set[str]:
    """Names of all parameters referenced by expressions inside ``value``."""
    found: set[str] = set()
    if isinstance(value, str):
        if value.startswith("[") and value.endswith("]"):
            found.update(PARAMETER_EXPRESSION.findall(value))
    elif isinstance(value, dict):
        for item in value.values():
            found |= referenced_parameters(item)
    elif isinstance(value, list):
        for item in value:
            found |= referenced_parameters(item)
    return found
