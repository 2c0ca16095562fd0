"""Resource graph models.

This module defines the immutable input of a synthesis run:
- ResourceNode: One declared cloud resource
- InlineCode: Executable code carried by a resource
- ResourceGraph: The finalized set of nodes for one stack
- Tier, AffinityRule, DependencyEdge: Categorization and graph primitives

References between resources are structural markers inside ``properties``:

    {"$ref": "Microsoft.Storage/storageAccounts/data", "property": "primaryEndpoints.blob"}

``property`` is optional and defaults to ``id``.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator
from enum import Enum
from functools import cached_property
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from strata_core.encoding import serialized_size

REF_KEY = "$ref"
REF_PROPERTY_KEY = "property"
DEFAULT_REF_PROPERTY = "id"

# Provider namespace followed by one or more type segments
RESOURCE_TYPE_PATTERN = re.compile(
    r"^[A-Za-z][A-Za-z0-9]*(\.[A-Za-z][A-Za-z0-9]*)+(/[A-Za-z][A-Za-z0-9]*)+$"
)


class Tier(str, Enum):
    """Coarse deployment-ordering category, in deployment order."""

    FOUNDATION = "foundation"
    COMPUTE = "compute"
    APPLICATION = "application"
    CONFIGURATION = "configuration"

    @property
    def rank(self) -> int:
        """Position of the tier in deployment order."""
        return _TIER_ORDER.index(self)


_TIER_ORDER = list(Tier)


class AffinityStrength(str, Enum):
    """Strong affinity means must co-locate; weak means prefer to."""

    STRONG = "strong"
    WEAK = "weak"


class AffinityRule(BaseModel):
    """Pair of resource-type patterns that belong together.

    Patterns are fnmatch-style globs on the resource type. Rules are
    symmetric: either side may be the dependent resource.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    parent_pattern: str = Field(..., min_length=1)
    child_pattern: str = Field(..., min_length=1)
    strength: AffinityStrength = Field(default=AffinityStrength.STRONG)


class EdgeKind(str, Enum):
    """Origin of a dependency edge."""

    REFERENCE = "reference"
    PARENT_CHILD = "parent_child"
    EXPLICIT = "explicit"


class DependencyEdge(BaseModel):
    """``source`` must deploy after ``target``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    source: str
    target: str
    kind: EdgeKind


class InlineCode(BaseModel):
    """Executable code embedded in a resource declaration.

    Attributes:
        source: Entry file content.
        entry_point: Entry file name inside the package.
        runtime: Target runtime name (e.g., "node", "python").
        runtime_version: Target runtime version; part of the build identity.
        dependencies: Package dependencies (name to version spec).
        files: Additional files (relative path to content).
        bindings: Trigger/binding declarations written to function.json.
        build_options: Opaque options forwarded to the build step.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    source: str = Field(..., description="Entry file content")
    entry_point: str = Field(default="index.js", min_length=1)
    runtime: str = Field(default="node", min_length=1)
    runtime_version: str = Field(default="18", min_length=1)
    dependencies: dict[str, str] = Field(default_factory=dict)
    files: dict[str, str] = Field(default_factory=dict)
    bindings: list[dict[str, Any]] = Field(default_factory=list)
    build_options: dict[str, Any] = Field(default_factory=dict)


class ResourceNode(BaseModel):
    """One resource of the input graph.

    Attributes:
        type: Resource type, e.g. ``Microsoft.Web/sites``.
        name: Resource name; child resources use ``parent/child``.
        properties: Opaque property payload, may contain reference markers.
        depends_on: Explicit dependencies by resource id.
        parent: Id of the containing resource, if any.
        api_version: Provider API version for the type.
        location: Deployment region.
        inline_code: Code to package, if the resource carries any.

    Example:
        >>> node = ResourceNode(type="Microsoft.Storage/storageAccounts", name="data")
        >>> node.id
        'Microsoft.Storage/storageAccounts/data'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    properties: dict[str, Any] = Field(default_factory=dict)
    depends_on: tuple[str, ...] = Field(default=())
    parent: str | None = Field(default=None)
    api_version: str | None = Field(default=None)
    location: str | None = Field(default=None)
    inline_code: InlineCode | None = Field(default=None)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def id(self) -> str:
        """Graph-unique identifier."""
        return f"{self.type}/{self.name}"

    @cached_property
    def payload_size(self) -> int:
        """Exact serialized size of the property payload."""
        return serialized_size(self.properties)

    @property
    def type_depth(self) -> int:
        """Number of type segments after the provider namespace."""
        return len(self.type.split("/")) - 1

    def references(self) -> Iterator[tuple[str, str]]:
        """Yield ``(target_id, property)`` for every marker in the payload."""
        yield from iter_references(self.properties)


class ResourceGraph(BaseModel):
    """The finalized, read-only input of a synthesis run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    stack: str = Field(default="stack", pattern=r"^[a-z0-9][a-z0-9-]*$")
    resources: tuple[ResourceNode, ...] = Field(default=())

    @field_validator("resources")
    @classmethod
    def ids_must_be_unique(cls, v: tuple[ResourceNode, ...]) -> tuple[ResourceNode, ...]:
        """Validate that no two resources share an id."""
        seen: set[str] = set()
        for node in v:
            if node.id in seen:
                msg = f"Duplicate resource id: {node.id}"
                raise ValueError(msg)
            seen.add(node.id)
        return v

    @cached_property
    def by_id(self) -> dict[str, ResourceNode]:
        """Nodes keyed by id."""
        return {node.id: node for node in self.resources}

    def get(self, resource_id: str) -> ResourceNode | None:
        """Look up a node by id."""
        return self.by_id.get(resource_id)

    def __contains__(self, resource_id: object) -> bool:
        return isinstance(resource_id, str) and self.get(resource_id) is not None

    def __len__(self) -> int:
        return len(self.resources)

    @property
    def ids(self) -> list[str]:
        """Resource ids in declaration order."""
        return [node.id for node in self.resources]

    @classmethod
    def from_file(cls, path: Path | str) -> ResourceGraph:
        """Load a graph from a JSON or YAML file."""
        file_path = Path(path)
        text = file_path.read_text()
        if file_path.suffix == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
        return cls.model_validate(data)


def is_reference(value: Any) -> bool:
    """Check whether ``value`` is a reference marker."""
    return (
        isinstance(value, dict)
        and isinstance(value.get(REF_KEY), str)
        and set(value) <= {REF_KEY, REF_PROPERTY_KEY}
    )


def iter_references(value: Any) -> Iterator[tuple[str, str]]:
    """Recursively yield ``(target_id, property)`` markers found in ``value``."""
    if is_reference(value):
        yield value[REF_KEY], value.get(REF_PROPERTY_KEY, DEFAULT_REF_PROPERTY)
    elif isinstance(value, dict):
        for key in sorted(value):
            yield from iter_references(value[key])
    elif isinstance(value, list):
        for item in value:
            yield from iter_references(item)
