"""Deployment manifest.

The manifest is the only output contract of a synthesis run: it lists every
template unit and package artifact, where each was stored, how to read it
and in which order the units deploy.

Contract Rules:
- Model is immutable (frozen=True)
- Unknown fields are rejected (extra="forbid")
- JSON Schema exported for cross-language consumers (see export.py)

Version History:
- v1.0.0: Initial release
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from strata_core.graph.models import Tier
from strata_core.packaging.models import PackagingStrategy
from strata_core.publishing import AccessDescriptor

MANIFEST_VERSION = "1.0.0"
MANIFEST_FILE_NAME = "manifest.json"


class TemplateDescriptor(BaseModel):
    """One template unit as recorded in the manifest.

    Attributes:
        name: Unit name.
        file: File name under the run's ``templates`` folder.
        tier: Tier of the unit, null for the root.
        is_root: Whether this is the orchestrator template.
        location: Store location, or the local relative path when unpublished.
        access: Signed read access, if published.
        size_bytes: Exact encoded size.
        resource_count: Resources in the template.
        content_hash: Hash of the encoded template.
        inputs: Parameter names the template declares.
        outputs: Output names the template exposes.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1, description="Unit name")
    file: str = Field(..., min_length=1, description="Template file name")
    tier: Tier | None = Field(default=None, description="Unit tier (null for root)")
    is_root: bool = Field(default=False, description="Orchestrator template flag")
    location: str = Field(..., description="Stored location")
    access: AccessDescriptor | None = Field(default=None, description="Signed read access")
    size_bytes: int = Field(..., ge=0, description="Exact encoded size in bytes")
    resource_count: int = Field(..., ge=0, description="Resources in the template")
    content_hash: str = Field(..., min_length=1, description="Content hash")
    inputs: list[str] = Field(default_factory=list, description="Declared parameters")
    outputs: list[str] = Field(default_factory=list, description="Declared outputs")


class ArtifactDescriptor(BaseModel):
    """One package artifact as recorded in the manifest.

    Inline artifacts are embedded in their template and carry no location.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1, description="Artifact file name")
    resource_ids: list[str] = Field(..., min_length=1, description="Resources using it")
    content_hash: str = Field(..., min_length=1, description="Build content hash")
    checksum: str = Field(..., description="sha256 of the archive bytes")
    strategy: PackagingStrategy = Field(..., description="Packaging strategy")
    size_bytes: int = Field(..., ge=0, description="Archive size in bytes")
    location: str | None = Field(default=None, description="Stored location")
    access: AccessDescriptor | None = Field(default=None, description="Signed read access")


class DeploymentManifest(BaseModel):
    """Immutable record of a successful synthesis run.

    Attributes:
        version: Manifest schema version.
        run_id: Run identifier, also the store prefix.
        stack: Stack name.
        created_at: Creation timestamp (UTC).
        root: Name of the orchestrator template, null when the run produced
            a single unit.
        templates: Template descriptors, root first.
        artifacts: Package descriptors, sorted by content hash.
        deployment_order: Batches of unit names; units within a batch are
            independent.
        parameters: Values for the entry template's parameters.

    Example:
        >>> manifest = DeploymentManifest.read(Path("out/manifest.json"))
        >>> manifest.deployment_order
        [['shop-foundation-01'], ['shop-compute-01']]
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: str = Field(default=MANIFEST_VERSION, description="Manifest schema version")
    run_id: str = Field(..., min_length=1, description="Run identifier")
    stack: str = Field(..., min_length=1, description="Stack name")
    created_at: datetime = Field(..., description="Creation timestamp (UTC)")
    root: str | None = Field(default=None, description="Orchestrator template name")
    templates: list[TemplateDescriptor] = Field(default_factory=list)
    artifacts: list[ArtifactDescriptor] = Field(default_factory=list)
    deployment_order: list[list[str]] = Field(default_factory=list)
    parameters: dict[str, str] = Field(
        default_factory=dict,
        description="Entry template parameter values",
    )

    @property
    def is_empty(self) -> bool:
        return not self.templates

    def template(self, name: str) -> TemplateDescriptor:
        for descriptor in self.templates:
            if descriptor.name == name:
                return descriptor
        raise KeyError(name)

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)

    def write(self, output_dir: Path | str) -> Path:
        """Write ``manifest.json`` into ``output_dir`` and return its path."""
        directory = Path(output_dir)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / MANIFEST_FILE_NAME
        path.write_text(self.to_json(), encoding="utf-8")
        return path

    @classmethod
    def read(cls, path: Path | str) -> DeploymentManifest:
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))
