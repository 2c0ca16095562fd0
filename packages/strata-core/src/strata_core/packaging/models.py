"""Function packaging models.

Covers build inputs (BuildRequest, BuildConfiguration), build outputs
(BuiltPackage, BuildArtifact) and the aggregated PackagingResult.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from functools import cached_property
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from strata_core.encoding import canonical_json, content_hash, short_hash
from strata_core.graph.models import ResourceNode


class PackagingStrategy(str, Enum):
    """How a built package reaches its resource.

    Attributes:
        INLINE: Files are embedded directly in the template.
        ARCHIVE: The archive is uploaded and referenced by a signed URL.
        EXTERNAL: The archive is hosted at a caller-provided location.
    """

    INLINE = "inline"
    ARCHIVE = "archive"
    EXTERNAL = "external"


class BuildConfiguration(BaseModel):
    """Everything besides the code bytes that affects build output."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    builder: str = Field(..., min_length=1, description="Builder identity")
    runtime: str = Field(..., min_length=1)
    runtime_version: str = Field(..., min_length=1)
    entry_point: str = Field(..., min_length=1)
    dependencies: dict[str, str] = Field(default_factory=dict)
    bindings: list[dict[str, Any]] = Field(default_factory=list)
    build_options: dict[str, Any] = Field(default_factory=dict)


class BuildRequest(BaseModel):
    """One function to build.

    Attributes:
        resource_id: Originating resource.
        configuration: Build configuration.
        files: Source files by relative path, entry point included.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    resource_id: str
    configuration: BuildConfiguration
    files: dict[str, str]

    @cached_property
    def content_hash(self) -> str:
        """Pure function of (code bytes, build configuration)."""
        return content_hash(
            canonical_json(self.configuration.model_dump(mode="json")),
            canonical_json(self.files),
        )

    @property
    def dependency_count(self) -> int:
        return len(self.configuration.dependencies)

    @classmethod
    def from_node(cls, node: ResourceNode, *, builder: str) -> BuildRequest:
        """Extract the build request of a node carrying inline code."""
        code = node.inline_code
        if code is None:
            msg = f"Resource '{node.id}' carries no inline code"
            raise ValueError(msg)
        files = dict(code.files)
        files[code.entry_point] = code.source
        return cls(
            resource_id=node.id,
            configuration=BuildConfiguration(
                builder=builder,
                runtime=code.runtime,
                runtime_version=code.runtime_version,
                entry_point=code.entry_point,
                dependencies=code.dependencies,
                bindings=code.bindings,
                build_options=code.build_options,
            ),
            files=files,
        )


class BuiltPackage(BaseModel):
    """Cached build output, shared by every resource with the same hash."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    content_hash: str
    archive: bytes = Field(..., repr=False, exclude=True)
    checksum: str = Field(..., description="sha256 hex of the archive bytes")
    built_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def size_bytes(self) -> int:
        return len(self.archive)


class BuildArtifact(BaseModel):
    """Packaged code for one resource.

    Attributes:
        resource_id: Originating resource.
        content_hash: Content-addressable build identity.
        size_bytes: Archive length in bytes.
        checksum: sha256 hex of the archive bytes.
        strategy: Selected packaging strategy.
        dependency_count: Number of declared package dependencies.
        files: Source files, kept for inline embedding.
        external_uri: Location for the external strategy.
        archive: Archive bytes (not serialized).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    resource_id: str
    content_hash: str
    size_bytes: int = Field(..., ge=0)
    checksum: str
    strategy: PackagingStrategy
    dependency_count: int = Field(default=0, ge=0)
    files: dict[str, str] = Field(default_factory=dict, repr=False)
    external_uri: str | None = None
    archive: bytes = Field(default=b"", repr=False, exclude=True)

    @property
    def name(self) -> str:
        """Stable artifact name derived from the content hash."""
        return f"{short_hash(self.content_hash)}.zip"

    @property
    def parameter_name(self) -> str:
        """Template parameter carrying the archive location."""
        return f"packageUri_{short_hash(self.content_hash)}"


class PackageFailure(BaseModel):
    """A resource whose package could not be produced."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    resource_id: str
    message: str
    remediation: str | None = None
    retryable: bool = False


class PackagingResult(BaseModel):
    """Outcome of packaging every inline-code resource of a run.

    Attributes:
        artifacts: Artifact per resource id.
        failures: Failed resources, in resource id order.
        builds: Number of underlying build invocations.
        cache_hits: Number of requests served from the cache.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    artifacts: dict[str, BuildArtifact] = Field(default_factory=dict)
    failures: list[PackageFailure] = Field(default_factory=list)
    builds: int = Field(default=0, ge=0)
    cache_hits: int = Field(default=0, ge=0)

    @property
    def succeeded(self) -> bool:
        return not self.failures

    def uploadable(self) -> list[BuildArtifact]:
        """Archive-strategy artifacts, one per content hash, sorted by hash."""
        unique: dict[str, BuildArtifact] = {}
        for artifact in self.artifacts.values():
            if artifact.strategy is PackagingStrategy.ARCHIVE:
                unique.setdefault(artifact.content_hash, artifact)
        return [unique[key] for key in sorted(unique)]
