"""Synthesis engine.

Runs one synthesis over a finalized resource graph:

    graph -> categorize -> package -> split -> validate -> publish -> manifest

Fatal problems (unknown references, cycles, oversized resources, rejected
validation, cancellation) propagate as SynthesisError subclasses. Packaging
and upload failures are collected per item and raised together as a
SynthesisFailedError once every independent item has finished. The manifest
is written only when every upload succeeded.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field

from strata_core.config import EngineConfig
from strata_core.errors import SynthesisCancelledError, SynthesisFailedError
from strata_core.graph.builder import DependencyGraphBuilder
from strata_core.graph.categorizer import AffinityTable, ResourceCategorizer, TierTable
from strata_core.graph.models import ResourceGraph
from strata_core.manifest import ArtifactDescriptor, DeploymentManifest, TemplateDescriptor
from strata_core.observability import span
from strata_core.packaging.builders import CodeBuilder
from strata_core.packaging.cache import BuildCache
from strata_core.packaging.models import BuildArtifact, PackagingResult, PackagingStrategy
from strata_core.packaging.packager import FunctionPackager
from strata_core.publishing import (
    PACKAGE_CONTENT_TYPE,
    TEMPLATE_CONTENT_TYPE,
    ArtifactPublisher,
    UploadedArtifact,
    UploadItem,
    UploadKind,
    UploadReport,
)
from strata_core.synthesis.models import SplitResult, TemplateUnit
from strata_core.synthesis.ordering import DeploymentOrder, DeploymentOrderResolver
from strata_core.synthesis.splitter import TemplateSplitter
from strata_core.synthesis.templates import template_parameter_name
from strata_core.validation.models import ValidationReport
from strata_core.validation.pipeline import ValidationPipeline
from strata_core.validation.schema import SchemaRegistry

logger = structlog.get_logger(__name__)


class FailureItem(BaseModel):
    """One item that could not be prepared."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., description="Resource id or artifact name")
    stage: Literal["packaging", "upload"]
    message: str
    remediation: str | None = None


class FailureReport(BaseModel):
    """Every per-item failure of a run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    run_id: str
    failures: list[FailureItem] = Field(default_factory=list)

    def to_text(self) -> str:
        """Generate text report.

        Returns:
            Formatted text report for display.
        """
        lines: list[str] = []
        lines.append("=" * 60)
        lines.append("STRATA SYNTHESIS FAILURES")
        lines.append("=" * 60)
        lines.append("")
        lines.append(f"Run: {self.run_id}")
        lines.append(f"Failed items: {len(self.failures)}")
        lines.append("")

        for item in self.failures:
            lines.append(f"  [{item.stage}] {item.id}: {item.message}")
            if item.remediation:
                lines.append(f"     -> {item.remediation}")

        lines.append("")
        lines.append("=" * 60)
        return "\n".join(lines)


@dataclass(frozen=True)
class SynthesisResult:
    """Everything a run produced."""

    run_id: str
    manifest: DeploymentManifest
    manifest_path: Path
    split: SplitResult
    packaging: PackagingResult
    validation: ValidationReport


def new_run_id(now: datetime | None = None) -> str:
    """Sortable run identifier: UTC timestamp plus a random suffix."""
    moment = now or datetime.now(UTC)
    return f"{moment:%Y%m%dT%H%M%SZ}-{uuid.uuid4().hex[:8]}"


class Synthesizer:
    """Synthesis engine.

    Args:
        config: Engine configuration.
        builder: Function build step handed to the packager.
        cache: Build cache shared across runs.
        registry: Type contracts for schema validation.
        tier_table: Tier lookup override.
        affinity_table: Affinity rules override.
        clock: Source of the manifest timestamp.

    Example:
        >>> synthesizer = Synthesizer(load_engine_config())
        >>> result = synthesizer.synthesize(graph, publisher=manager)
        >>> result.manifest.deployment_order
        [['shop-foundation-01'], ['shop-compute-01']]
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        builder: CodeBuilder | None = None,
        cache: BuildCache | None = None,
        registry: SchemaRegistry | None = None,
        tier_table: TierTable | None = None,
        affinity_table: AffinityTable | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.graph_builder = DependencyGraphBuilder()
        self.categorizer = ResourceCategorizer(
            self.config.categorizer,
            tier_table=tier_table,
            affinity_table=affinity_table,
        )
        self.packager = FunctionPackager(self.config.packaging, builder=builder, cache=cache)
        self.resolver = DeploymentOrderResolver()
        self.splitter = TemplateSplitter(self.config.splitter, resolver=self.resolver)
        self.validator = ValidationPipeline(
            self.config.validation,
            registry=registry,
            splitter_config=self.config.splitter,
        )
        self._clock = clock or (lambda: datetime.now(UTC))
        self._log = logger.bind(component="synthesizer")

    def synthesize(
        self,
        graph: ResourceGraph,
        *,
        publisher: ArtifactPublisher | None = None,
        run_id: str | None = None,
        cancel: threading.Event | None = None,
    ) -> SynthesisResult:
        """Synthesize ``graph`` and write its manifest.

        Args:
            graph: Finalized resource graph.
            publisher: Artifact store front end. Without one, locations in
                the manifest are paths relative to ``output_dir``.
            run_id: Run identifier; generated if omitted.
            cancel: Set to abort the run; no manifest is written.

        Raises:
            SynthesisError: On fatal input problems or cancellation.
            SynthesisFailedError: If packaging or uploading failed for any item.
        """
        created_at = self._clock()
        run_id = run_id or new_run_id(created_at)
        attributes = {"run_id": run_id, "stack": graph.stack, "resources": len(graph)}

        with span("synthesis", attributes=attributes):
            _check_cancel(cancel, "graph")
            with span("dependency_graph", log_start=False, log_end=False):
                dependency_graph = self.graph_builder.build(graph)
            with span("categorize", log_start=False, log_end=False):
                categorization = self.categorizer.categorize(dependency_graph)

            _check_cancel(cancel, "packaging")
            with span("package", log_start=False):
                packaging = self.packager.package_all(graph.resources, cancel=cancel)
            if not packaging.succeeded:
                self._raise_failures(
                    run_id,
                    [
                        FailureItem(
                            id=failure.resource_id,
                            stage="packaging",
                            message=failure.message,
                            remediation=failure.remediation,
                        )
                        for failure in packaging.failures
                    ],
                )

            _check_cancel(cancel, "split")
            with span("split", log_start=False):
                split = self.splitter.split(dependency_graph, categorization, packaging)

            _check_cancel(cancel, "validation")
            with span("validate", log_start=False):
                report = self.validator.validate_or_raise(dependency_graph, split)

            order = self.resolver.resolve(
                [unit.name for unit in split.units], split.references
            )

            _check_cancel(cancel, "upload")
            uploaded = self._publish(run_id, split, packaging, publisher, cancel)
            _check_cancel(cancel, "manifest")

            manifest = self._manifest(
                run_id, graph.stack, created_at, split, packaging, order, uploaded
            )
            manifest_path = self._write_outputs(manifest, split, packaging)

        self._log.info(
            "synthesis_completed",
            run_id=run_id,
            templates=len(manifest.templates),
            artifacts=len(manifest.artifacts),
            manifest=str(manifest_path),
        )
        return SynthesisResult(
            run_id=run_id,
            manifest=manifest,
            manifest_path=manifest_path,
            split=split,
            packaging=packaging,
            validation=report,
        )

    def _publish(
        self,
        run_id: str,
        split: SplitResult,
        packaging: PackagingResult,
        publisher: ArtifactPublisher | None,
        cancel: threading.Event | None,
    ) -> dict[str, UploadedArtifact]:
        items = upload_items(split, packaging)
        if publisher is None or not items:
            return {}

        with span("publish", attributes={"items": len(items)}, log_start=False):
            upload_report: UploadReport = publisher.upload(items, run_id, cancel)
        if not upload_report.succeeded:
            self._raise_failures(
                run_id,
                [
                    FailureItem(
                        id=failure.name,
                        stage="upload",
                        message=failure.message,
                        remediation=failure.remediation,
                    )
                    for failure in upload_report.failures
                ],
            )
        return dict(upload_report.uploaded)

    def _raise_failures(self, run_id: str, failures: list[FailureItem]) -> None:
        report = FailureReport(run_id=run_id, failures=failures)
        self._log.error(
            "synthesis_items_failed",
            run_id=run_id,
            failed=len(failures),
            stages=sorted({item.stage for item in failures}),
        )
        raise SynthesisFailedError(report)

    def _manifest(
        self,
        run_id: str,
        stack: str,
        created_at: datetime,
        split: SplitResult,
        packaging: PackagingResult,
        order: DeploymentOrder,
        uploaded: dict[str, UploadedArtifact],
    ) -> DeploymentManifest:
        templates = [
            _template_descriptor(unit, uploaded.get(unit.file_name))
            for unit in split.all_units()
        ]
        artifacts = _artifact_descriptors(packaging, uploaded)

        by_hash = {artifact.content_hash: artifact for artifact in artifacts}
        locations: dict[str, str] = {}
        for template in templates:
            locations[template_parameter_name(template.name)] = _access_value(template)
        for package in packaging.uploadable():
            locations[package.parameter_name] = _access_value(by_hash[package.content_hash])
        parameters = {
            parameter.name: locations[parameter.name]
            for parameter in split.entry_parameters
            if parameter.name in locations
        }

        return DeploymentManifest(
            run_id=run_id,
            stack=stack,
            created_at=created_at,
            root=split.root.name if split.root is not None else None,
            templates=templates,
            artifacts=artifacts,
            deployment_order=order.as_lists(),
            parameters=parameters,
        )

    def _write_outputs(
        self,
        manifest: DeploymentManifest,
        split: SplitResult,
        packaging: PackagingResult,
    ) -> Path:
        output_dir = self.config.output_dir
        templates_dir = output_dir / UploadKind.TEMPLATE.folder
        packages_dir = output_dir / UploadKind.PACKAGE.folder
        for unit in split.all_units():
            templates_dir.mkdir(parents=True, exist_ok=True)
            (templates_dir / unit.file_name).write_bytes(unit.encode())
        for artifact in packaging.uploadable():
            packages_dir.mkdir(parents=True, exist_ok=True)
            (packages_dir / artifact.name).write_bytes(artifact.archive)
        # Written last: its presence marks a complete run
        return manifest.write(output_dir)


def upload_items(split: SplitResult, packaging: PackagingResult) -> list[UploadItem]:
    """Templates (root first) followed by archive packages."""
    items = [
        UploadItem(
            name=unit.file_name,
            kind=UploadKind.TEMPLATE,
            content_hash=unit.content_hash,
            data=unit.encode(),
            content_type=TEMPLATE_CONTENT_TYPE,
        )
        for unit in split.all_units()
    ]
    items.extend(
        UploadItem(
            name=artifact.name,
            kind=UploadKind.PACKAGE,
            content_hash=artifact.content_hash,
            data=artifact.archive,
            content_type=PACKAGE_CONTENT_TYPE,
        )
        for artifact in packaging.uploadable()
    )
    return items


def _check_cancel(cancel: threading.Event | None, stage: str) -> None:
    if cancel is not None and cancel.is_set():
        raise SynthesisCancelledError(stage)


def _access_value(descriptor: TemplateDescriptor | ArtifactDescriptor) -> str:
    if descriptor.access is not None:
        return descriptor.access.url
    return descriptor.location or ""


def _template_descriptor(
    unit: TemplateUnit, uploaded: UploadedArtifact | None
) -> TemplateDescriptor:
    return TemplateDescriptor(
        name=unit.name,
        file=unit.file_name,
        tier=unit.tier,
        is_root=unit.is_root,
        location=(
            uploaded.location
            if uploaded is not None
            else f"{UploadKind.TEMPLATE.folder}/{unit.file_name}"
        ),
        access=uploaded.access if uploaded is not None else None,
        size_bytes=unit.size_bytes,
        resource_count=unit.resource_count,
        content_hash=unit.content_hash,
        inputs=[parameter.name for parameter in unit.inputs],
        outputs=[output.name for output in unit.outputs],
    )


def _artifact_descriptors(
    packaging: PackagingResult, uploaded: dict[str, UploadedArtifact]
) -> list[ArtifactDescriptor]:
    by_hash: dict[str, list[BuildArtifact]] = {}
    for resource_id in sorted(packaging.artifacts):
        artifact = packaging.artifacts[resource_id]
        by_hash.setdefault(artifact.content_hash, []).append(artifact)

    descriptors: list[ArtifactDescriptor] = []
    for key in sorted(by_hash):
        artifact = by_hash[key][0]
        location: str | None = None
        stored = uploaded.get(artifact.name)
        if artifact.strategy is PackagingStrategy.ARCHIVE:
            location = (
                stored.location
                if stored is not None
                else f"{UploadKind.PACKAGE.folder}/{artifact.name}"
            )
        elif artifact.strategy is PackagingStrategy.EXTERNAL:
            location = artifact.external_uri
        descriptors.append(
            ArtifactDescriptor(
                name=artifact.name,
                resource_ids=[item.resource_id for item in by_hash[key]],
                content_hash=artifact.content_hash,
                checksum=artifact.checksum,
                strategy=artifact.strategy,
                size_bytes=artifact.size_bytes,
                location=location,
                access=stored.access if stored is not None else None,
            )
        )
    return descriptors
