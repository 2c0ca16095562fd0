"""Function packager.

Builds every inline-code resource on a bounded worker pool. Resources with
identical code and configuration share one build. A failing build never
aborts its siblings: failures are collected and reported once every build
has finished.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor

import structlog

from strata_core.config import PackagingConfig
from strata_core.encoding import short_hash
from strata_core.errors import BuildError, SynthesisCancelledError, TransientBuildError
from strata_core.graph.models import ResourceNode
from strata_core.packaging.builders import (
    ArchiveBuilder,
    CodeBuilder,
    archive_sources,
    validate_archive,
)
from strata_core.packaging.cache import BuildCache
from strata_core.packaging.models import (
    BuildArtifact,
    BuildRequest,
    BuiltPackage,
    PackageFailure,
    PackagingResult,
    PackagingStrategy,
)
from strata_core.packaging.strategy import select_packaging_strategy
from strata_core.retry import create_retry_decorator, run_with_timeout

logger = structlog.get_logger(__name__)

RETRYABLE_BUILD_ERRORS: tuple[type[Exception], ...] = (
    TransientBuildError,
    TimeoutError,
    ConnectionError,
)


class FunctionPackager:
    """Orchestrates builds, caching and strategy selection.

    Args:
        config: Packaging configuration.
        builder: Build step; defaults to ArchiveBuilder.
        cache: Shared build cache; a private one is created if omitted.

    Example:
        >>> packager = FunctionPackager(PackagingConfig(concurrency=4))
        >>> result = packager.package_all(graph.resources)
        >>> result.artifacts["Microsoft.Web/sites/functions/api/hello"].strategy
        <PackagingStrategy.INLINE: 'inline'>
    """

    def __init__(
        self,
        config: PackagingConfig | None = None,
        *,
        builder: CodeBuilder | None = None,
        cache: BuildCache | None = None,
    ) -> None:
        self.config = config or PackagingConfig()
        self.builder: CodeBuilder = builder or ArchiveBuilder()
        self.cache = cache or BuildCache(
            ttl_seconds=self.config.cache_ttl_seconds,
            cache_dir=self.config.cache_dir,
        )
        self._log = logger.bind(component="function_packager", builder=self.builder.name)
        self._counter_lock = threading.Lock()

    def package_all(
        self,
        nodes: Iterable[ResourceNode],
        *,
        cancel: threading.Event | None = None,
    ) -> PackagingResult:
        """Package every node that carries inline code.

        Args:
            nodes: Resources of the run; nodes without code are ignored.
            cancel: Event that, once set, stops further builds.

        Returns:
            PackagingResult with one artifact or failure per code resource.

        Raises:
            SynthesisCancelledError: If ``cancel`` was set during packaging.
        """
        requests = [
            BuildRequest.from_node(node, builder=self.builder.name)
            for node in nodes
            if node.inline_code is not None
        ]
        if not requests:
            return PackagingResult()

        # One build per content hash; results applied by key, not completion order
        by_hash: dict[str, list[BuildRequest]] = {}
        for request in requests:
            by_hash.setdefault(request.content_hash, []).append(request)

        self._log.info(
            "packaging_started",
            functions=len(requests),
            unique_builds=len(by_hash),
            concurrency=self.config.concurrency,
        )

        counters = {"builds": 0, "cache_hits": 0}
        outcomes: dict[str, BuiltPackage | PackageFailure] = {}
        with ThreadPoolExecutor(
            max_workers=self.config.concurrency,
            thread_name_prefix="strata-build",
        ) as pool:
            futures = {
                key: pool.submit(self._build_one, group[0], counters, cancel)
                for key, group in sorted(by_hash.items())
            }
            for key, future in futures.items():
                outcomes[key] = future.result()

        if cancel is not None and cancel.is_set():
            self._log.warning("packaging_cancelled")
            raise SynthesisCancelledError("packaging")

        artifacts: dict[str, BuildArtifact] = {}
        failures: list[PackageFailure] = []
        for key, group in by_hash.items():
            outcome = outcomes[key]
            for request in group:
                if isinstance(outcome, PackageFailure):
                    failures.append(outcome.model_copy(update={"resource_id": request.resource_id}))
                    continue
                artifact_or_failure = self._to_artifact(request, outcome)
                if isinstance(artifact_or_failure, PackageFailure):
                    failures.append(artifact_or_failure)
                else:
                    artifacts[request.resource_id] = artifact_or_failure

        failures.sort(key=lambda f: f.resource_id)
        self._log.info(
            "packaging_completed",
            artifacts=len(artifacts),
            failures=len(failures),
            builds=counters["builds"],
            cache_hits=counters["cache_hits"],
        )
        return PackagingResult(
            artifacts=dict(sorted(artifacts.items())),
            failures=failures,
            builds=counters["builds"],
            cache_hits=counters["cache_hits"],
        )

    def _build_one(
        self,
        request: BuildRequest,
        counters: dict[str, int],
        cancel: threading.Event | None,
    ) -> BuiltPackage | PackageFailure:
        log = self._log.bind(resource_id=request.resource_id, key=short_hash(request.content_hash))
        if cancel is not None and cancel.is_set():
            return PackageFailure(resource_id=request.resource_id, message="cancelled")

        @create_retry_decorator(
            self.config.retry,
            retry_exceptions=RETRYABLE_BUILD_ERRORS,
            operation_name="build",
        )
        def invoke() -> bytes:
            if cancel is not None and cancel.is_set():
                raise SynthesisCancelledError("packaging")
            return run_with_timeout(
                lambda: self.builder.build(request),
                self.config.build_timeout_seconds,
            )

        try:
            package, hit = self.cache.get_or_build(
                request.content_hash,
                invoke,
                force=self.config.force_rebuild,
            )
        except SynthesisCancelledError:
            return PackageFailure(resource_id=request.resource_id, message="cancelled")
        except BuildError as e:
            log.error("build_failed", error=e.user_message)
            return PackageFailure(
                resource_id=request.resource_id,
                message=e.user_message,
                remediation="Fix the function source or build configuration",
                retryable=isinstance(e, TransientBuildError),
            )
        except TimeoutError as e:
            log.error("build_timeout", error=str(e))
            return PackageFailure(
                resource_id=request.resource_id,
                message=f"Build timed out after {self.config.build_timeout_seconds}s",
                remediation="Increase packaging.build_timeout_seconds or reduce bundle size",
                retryable=True,
            )
        except Exception as e:
            log.error("build_error", error=str(e), error_type=type(e).__name__)
            return PackageFailure(
                resource_id=request.resource_id,
                message=f"Build failed with error: {type(e).__name__}",
                retryable=False,
            )

        with self._counter_lock:
            counters["cache_hits" if hit else "builds"] += 1
        log.debug("build_resolved", cache_hit=hit, size_bytes=package.size_bytes)
        return package

    def _to_artifact(
        self, request: BuildRequest, package: BuiltPackage
    ) -> BuildArtifact | PackageFailure:
        problems = validate_archive(package.archive, request.configuration.entry_point)
        if problems:
            return PackageFailure(
                resource_id=request.resource_id,
                message=f"Invalid package: {'; '.join(problems)}",
                remediation="Ensure the build step emits the entry point and function.json",
            )

        strategy = select_packaging_strategy(
            package.size_bytes,
            request.dependency_count,
            inline_threshold_bytes=self.config.inline_threshold_bytes,
            external_threshold_bytes=self.config.external_threshold_bytes,
        )

        inline_files: dict[str, str] = {}
        if strategy is PackagingStrategy.INLINE:
            # Inline templates carry the built code, not the request sources
            built = archive_sources(package.archive)
            if built is None:
                logger.info("inline_package_not_text", resource_id=request.resource_id)
                strategy = PackagingStrategy.ARCHIVE
            else:
                inline_files = built

        external_uri: str | None = None
        if strategy is PackagingStrategy.EXTERNAL:
            base = self.config.external_location
            if not base:
                return PackageFailure(
                    resource_id=request.resource_id,
                    message=(
                        f"Package of {package.size_bytes} bytes exceeds the upload threshold "
                        "and no external location is configured"
                    ),
                    remediation="Set packaging.external_location or reduce the package size",
                )
            external_uri = f"{base.rstrip('/')}/{short_hash(request.content_hash, 64)}.zip"

        return BuildArtifact(
            resource_id=request.resource_id,
            content_hash=request.content_hash,
            size_bytes=package.size_bytes,
            checksum=package.checksum,
            strategy=strategy,
            dependency_count=request.dependency_count,
            files=inline_files,
            external_uri=external_uri,
            archive=package.archive,
        )
