"""Artifact manager.

Uploads the templates and packages of a run on a bounded worker pool.
Every upload is:
- skipped when the registry holds the same content hash with a usable URL
- retried with exponential backoff on transient failures
- verified against the local checksum after the write
- signed with a time-limited access URL

A failed item never aborts its siblings; failures are reported once every
upload has finished.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import structlog

from strata_core.encoding import short_hash
from strata_core.errors import SynthesisCancelledError
from strata_core.publishing import (
    UploadedArtifact,
    UploadFailure,
    UploadItem,
    UploadReport,
)
from strata_core.retry import create_retry_decorator, run_with_timeout
from strata_store.config import StoreConfig
from strata_store.errors import StoreError, TransientStoreError
from strata_store.registry import LocationRegistry, RegistryEntry
from strata_store.stores import ArtifactStore, StoredObject, utc_now

logger = structlog.get_logger(__name__)

RETRYABLE_STORE_ERRORS: tuple[type[Exception], ...] = (
    TransientStoreError,
    ConnectionError,
    TimeoutError,
)


class ArtifactManager:
    """Publishes run artifacts to a store.

    Implements the engine's ArtifactPublisher protocol.

    Args:
        store: Destination store.
        registry: Content-hash registry shared across runs; a private one is
            created if omitted.
        config: Upload configuration.
        clock: Time source for URL validity checks.

    Example:
        >>> manager = ArtifactManager(InMemoryArtifactStore())
        >>> report = manager.upload(items, run_id="20240101T000000Z-ab12cd34")
        >>> report.succeeded
        True
    """

    def __init__(
        self,
        store: ArtifactStore,
        *,
        registry: LocationRegistry | None = None,
        config: StoreConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.registry = registry or LocationRegistry()
        self.config = config or StoreConfig()
        self._clock = clock
        self._log = logger.bind(component="artifact_manager")

    def upload(
        self,
        items: Sequence[UploadItem],
        run_id: str,
        cancel: threading.Event | None = None,
    ) -> UploadReport:
        """Upload ``items`` under the ``run_id`` prefix.

        Returns:
            UploadReport with one result or failure per item.

        Raises:
            SynthesisCancelledError: If ``cancel`` was set during the upload.
        """
        if not items:
            return UploadReport()

        self._log.info(
            "upload_started",
            run_id=run_id,
            items=len(items),
            concurrency=self.config.upload_concurrency,
        )
        outcomes: dict[str, UploadedArtifact | UploadFailure] = {}
        with ThreadPoolExecutor(
            max_workers=self.config.upload_concurrency,
            thread_name_prefix="strata-upload",
        ) as pool:
            futures = {
                item.name: pool.submit(self._upload_one, item, run_id, cancel)
                for item in sorted(items, key=lambda i: i.name)
            }
            for name, future in futures.items():
                outcomes[name] = future.result()

        if cancel is not None and cancel.is_set():
            self._log.warning("upload_cancelled", run_id=run_id)
            raise SynthesisCancelledError("upload")

        uploaded = {
            name: outcome
            for name, outcome in outcomes.items()
            if isinstance(outcome, UploadedArtifact)
        }
        failures = [outcome for outcome in outcomes.values() if isinstance(outcome, UploadFailure)]
        self._log.info(
            "upload_completed",
            run_id=run_id,
            uploaded=len(uploaded),
            reused=sum(1 for artifact in uploaded.values() if artifact.reused),
            failures=len(failures),
        )
        return UploadReport(uploaded=uploaded, failures=failures)

    def _upload_one(
        self,
        item: UploadItem,
        run_id: str,
        cancel: threading.Event | None,
    ) -> UploadedArtifact | UploadFailure:
        log = self._log.bind(name=item.name, key=short_hash(item.content_hash))
        if cancel is not None and cancel.is_set():
            return UploadFailure(name=item.name, kind=item.kind, message="cancelled")

        attempts = 0

        @create_retry_decorator(
            self.config.retry,
            retry_exceptions=RETRYABLE_STORE_ERRORS,
            operation_name="upload",
        )
        def put() -> StoredObject:
            nonlocal attempts
            attempts += 1
            if cancel is not None and cancel.is_set():
                raise SynthesisCancelledError("upload")
            stored = run_with_timeout(
                lambda: self.store.put(
                    f"{run_id}/{item.key}",
                    item.data,
                    content_type=item.content_type,
                    metadata={"contentHash": item.content_hash, "runId": run_id},
                ),
                self.config.upload_timeout_seconds,
            )
            if stored.checksum != item.checksum:
                raise TransientStoreError(
                    "Checksum mismatch after upload",
                    details={"expected": item.checksum, "actual": stored.checksum},
                )
            return stored

        try:
            with self.registry.hold(item.content_hash):
                entry = self.registry.lookup(
                    item.content_hash,
                    self._clock(),
                    margin_seconds=self.config.reuse_margin_seconds,
                )
                if entry is not None and entry.checksum == item.checksum:
                    log.debug("upload_reused", location=entry.location)
                    return UploadedArtifact(
                        name=item.name,
                        kind=item.kind,
                        content_hash=item.content_hash,
                        location=entry.location,
                        access=entry.access,
                        reused=True,
                    )

                stored = put()
                access = self.store.signed_url(stored.location, self.config.access_ttl_seconds)
                self.registry.record(
                    RegistryEntry(
                        content_hash=item.content_hash,
                        location=stored.location,
                        checksum=stored.checksum,
                        access=access,
                    )
                )
        except SynthesisCancelledError:
            return UploadFailure(
                name=item.name, kind=item.kind, message="cancelled", attempts=max(attempts, 1)
            )
        except TimeoutError as e:
            log.error("upload_timeout", error=str(e), attempts=attempts)
            return UploadFailure(
                name=item.name,
                kind=item.kind,
                message=f"Upload timed out after {self.config.upload_timeout_seconds}s",
                remediation="Check store connectivity or raise upload_timeout_seconds",
                attempts=max(attempts, 1),
            )
        except StoreError as e:
            log.error("upload_failed", error=str(e), attempts=attempts)
            return UploadFailure(
                name=item.name,
                kind=item.kind,
                message=e.message,
                remediation="Check store availability and permissions, then re-run",
                attempts=max(attempts, 1),
            )
        except Exception as e:
            log.error("upload_error", error=str(e), error_type=type(e).__name__, attempts=attempts)
            return UploadFailure(
                name=item.name,
                kind=item.kind,
                message=f"Upload failed with error: {type(e).__name__}",
                attempts=max(attempts, 1),
            )

        log.debug("upload_stored", location=stored.location, attempts=attempts)
        return UploadedArtifact(
            name=item.name,
            kind=item.kind,
            content_hash=item.content_hash,
            location=stored.location,
            access=access,
        )
