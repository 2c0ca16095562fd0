"""Retention cleanup of stored runs.

Independent of synthesis: run it on a schedule. Objects are aged by their
upload time and moved hot -> cool -> archive, then deleted. The newest runs
are protected regardless of age.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from pydantic import BaseModel, ConfigDict, Field

from strata_store.config import RetentionPolicy
from strata_store.errors import ArtifactNotFoundError
from strata_store.registry import LocationRegistry
from strata_store.stores import ArtifactStore, BlobTier, StoredObject, utc_now

logger = structlog.get_logger(__name__)


class SweepReport(BaseModel):
    """What one sweep changed."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tiered: dict[str, BlobTier] = Field(default_factory=dict)
    deleted: list[str] = Field(default_factory=list)
    protected_runs: list[str] = Field(default_factory=list)

    @property
    def changed(self) -> int:
        return len(self.tiered) + len(self.deleted)


class RetentionSweeper:
    """Applies a RetentionPolicy to every object in a store.

    Args:
        store: Store to sweep.
        policy: Retention policy.
        registry: Registry whose entries for deleted objects are dropped, so
            later runs upload again instead of reusing a deleted location.
        clock: Time source when ``sweep`` is called without ``now``.

    Example:
        >>> sweeper = RetentionSweeper(store, RetentionPolicy(delete_after_days=30))
        >>> report = sweeper.sweep()
        >>> report.deleted
        ['memory://artifacts/20240101T000000Z-ab12cd34/templates/shop-root.json']
    """

    def __init__(
        self,
        store: ArtifactStore,
        policy: RetentionPolicy | None = None,
        *,
        registry: LocationRegistry | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.policy = policy or RetentionPolicy()
        self.registry = registry
        self._clock = clock
        self._log = logger.bind(component="retention_sweeper")

    def target_tier(self, age: timedelta) -> BlobTier | None:
        """Tier an object of ``age`` belongs in; None means delete."""
        days = age.total_seconds() / 86400
        policy = self.policy
        if policy.delete_after_days is not None and days >= policy.delete_after_days:
            return None
        if policy.archive_after_days is not None and days >= policy.archive_after_days:
            return BlobTier.ARCHIVE
        if policy.cool_after_days is not None and days >= policy.cool_after_days:
            return BlobTier.COOL
        return BlobTier.HOT

    def sweep(self, now: datetime | None = None) -> SweepReport:
        """Tier and delete objects according to the policy."""
        moment = now or self._clock()
        objects = self.store.list()

        newest: dict[str, datetime] = {}
        for obj in objects:
            if obj.run_id not in newest or obj.created_at > newest[obj.run_id]:
                newest[obj.run_id] = obj.created_at
        by_recency = sorted(newest, key=lambda run: (newest[run], run), reverse=True)
        protected = set(by_recency[: self.policy.keep_latest_runs])

        tiered: dict[str, BlobTier] = {}
        deleted: list[str] = []
        for obj in objects:
            if obj.run_id in protected:
                continue
            target = self.target_tier(moment - obj.created_at)
            try:
                if target is None:
                    self._delete(obj)
                    deleted.append(obj.location)
                elif target.rank > obj.tier.rank:
                    self.store.set_tier(obj.location, target)
                    tiered[obj.location] = target
            except ArtifactNotFoundError:
                # Removed concurrently
                self._log.debug("retention_object_vanished", location=obj.location)

        report = SweepReport(
            tiered=tiered,
            deleted=deleted,
            protected_runs=sorted(protected),
        )
        self._log.info(
            "retention_sweep_completed",
            objects=len(objects),
            tiered=len(tiered),
            deleted=len(deleted),
            protected_runs=len(protected),
        )
        return report

    def _delete(self, obj: StoredObject) -> None:
        self.store.delete(obj.location)
        if self.registry is not None:
            self.registry.forget_location(obj.location)
