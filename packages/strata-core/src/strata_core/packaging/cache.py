"""Build cache keyed by content hash.

The cache is an explicit collaborator passed to the packager. Access is
serialized per key, so concurrent requests for the same content build once
while independent keys never contend.
"""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from fnmatch import fnmatchcase
from pathlib import Path

import structlog

from strata_core.encoding import sha256_hex, short_hash
from strata_core.locks import KeyedLocks
from strata_core.packaging.models import BuiltPackage

logger = structlog.get_logger(__name__)

DEFAULT_TTL_SECONDS = 3600.0


@dataclass(frozen=True)
class CacheStats:
    """Snapshot of cache counters."""

    hits: int
    misses: int
    builds: int
    evictions: int
    entries: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


@dataclass(frozen=True)
class _Entry:
    package: BuiltPackage
    stored_at: float


class BuildCache:
    """Content-addressed build cache with age-based expiry.

    Args:
        ttl_seconds: Entries older than this are stale and rebuilt.
        cache_dir: Optional directory persisting entries across runs.
        clock: Time source in epoch seconds.

    Example:
        >>> cache = BuildCache(ttl_seconds=3600)
        >>> package, hit = cache.get_or_build(request.content_hash, lambda: build(request))
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        cache_dir: Path | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.cache_dir = cache_dir
        self._clock = clock
        self._locks = KeyedLocks()
        self._entries: dict[str, _Entry] = {}
        self._entries_guard = threading.Lock()
        self._counters = {"hits": 0, "misses": 0, "builds": 0, "evictions": 0}
        self._log = logger.bind(component="build_cache")
        if cache_dir is not None:
            cache_dir.mkdir(parents=True, exist_ok=True)

    def get(self, key: str) -> BuiltPackage | None:
        """Return a fresh entry for ``key`` or None."""
        with self._locks.hold(key):
            return self._lookup(key)

    def put(self, key: str, package: BuiltPackage) -> None:
        """Store ``package`` under ``key``."""
        with self._locks.hold(key):
            self._store(key, package)

    def get_or_build(
        self,
        key: str,
        build: Callable[[], bytes],
        *,
        force: bool = False,
    ) -> tuple[BuiltPackage, bool]:
        """Return the cached package for ``key``, building it on a miss.

        The per-key lock is held across the build, so a concurrent caller
        for the same key waits and then hits the fresh entry.

        Args:
            key: Content hash of the build request.
            build: Callable producing archive bytes.
            force: Skip the cache read and rebuild.

        Returns:
            Tuple of (package, cache_hit).
        """
        with self._locks.hold(key):
            if not force:
                cached = self._lookup(key)
                if cached is not None:
                    return cached, True

            archive = build()
            package = BuiltPackage(
                content_hash=key,
                archive=archive,
                checksum=sha256_hex(archive),
            )
            self._bump("builds")
            self._store(key, package)
            return package, False

    def invalidate(self, pattern: str | None = None) -> int:
        """Drop entries whose key matches the glob ``pattern`` (all if None).

        Returns:
            Number of entries removed.
        """
        with self._entries_guard:
            keys = [k for k in self._entries if pattern is None or fnmatchcase(k, pattern)]
            for key in keys:
                del self._entries[key]
        if self.cache_dir is not None:
            for meta in self.cache_dir.glob("*.json"):
                key = json.loads(meta.read_text())["content_hash"]
                if pattern is None or fnmatchcase(key, pattern):
                    if key not in keys:
                        keys.append(key)
                    self._remove_file(key)
        self._log.info("build_cache_invalidated", pattern=pattern, removed=len(keys))
        return len(keys)

    def stats(self) -> CacheStats:
        """Return current counters."""
        with self._entries_guard:
            return CacheStats(entries=len(self._entries), **self._counters)

    def _lookup(self, key: str) -> BuiltPackage | None:
        with self._entries_guard:
            entry = self._entries.get(key)
        if entry is None:
            entry = self._load_file(key)

        if entry is None:
            self._bump("misses")
            return None

        age = self._clock() - entry.stored_at
        if age > self.ttl_seconds:
            self._bump("evictions")
            self._bump("misses")
            with self._entries_guard:
                self._entries.pop(key, None)
            self._remove_file(key)
            self._log.debug("build_cache_stale", key=key, age_seconds=round(age, 1))
            return None

        self._bump("hits")
        return entry.package

    def _store(self, key: str, package: BuiltPackage) -> None:
        entry = _Entry(package=package, stored_at=self._clock())
        with self._entries_guard:
            self._entries[key] = entry
        if self.cache_dir is not None:
            stem = self.cache_dir / short_hash(key, 64)
            stem.with_suffix(".zip").write_bytes(package.archive)
            stem.with_suffix(".json").write_text(
                json.dumps(
                    {
                        "content_hash": key,
                        "checksum": package.checksum,
                        "built_at": package.built_at.isoformat(),
                        "stored_at": entry.stored_at,
                    }
                )
            )

    def _load_file(self, key: str) -> _Entry | None:
        if self.cache_dir is None:
            return None
        stem = self.cache_dir / short_hash(key, 64)
        meta_path, data_path = stem.with_suffix(".json"), stem.with_suffix(".zip")
        if not (meta_path.exists() and data_path.exists()):
            return None
        meta = json.loads(meta_path.read_text())
        archive = data_path.read_bytes()
        if sha256_hex(archive) != meta["checksum"]:
            self._log.warning("build_cache_corrupt", key=key)
            self._remove_file(key)
            return None
        entry = _Entry(
            package=BuiltPackage(
                content_hash=key,
                archive=archive,
                checksum=meta["checksum"],
                built_at=datetime.fromisoformat(meta["built_at"]).astimezone(UTC),
            ),
            stored_at=float(meta["stored_at"]),
        )
        with self._entries_guard:
            self._entries[key] = entry
        return entry

    def _remove_file(self, key: str) -> None:
        if self.cache_dir is None:
            return
        stem = self.cache_dir / short_hash(key, 64)
        stem.with_suffix(".zip").unlink(missing_ok=True)
        stem.with_suffix(".json").unlink(missing_ok=True)

    def _bump(self, counter: str) -> None:
        with self._entries_guard:
            self._counters[counter] += 1
