"""Content-hash to location registry.

Makes uploads idempotent: an item whose content hash is already registered
with a still-valid access URL is not uploaded again. Callers hold the
per-hash lock across lookup, upload and record, so concurrent uploads of the
same content collapse into one.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from strata_core.locks import KeyedLocks
from strata_core.publishing import AccessDescriptor


class RegistryEntry(BaseModel):
    """Where a content hash was stored."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    content_hash: str
    location: str
    checksum: str
    access: AccessDescriptor


class LocationRegistry:
    """Thread-safe registry shared across runs.

    Example:
        >>> registry = LocationRegistry()
        >>> with registry.hold("sha256:abc"):
        ...     entry = registry.lookup("sha256:abc", now)
        ...     if entry is None:
        ...         registry.record(upload("sha256:abc"))
    """

    def __init__(self) -> None:
        self._locks = KeyedLocks()
        self._guard = threading.Lock()
        self._entries: dict[str, RegistryEntry] = {}

    @contextmanager
    def hold(self, content_hash: str) -> Iterator[None]:
        """Serialize work on ``content_hash``."""
        with self._locks.hold(content_hash):
            yield

    def lookup(
        self,
        content_hash: str,
        now: datetime,
        *,
        margin_seconds: float = 0,
    ) -> RegistryEntry | None:
        """Return the entry if its access URL outlives ``now`` by the margin."""
        with self._guard:
            entry = self._entries.get(content_hash)
        if entry is None or not entry.access.is_valid(now, margin_seconds=margin_seconds):
            return None
        return entry

    def record(self, entry: RegistryEntry) -> None:
        with self._guard:
            self._entries[entry.content_hash] = entry

    def forget_location(self, location: str) -> int:
        """Drop every entry pointing at ``location``; returns how many."""
        with self._guard:
            stale = [key for key, entry in self._entries.items() if entry.location == location]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def __contains__(self, content_hash: object) -> bool:
        with self._guard:
            return content_hash in self._entries
