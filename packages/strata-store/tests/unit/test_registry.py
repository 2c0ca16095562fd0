"""Unit tests for the content-hash location registry."""

from __future__ import annotations

import threading
import time
from datetime import UTC, datetime, timedelta

from strata_core.publishing import AccessDescriptor
from strata_store.registry import LocationRegistry, RegistryEntry

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
HASH = "sha256:" + "a" * 64
LOCATION = "memory://artifacts/run-1/packages/aaaaaaaaaaaa.zip"


def _entry(
    content_hash: str = HASH, location: str = LOCATION, ttl: timedelta = timedelta(hours=1)
) -> RegistryEntry:
    return RegistryEntry(
        content_hash=content_hash,
        location=location,
        checksum="b" * 64,
        access=AccessDescriptor(url=f"{location}?se=1&sig=x", expires_at=NOW + ttl),
    )


class TestLocationRegistry:
    """Tests for LocationRegistry."""

    def test_record_and_lookup(self) -> None:
        """Recorded entries are found while their URL is valid."""
        registry = LocationRegistry()
        assert registry.lookup(HASH, NOW) is None

        registry.record(_entry())

        assert registry.lookup(HASH, NOW) == _entry()
        assert HASH in registry
        assert len(registry) == 1

    def test_expired_entries_ignored(self) -> None:
        """Entries past expiry, or inside the margin, are not returned."""
        registry = LocationRegistry()
        registry.record(_entry(ttl=timedelta(minutes=30)))

        assert registry.lookup(HASH, NOW + timedelta(minutes=31)) is None
        assert registry.lookup(HASH, NOW, margin_seconds=3600) is None
        assert registry.lookup(HASH, NOW, margin_seconds=60) is not None

    def test_forget_location(self) -> None:
        """Every hash pointing at a location is dropped."""
        registry = LocationRegistry()
        registry.record(_entry())
        registry.record(_entry(content_hash="sha256:" + "c" * 64))
        registry.record(_entry(content_hash="sha256:" + "d" * 64, location="memory://x"))

        assert registry.forget_location(LOCATION) == 2
        assert len(registry) == 1

    def test_hold_serializes_same_hash(self) -> None:
        """Holders of one hash never overlap."""
        registry = LocationRegistry()
        active = 0
        peak = 0
        guard = threading.Lock()

        def work() -> None:
            nonlocal active, peak
            with registry.hold(HASH):
                with guard:
                    active += 1
                    peak = max(peak, active)
                time.sleep(0.01)
                with guard:
                    active -= 1

        threads = [threading.Thread(target=work) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert peak == 1
