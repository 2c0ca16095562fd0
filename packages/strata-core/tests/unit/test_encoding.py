"""Unit tests for canonical encoding, hashing and keyed locks."""

from __future__ import annotations

import threading
import time

from strata_core.encoding import (
    HASH_PREFIX,
    canonical_json,
    content_hash,
    serialized_size,
    sha256_hex,
    short_hash,
)
from strata_core.locks import KeyedLocks


class TestCanonicalJson:
    """Tests for canonical_json."""

    def test_sorted_and_compact(self) -> None:
        """Keys are sorted and no whitespace is emitted."""
        assert canonical_json({"b": 1, "a": [1, 2]}) == b'{"a":[1,2],"b":1}'

    def test_key_order_does_not_matter(self) -> None:
        """Logically equal documents encode identically."""
        assert canonical_json({"x": 1, "y": {"q": 1, "p": 2}}) == canonical_json(
            {"y": {"p": 2, "q": 1}, "x": 1}
        )

    def test_non_ascii_is_utf8(self) -> None:
        """Non-ASCII text is kept as UTF-8, not escaped."""
        encoded = canonical_json({"name": "café"})
        assert encoded == '{"name":"café"}'.encode()
        assert serialized_size({"name": "café"}) == len(encoded)


class TestHashing:
    """Tests for content hashes."""

    def test_prefix(self) -> None:
        """Content hashes carry the algorithm prefix."""
        assert content_hash(b"abc").startswith(HASH_PREFIX)

    def test_parts_are_delimited(self) -> None:
        """Moving bytes between parts changes the hash."""
        assert content_hash(b"ab", b"c") != content_hash(b"a", b"bc")

    def test_deterministic(self) -> None:
        """Same input, same hash."""
        assert content_hash(b"x", b"y") == content_hash(b"x", b"y")

    def test_sha256_hex(self) -> None:
        """sha256_hex is the plain digest."""
        assert sha256_hex(b"") == (
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )

    def test_short_hash_strips_prefix(self) -> None:
        """short_hash drops the prefix before truncating."""
        value = content_hash(b"abc")
        assert short_hash(value) == value.removeprefix(HASH_PREFIX)[:12]
        assert len(short_hash(value, 8)) == 8


class TestKeyedLocks:
    """Tests for KeyedLocks."""

    def test_same_key_is_serialized(self) -> None:
        """Two holders of the same key never overlap."""
        locks = KeyedLocks()
        active = 0
        overlap = False
        guard = threading.Lock()

        def worker() -> None:
            nonlocal active, overlap
            with locks.hold("k"):
                with guard:
                    active += 1
                    overlap = overlap or active > 1
                time.sleep(0.01)
                with guard:
                    active -= 1

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert not overlap

    def test_entries_are_released(self) -> None:
        """Locks are dropped once nobody holds them."""
        locks = KeyedLocks()
        with locks.hold("a"), locks.hold("b"):
            assert len(locks) == 2
        assert len(locks) == 0
