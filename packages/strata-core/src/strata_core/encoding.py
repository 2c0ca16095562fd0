"""Canonical JSON encoding and content hashing.

Every size measurement and content hash in strata goes through these
helpers so that identical inputs always yield identical bytes.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

HASH_PREFIX = "sha256:"


def canonical_json(value: Any) -> bytes:
    """Encode ``value`` as canonical UTF-8 JSON (sorted keys, no whitespace)."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def serialized_size(value: Any) -> int:
    """Exact byte length of the canonical encoding of ``value``."""
    return len(canonical_json(value))


def content_hash(*parts: bytes) -> str:
    """Return a prefixed sha256 digest over length-delimited ``parts``."""
    digest = hashlib.sha256()
    for part in parts:
        digest.update(len(part).to_bytes(8, "big"))
        digest.update(part)
    return f"{HASH_PREFIX}{digest.hexdigest()}"


def sha256_hex(data: bytes) -> str:
    """Plain sha256 hex digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


def short_hash(value: str, length: int = 12) -> str:
    """Shorten a (possibly prefixed) hash for use in names and keys."""
    return value.removeprefix(HASH_PREFIX)[:length]
