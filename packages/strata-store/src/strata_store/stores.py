"""Artifact stores.

A store keeps blobs under slash-separated keys (``<run_id>/templates/<unit>.json``,
``<run_id>/packages/<hash>.zip``) and hands out time-limited signed URLs for
reading them.

Implementations:
- InMemoryArtifactStore: process-local, for tests and dry runs
- LocalArtifactStore: filesystem directory with HMAC-signed ``file://`` URLs
"""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import parse_qs, unquote, urlsplit

import structlog
from pydantic import BaseModel, ConfigDict, Field

from strata_core.encoding import sha256_hex
from strata_core.locks import KeyedLocks
from strata_core.publishing import AccessDescriptor
from strata_store.errors import ArtifactNotFoundError, SignatureError, StoreError

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]

METADATA_SUFFIX = ".meta.json"


def utc_now() -> datetime:
    return datetime.now(UTC)


class BlobTier(str, Enum):
    """Storage access tier, cheapest last."""

    HOT = "hot"
    COOL = "cool"
    ARCHIVE = "archive"

    @property
    def rank(self) -> int:
        return list(BlobTier).index(self)


class StoredObject(BaseModel):
    """Metadata of one stored blob."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    location: str = Field(..., description="Stable store location")
    key: str = Field(..., description="Key within the store")
    size_bytes: int = Field(..., ge=0)
    checksum: str = Field(..., description="sha256 hex of the stored bytes")
    content_type: str
    metadata: dict[str, str] = Field(default_factory=dict)
    created_at: datetime
    tier: BlobTier = BlobTier.HOT

    @property
    def run_id(self) -> str:
        """First key segment, the run that uploaded the blob."""
        return self.key.split("/", 1)[0]


@runtime_checkable
class ArtifactStore(Protocol):
    """Blob store used by the artifact manager and the retention sweeper."""

    def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> StoredObject: ...

    def get(self, location: str) -> bytes: ...

    def head(self, location: str) -> StoredObject: ...

    def signed_url(self, location: str, ttl_seconds: int) -> AccessDescriptor: ...

    def list(self, prefix: str = "") -> list[StoredObject]: ...

    def delete(self, location: str) -> None: ...

    def set_tier(self, location: str, tier: BlobTier) -> StoredObject: ...


class UrlSigner:
    """HMAC-SHA256 signing of ``location`` plus expiry.

    URLs have the form ``<location>?se=<epoch seconds>&sig=<hex>``.

    Example:
        >>> signer = UrlSigner(b"secret")
        >>> access = signer.sign("memory://artifacts/run/a.json", 3600)
        >>> signer.verify(access.url)
        'memory://artifacts/run/a.json'
    """

    def __init__(self, secret: bytes, *, clock: Clock = utc_now) -> None:
        if not secret:
            raise ValueError("Signing secret must not be empty")
        self._secret = secret
        self._clock = clock

    def sign(self, location: str, ttl_seconds: int) -> AccessDescriptor:
        expires_at = (self._clock() + timedelta(seconds=ttl_seconds)).replace(microsecond=0)
        expiry = int(expires_at.timestamp())
        url = f"{location}?se={expiry}&sig={self._signature(location, expiry)}"
        return AccessDescriptor(url=url, expires_at=expires_at)

    def verify(self, url: str) -> str:
        """Return the location a URL grants access to.

        Raises:
            SignatureError: If the URL is malformed, tampered with or expired.
        """
        parts = urlsplit(url)
        query = parse_qs(parts.query)
        location = url.split("?", 1)[0]
        try:
            expiry = int(query["se"][0])
            signature = query["sig"][0]
        except (KeyError, IndexError, ValueError) as e:
            raise SignatureError("Malformed access URL", location=location) from e

        if not hmac.compare_digest(signature, self._signature(location, expiry)):
            raise SignatureError(location=location)
        if self._clock().timestamp() >= expiry:
            raise SignatureError("Access URL expired", location=location)
        return location

    def _signature(self, location: str, expiry: int) -> str:
        message = f"{location}\n{expiry}".encode()
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()


class InMemoryArtifactStore:
    """Thread-safe dict-backed store.

    Args:
        container: Name used in locations (``memory://<container>/<key>``).
        secret: URL signing key; random if omitted.
        clock: Time source for timestamps and URL expiry.
    """

    def __init__(
        self,
        container: str = "artifacts",
        *,
        secret: bytes | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.container = container
        self.signer = UrlSigner(secret or secrets.token_bytes(32), clock=clock)
        self._clock = clock
        self._lock = threading.Lock()
        self._blobs: dict[str, bytes] = {}
        self._objects: dict[str, StoredObject] = {}
        self.put_count = 0

    def location_for(self, key: str) -> str:
        return f"memory://{self.container}/{key}"

    def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> StoredObject:
        location = self.location_for(key)
        stored = StoredObject(
            location=location,
            key=key,
            size_bytes=len(data),
            checksum=sha256_hex(data),
            content_type=content_type,
            metadata=dict(metadata or {}),
            created_at=self._clock(),
        )
        with self._lock:
            self._blobs[location] = bytes(data)
            self._objects[location] = stored
            self.put_count += 1
        return stored

    def get(self, location: str) -> bytes:
        with self._lock:
            if location not in self._blobs:
                raise ArtifactNotFoundError(location)
            return self._blobs[location]

    def head(self, location: str) -> StoredObject:
        with self._lock:
            if location not in self._objects:
                raise ArtifactNotFoundError(location)
            return self._objects[location]

    def signed_url(self, location: str, ttl_seconds: int) -> AccessDescriptor:
        self.head(location)
        return self.signer.sign(location, ttl_seconds)

    def list(self, prefix: str = "") -> list[StoredObject]:
        with self._lock:
            objects = [obj for obj in self._objects.values() if obj.key.startswith(prefix)]
        return sorted(objects, key=lambda obj: obj.key)

    def delete(self, location: str) -> None:
        with self._lock:
            if location not in self._objects:
                raise ArtifactNotFoundError(location)
            del self._objects[location]
            del self._blobs[location]

    def set_tier(self, location: str, tier: BlobTier) -> StoredObject:
        with self._lock:
            if location not in self._objects:
                raise ArtifactNotFoundError(location)
            updated = self._objects[location].model_copy(update={"tier": tier})
            self._objects[location] = updated
            return updated


class LocalArtifactStore:
    """Filesystem store rooted at a directory.

    Each blob is written next to a ``.meta.json`` sidecar holding its
    metadata. Locations are ``file://`` URIs of the blob path.
    Writes to one key are serialized; different keys never wait on each
    other.

    Args:
        root: Base directory, created if missing.
        secret: URL signing key; random if omitted.
        clock: Time source for timestamps and URL expiry.

    Example:
        >>> store = LocalArtifactStore(Path("/var/lib/strata"), secret=b"k")
        >>> stored = store.put("run-1/templates/a.json", b"{}", content_type="application/json")
        >>> store.signed_url(stored.location, 3600).url.startswith("file://")
        True
    """

    def __init__(
        self,
        root: Path | str,
        *,
        secret: bytes | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.signer = UrlSigner(secret or secrets.token_bytes(32), clock=clock)
        self._clock = clock
        self._locks = KeyedLocks()
        self._log = logger.bind(component="local_artifact_store", root=str(self.root))

    def _path_for_key(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root) or path == self.root:
            raise StoreError("Key escapes the store root", details={"key": key})
        return path

    def _path_for_location(self, location: str) -> Path:
        parts = urlsplit(location)
        if parts.scheme != "file":
            raise ArtifactNotFoundError(location)
        path = Path(unquote(parts.path))
        if not path.is_relative_to(self.root) or not path.is_file():
            raise ArtifactNotFoundError(location)
        return path

    def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> StoredObject:
        path = self._path_for_key(key)
        stored = StoredObject(
            location=path.as_uri(),
            key=key,
            size_bytes=len(data),
            checksum=sha256_hex(data),
            content_type=content_type,
            metadata=dict(metadata or {}),
            created_at=self._clock(),
        )
        with self._locks.hold(str(path)):
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(f".{path.name}.tmp")
            tmp_path.write_bytes(data)
            tmp_path.replace(path)
            self._write_meta(path, stored)
        self._log.debug("blob_written", key=key, size_bytes=len(data))
        return stored

    def get(self, location: str) -> bytes:
        return self._path_for_location(location).read_bytes()

    def head(self, location: str) -> StoredObject:
        path = self._path_for_location(location)
        return self._read_meta(path)

    def signed_url(self, location: str, ttl_seconds: int) -> AccessDescriptor:
        self._path_for_location(location)
        return self.signer.sign(location, ttl_seconds)

    def open_signed(self, url: str) -> bytes:
        """Read a blob through a signed URL.

        Raises:
            SignatureError: If the URL does not verify.
        """
        return self.get(self.signer.verify(url))

    def list(self, prefix: str = "") -> list[StoredObject]:
        objects: list[StoredObject] = []
        for meta_path in sorted(self.root.rglob(f"*{METADATA_SUFFIX}")):
            blob_path = meta_path.with_name(meta_path.name.removesuffix(METADATA_SUFFIX))
            if not blob_path.is_file():
                continue
            stored = self._read_meta(blob_path)
            if stored.key.startswith(prefix):
                objects.append(stored)
        return sorted(objects, key=lambda obj: obj.key)

    def delete(self, location: str) -> None:
        path = self._path_for_location(location)
        with self._locks.hold(str(path)):
            path.unlink()
            self._meta_path(path).unlink(missing_ok=True)

    def set_tier(self, location: str, tier: BlobTier) -> StoredObject:
        path = self._path_for_location(location)
        with self._locks.hold(str(path)):
            updated = self._read_meta(path).model_copy(update={"tier": tier})
            self._write_meta(path, updated)
        return updated

    @staticmethod
    def _meta_path(path: Path) -> Path:
        return path.with_name(f"{path.name}{METADATA_SUFFIX}")

    def _write_meta(self, path: Path, stored: StoredObject) -> None:
        self._meta_path(path).write_text(stored.model_dump_json(), encoding="utf-8")

    def _read_meta(self, path: Path) -> StoredObject:
        meta_path = self._meta_path(path)
        try:
            return StoredObject.model_validate(json.loads(meta_path.read_text(encoding="utf-8")))
        except FileNotFoundError as e:
            raise ArtifactNotFoundError(path.as_uri()) from e
