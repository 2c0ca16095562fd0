"""Upload contract between the engine and an artifact store.

The engine hands templates and package archives to an ``ArtifactPublisher``
and records the returned locations in the deployment manifest. The concrete
publisher (strata-store's ArtifactManager) retries, deduplicates by content
hash and signs access URLs; this module only defines the shapes exchanged.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from datetime import datetime
from enum import Enum
from functools import cached_property
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from strata_core.encoding import sha256_hex

TEMPLATE_CONTENT_TYPE = "application/json"
PACKAGE_CONTENT_TYPE = "application/zip"


class UploadKind(str, Enum):
    """What an uploaded blob holds."""

    TEMPLATE = "template"
    PACKAGE = "package"

    @property
    def folder(self) -> str:
        return f"{self.value}s"


class UploadItem(BaseModel):
    """One blob to upload.

    Attributes:
        name: File name within its folder (``<unit>.json`` or ``<hash>.zip``).
        kind: Template or package.
        content_hash: Identity used for idempotent uploads.
        data: Blob contents (not serialized).
        content_type: MIME type stored with the blob.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    kind: UploadKind
    content_hash: str = Field(..., min_length=1)
    data: bytes = Field(default=b"", repr=False, exclude=True)
    content_type: str = TEMPLATE_CONTENT_TYPE

    @property
    def key(self) -> str:
        """Store key relative to the run prefix."""
        return f"{self.kind.folder}/{self.name}"

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @cached_property
    def checksum(self) -> str:
        return sha256_hex(self.data)


class AccessDescriptor(BaseModel):
    """Time-limited read access to a stored blob."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str
    expires_at: datetime

    def is_valid(self, now: datetime, *, margin_seconds: float = 0) -> bool:
        """Whether the URL is still usable ``margin_seconds`` after ``now``."""
        return (self.expires_at - now).total_seconds() > margin_seconds


class UploadedArtifact(BaseModel):
    """Where an item ended up."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    kind: UploadKind
    content_hash: str
    location: str = Field(..., description="Store location, stable across runs")
    access: AccessDescriptor
    reused: bool = Field(default=False, description="Served from an earlier upload")


class UploadFailure(BaseModel):
    """An item that could not be uploaded after all attempts."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    kind: UploadKind
    message: str
    remediation: str | None = None
    attempts: int = Field(default=1, ge=1)


class UploadReport(BaseModel):
    """Outcome of one publish call.

    Attributes:
        uploaded: Result per item name.
        failures: Failed items, sorted by name.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    uploaded: dict[str, UploadedArtifact] = Field(default_factory=dict)
    failures: list[UploadFailure] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failures


@runtime_checkable
class ArtifactPublisher(Protocol):
    """Uploads blobs and returns their locations.

    Implementations must attempt every item and report failures in the
    returned report instead of raising for them. Cancellation is signalled
    through ``cancel``.
    """

    def upload(
        self,
        items: Sequence[UploadItem],
        run_id: str,
        cancel: threading.Event | None = None,
    ) -> UploadReport: ...
