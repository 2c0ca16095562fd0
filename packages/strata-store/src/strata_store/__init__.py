"""strata-store: Artifact storage for strata synthesis runs.

This package provides:
- ArtifactStore implementations (in-memory, local filesystem) with signed URLs
- ArtifactManager: idempotent, retrying, parallel uploads of run artifacts
- LocationRegistry: content-hash to location lookup shared across runs
- RetentionSweeper: age-based tiering and deletion of old runs

Example:
    >>> from strata_store import ArtifactManager, LocalArtifactStore
    >>> manager = ArtifactManager(LocalArtifactStore("/var/lib/strata", secret=key))
    >>> result = Synthesizer(config).synthesize(graph, publisher=manager)
"""

from __future__ import annotations

__version__ = "0.1.0"

from strata_store.config import RetentionPolicy, StoreConfig
from strata_store.errors import (
    ArtifactNotFoundError,
    SignatureError,
    StoreError,
    TransientStoreError,
)
from strata_store.manager import ArtifactManager
from strata_store.registry import LocationRegistry, RegistryEntry
from strata_store.retention import RetentionSweeper, SweepReport
from strata_store.stores import (
    ArtifactStore,
    BlobTier,
    InMemoryArtifactStore,
    LocalArtifactStore,
    StoredObject,
    UrlSigner,
)

__all__ = [
    "__version__",
    # Configuration
    "StoreConfig",
    "RetentionPolicy",
    # Stores
    "ArtifactStore",
    "InMemoryArtifactStore",
    "LocalArtifactStore",
    "StoredObject",
    "BlobTier",
    "UrlSigner",
    # Uploads
    "ArtifactManager",
    "LocationRegistry",
    "RegistryEntry",
    # Retention
    "RetentionSweeper",
    "SweepReport",
    # Exceptions
    "StoreError",
    "TransientStoreError",
    "ArtifactNotFoundError",
    "SignatureError",
]
