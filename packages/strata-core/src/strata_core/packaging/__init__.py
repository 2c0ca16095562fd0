"""Function/code packaging for resources carrying inline code."""

from __future__ import annotations

from strata_core.packaging.builders import (
    ArchiveBuilder,
    CodeBuilder,
    CommandBuilder,
    validate_archive,
    write_archive,
)
from strata_core.packaging.cache import BuildCache, CacheStats
from strata_core.packaging.models import (
    BuildArtifact,
    BuildConfiguration,
    BuildRequest,
    BuiltPackage,
    PackageFailure,
    PackagingResult,
    PackagingStrategy,
)
from strata_core.packaging.packager import FunctionPackager
from strata_core.packaging.strategy import select_packaging_strategy

__all__ = [
    "ArchiveBuilder",
    "BuildArtifact",
    "BuildCache",
    "BuildConfiguration",
    "BuildRequest",
    "BuiltPackage",
    "CacheStats",
    "CodeBuilder",
    "CommandBuilder",
    "FunctionPackager",
    "PackageFailure",
    "PackagingResult",
    "PackagingStrategy",
    "select_packaging_strategy",
    "validate_archive",
    "write_archive",
]
