"""strata-core: IaC synthesis and linked-template splitting.

This package provides:
- ResourceGraph: Declarative input model of resources and references
- DependencyGraphBuilder / ResourceCategorizer: Graph analysis
- FunctionPackager: Builds and caches function code packages
- TemplateSplitter: Size-bounded template units plus a root template
- ValidationPipeline: Five-layer validation of the split output
- Synthesizer: End-to-end run producing a DeploymentManifest
- JSON Schema export of the manifest
"""

from __future__ import annotations

__version__ = "0.1.0"

# Configuration
from strata_core.config import (
    CategorizerConfig,
    EngineConfig,
    PackagingConfig,
    RetryConfig,
    SplitterConfig,
    ValidationConfig,
    ValidationLevel,
    load_engine_config,
)

# Engine
from strata_core.engine import (
    FailureItem,
    FailureReport,
    Synthesizer,
    SynthesisResult,
)

# Error types
from strata_core.errors import (
    BuildError,
    ConfigurationError,
    DependencyCycleError,
    MissingDependencyError,
    ResourceTooLargeError,
    StrataError,
    SynthesisCancelledError,
    SynthesisError,
    SynthesisFailedError,
    TransientBuildError,
    ValidationFailedError,
)

# JSON Schema export functions
from strata_core.export import (
    check_manifest_document,
    export_config_schema,
    export_manifest_schema,
)

# Graph
from strata_core.graph import (
    DependencyGraph,
    DependencyGraphBuilder,
    InlineCode,
    ResourceGraph,
    ResourceNode,
    Tier,
)
from strata_core.graph.categorizer import AffinityTable, ResourceCategorizer, TierTable

# Manifest
from strata_core.manifest import ArtifactDescriptor, DeploymentManifest, TemplateDescriptor

# Packaging
from strata_core.packaging import BuildCache, FunctionPackager, PackagingStrategy

# Publishing contract
from strata_core.publishing import (
    AccessDescriptor,
    ArtifactPublisher,
    UploadedArtifact,
    UploadFailure,
    UploadItem,
    UploadKind,
    UploadReport,
)

# Splitting and ordering
from strata_core.synthesis import DeploymentOrderResolver, SplitResult, TemplateSplitter

# Validation
from strata_core.validation import SchemaRegistry, ValidationPipeline, ValidationReport

__all__ = [
    "__version__",
    # Configuration
    "EngineConfig",
    "SplitterConfig",
    "CategorizerConfig",
    "PackagingConfig",
    "RetryConfig",
    "ValidationConfig",
    "ValidationLevel",
    "load_engine_config",
    # Engine
    "Synthesizer",
    "SynthesisResult",
    "FailureReport",
    "FailureItem",
    # Errors
    "StrataError",
    "ConfigurationError",
    "SynthesisError",
    "MissingDependencyError",
    "DependencyCycleError",
    "ResourceTooLargeError",
    "ValidationFailedError",
    "SynthesisCancelledError",
    "SynthesisFailedError",
    "BuildError",
    "TransientBuildError",
    # JSON Schema exports
    "check_manifest_document",
    "export_config_schema",
    "export_manifest_schema",
    # Graph
    "ResourceGraph",
    "ResourceNode",
    "InlineCode",
    "Tier",
    "DependencyGraph",
    "DependencyGraphBuilder",
    "ResourceCategorizer",
    "TierTable",
    "AffinityTable",
    # Manifest
    "DeploymentManifest",
    "TemplateDescriptor",
    "ArtifactDescriptor",
    # Packaging
    "FunctionPackager",
    "BuildCache",
    "PackagingStrategy",
    # Publishing
    "ArtifactPublisher",
    "UploadItem",
    "UploadKind",
    "UploadReport",
    "UploadedArtifact",
    "UploadFailure",
    "AccessDescriptor",
    # Splitting
    "TemplateSplitter",
    "SplitResult",
    "DeploymentOrderResolver",
    # Validation
    "ValidationPipeline",
    "ValidationReport",
    "SchemaRegistry",
]
