"""Pydantic configuration models for strata-core.

This module provides:
- RetryConfig: Retry policy with exponential backoff (shared with strata-store)
- SplitterConfig: Size and count budgets for template units
- CategorizerConfig: Fallback tier for unknown resource types
- PackagingConfig: Build concurrency, cache TTL and strategy thresholds
- ValidationConfig: Per-layer validation levels
- EngineConfig: Top-level engine configuration, loadable from YAML
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, computed_field, field_validator
from pydantic import ValidationError as PydanticValidationError

from strata_core.errors import ConfigurationError
from strata_core.graph.models import Tier

logger = structlog.get_logger(__name__)

MIB = 1024 * 1024
KIB = 1024

# Environment variable pointing at the engine configuration file
CONFIG_ENV_VAR = "STRATA_CONFIG"

# Standard configuration file name
CONFIG_FILE_NAME = "strata.yaml"

# Standard locations to search for strata.yaml
CONFIG_SEARCH_PATHS = (
    Path("."),
    Path(".strata"),
    Path.home() / ".strata",
)


class RetryConfig(BaseModel):
    """Retry policy configuration for builds and uploads.

    Implements exponential backoff with jitter for transient failures.

    Attributes:
        max_attempts: Maximum attempts including the first (1-10, default 3).
        initial_wait_seconds: Initial backoff wait.
        max_wait_seconds: Maximum backoff cap.
        jitter_seconds: Random jitter range.

    Example:
        >>> config = RetryConfig(max_attempts=5, initial_wait_seconds=0.5)
        >>> config.max_attempts
        5
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum number of attempts",
    )
    initial_wait_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=30.0,
        description="Initial backoff wait time in seconds",
    )
    max_wait_seconds: float = Field(
        default=30.0,
        ge=0.0,
        le=300.0,
        description="Maximum backoff wait time in seconds",
    )
    jitter_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=10.0,
        description="Random jitter range in seconds",
    )

    @field_validator("max_wait_seconds")
    @classmethod
    def max_wait_must_exceed_initial(cls, v: float, info: ValidationInfo) -> float:
        """Validate that max_wait_seconds >= initial_wait_seconds."""
        initial = info.data.get("initial_wait_seconds", 1.0)
        if v < initial:
            msg = f"max_wait_seconds ({v}) must be >= initial_wait_seconds ({initial})"
            raise ValueError(msg)
        return v


class SplitterConfig(BaseModel):
    """Template unit budgets.

    The hard per-unit limit is the provider ceiling minus a safety buffer,
    3.5 MiB by default under the 4 MiB ARM template cap.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    provider_limit_bytes: int = Field(
        default=4 * MIB,
        gt=0,
        description="Provider ceiling for a single template file",
    )
    safety_buffer_bytes: int = Field(
        default=MIB // 2,
        ge=0,
        description="Headroom kept below the provider ceiling",
    )
    max_resources_per_unit: int = Field(
        default=200,
        ge=1,
        le=800,
        description="Maximum resources in one template unit",
    )
    stack_name: str | None = Field(
        default=None,
        description="Prefix for unit names, defaults to the graph's stack name",
    )

    @field_validator("safety_buffer_bytes")
    @classmethod
    def buffer_below_limit(cls, v: int, info: ValidationInfo) -> int:
        """Validate that the buffer leaves room for content."""
        limit = info.data.get("provider_limit_bytes", 4 * MIB)
        if v >= limit:
            msg = f"safety_buffer_bytes ({v}) must be < provider_limit_bytes ({limit})"
            raise ValueError(msg)
        return v

    @computed_field  # type: ignore[prop-decorator]
    @property
    def max_unit_bytes(self) -> int:
        """Hard serialized-size limit for one unit."""
        return self.provider_limit_bytes - self.safety_buffer_bytes


class CategorizerConfig(BaseModel):
    """Resource categorizer settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    fallback_tier: Tier = Field(
        default=Tier.APPLICATION,
        description="Tier assigned to unrecognized resource types",
    )


class PackagingConfig(BaseModel):
    """Function packager settings.

    Attributes:
        concurrency: Maximum parallel builds (default: available CPUs).
        cache_ttl_seconds: Age after which a cached artifact is stale.
        cache_dir: Optional directory for a persistent build cache.
        inline_threshold_bytes: Artifacts strictly below this size without
            dependencies are embedded in the template.
        external_threshold_bytes: Artifacts strictly above this size are
            deferred to ``external_location``.
        external_location: Caller-provided base URI for external artifacts.
        build_timeout_seconds: Per-build timeout.
        force_rebuild: Ignore cached artifacts and rebuild everything.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    concurrency: int = Field(
        default_factory=lambda: os.cpu_count() or 1,
        ge=1,
        description="Maximum number of parallel builds",
    )
    cache_ttl_seconds: float = Field(
        default=3600.0,
        ge=0.0,
        description="Build cache time-to-live in seconds",
    )
    cache_dir: Path | None = Field(
        default=None,
        description="Directory for a persistent build cache",
    )
    inline_threshold_bytes: int = Field(
        default=4 * KIB,
        ge=0,
        description="Size below which code is embedded inline",
    )
    external_threshold_bytes: int = Field(
        default=50 * MIB,
        gt=0,
        description="Size above which code is referenced externally",
    )
    external_location: str | None = Field(
        default=None,
        description="Base URI for externally hosted artifacts",
    )
    build_timeout_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Timeout for a single build in seconds",
    )
    force_rebuild: bool = Field(
        default=False,
        description="Bypass cached artifacts",
    )
    retry: RetryConfig = Field(
        default_factory=RetryConfig,
        description="Retry policy for transient build failures",
    )

    @field_validator("external_threshold_bytes")
    @classmethod
    def external_above_inline(cls, v: int, info: ValidationInfo) -> int:
        """Validate that the external threshold exceeds the inline threshold."""
        inline = info.data.get("inline_threshold_bytes", 4 * KIB)
        if v <= inline:
            msg = f"external_threshold_bytes ({v}) must be > inline_threshold_bytes ({inline})"
            raise ValueError(msg)
        return v


class ValidationLevel(str, Enum):
    """How strictly a validation layer gates the run.

    Attributes:
        STRICT: Warnings fail the layer.
        NORMAL: Errors fail the layer.
        LENIENT: Only critical issues fail the layer.
        OFF: The layer is skipped (discouraged).
    """

    STRICT = "strict"
    NORMAL = "normal"
    LENIENT = "lenient"
    OFF = "off"


class ValidationConfig(BaseModel):
    """Per-layer validation levels."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    resources: ValidationLevel = Field(default=ValidationLevel.NORMAL)
    transformation: ValidationLevel = Field(default=ValidationLevel.NORMAL)
    structure: ValidationLevel = Field(default=ValidationLevel.NORMAL)
    deployment: ValidationLevel = Field(default=ValidationLevel.NORMAL)
    schema_: ValidationLevel = Field(default=ValidationLevel.NORMAL, alias="schema")

    def level_for(self, layer: str) -> ValidationLevel:
        """Return the configured level for a layer name."""
        if layer == "schema":
            return self.schema_
        level: ValidationLevel = getattr(self, layer)
        return level

    @classmethod
    def uniform(cls, level: ValidationLevel) -> ValidationConfig:
        """Create a config applying the same level to every layer."""
        return cls(
            resources=level,
            transformation=level,
            structure=level,
            deployment=level,
            schema=level,
        )


class EngineConfig(BaseModel):
    """Top-level synthesis engine configuration.

    Example:
        >>> config = EngineConfig(output_dir=Path("out"))
        >>> config.splitter.max_unit_bytes
        3670016
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    output_dir: Path = Field(
        default=Path("out"),
        description="Directory receiving manifest.json",
    )
    splitter: SplitterConfig = Field(default_factory=SplitterConfig)
    categorizer: CategorizerConfig = Field(default_factory=CategorizerConfig)
    packaging: PackagingConfig = Field(default_factory=PackagingConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)

    @classmethod
    def from_yaml(cls, path: Path | str) -> EngineConfig:
        """Load engine configuration from a YAML file.

        Args:
            path: Path to strata.yaml.

        Returns:
            Validated EngineConfig instance.

        Raises:
            ConfigurationError: If the file is missing, unparseable or invalid.
        """
        file_path = Path(path)
        if not file_path.exists():
            raise ConfigurationError(
                "Configuration file not found",
                file_path=str(file_path),
            )

        try:
            data: Any = yaml.safe_load(file_path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                "Configuration file is not valid YAML",
                file_path=str(file_path),
                internal_details=str(e),
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                "Configuration root must be a mapping",
                file_path=str(file_path),
            )

        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field_path = ".".join(str(part) for part in first["loc"])
            raise ConfigurationError(
                f"Invalid configuration: {first['msg']}",
                file_path=str(file_path),
                field_path=field_path,
                internal_details=str(e),
            ) from e


def find_config_file(search_paths: tuple[Path, ...] = CONFIG_SEARCH_PATHS) -> Path | None:
    """Find strata.yaml in the standard search paths.

    Returns:
        Path to the first configuration file found, or None.
    """
    for base_path in search_paths:
        candidate = base_path / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate
    return None


def load_engine_config(
    path: Path | None = None,
    *,
    search_paths: tuple[Path, ...] = CONFIG_SEARCH_PATHS,
) -> EngineConfig:
    """Resolve and load the engine configuration.

    Resolution order: explicit path, ``STRATA_CONFIG``, standard search
    paths, then built-in defaults.

    Args:
        path: Explicit configuration file path.
        search_paths: Directories searched for strata.yaml.

    Returns:
        Validated EngineConfig.
    """
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        path = Path(env_path) if env_path else find_config_file(search_paths)

    if path is None:
        logger.debug("engine_config_defaults")
        return EngineConfig()

    logger.info("engine_config_loading", path=str(path))
    return EngineConfig.from_yaml(path)
