"""Pydantic configuration models for strata-store.

This module provides:
- StoreConfig: Upload concurrency, timeout, retry and access URL lifetime
- RetentionPolicy: Age-based tiering and deletion of old runs
"""

from __future__ import annotations

import os

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from strata_core.config import RetryConfig

DEFAULT_ACCESS_TTL_SECONDS = 24 * 60 * 60


class StoreConfig(BaseModel):
    """Artifact upload configuration.

    Attributes:
        access_ttl_seconds: Lifetime of signed access URLs (default 24h).
        reuse_margin_seconds: Minimum remaining URL lifetime for an earlier
            upload to be reused instead of re-signed.
        upload_concurrency: Maximum parallel uploads.
        upload_timeout_seconds: Per-attempt upload deadline.
        retry: Retry policy for transient failures.

    Example:
        >>> config = StoreConfig(upload_concurrency=8)
        >>> config.retry.max_attempts
        3
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    access_ttl_seconds: int = Field(
        default=DEFAULT_ACCESS_TTL_SECONDS,
        ge=60,
        description="Signed access URL lifetime in seconds",
    )
    reuse_margin_seconds: int = Field(
        default=60 * 60,
        ge=0,
        description="Remaining URL lifetime required to reuse an earlier upload",
    )
    upload_concurrency: int = Field(
        default_factory=lambda: min(32, (os.cpu_count() or 1) * 4),
        ge=1,
        description="Maximum parallel uploads",
    )
    upload_timeout_seconds: float | None = Field(
        default=120.0,
        gt=0,
        description="Per-attempt upload deadline in seconds",
    )
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @field_validator("reuse_margin_seconds")
    @classmethod
    def margin_below_ttl(cls, v: int, info: ValidationInfo) -> int:
        """Validate that the reuse margin is shorter than the URL lifetime."""
        ttl = info.data.get("access_ttl_seconds", DEFAULT_ACCESS_TTL_SECONDS)
        if v >= ttl:
            msg = f"reuse_margin_seconds ({v}) must be < access_ttl_seconds ({ttl})"
            raise ValueError(msg)
        return v


class RetentionPolicy(BaseModel):
    """Age-based lifecycle of stored runs.

    Objects move hot -> cool -> archive and are finally deleted. Each stage
    is optional; stages must be in increasing age order.

    Attributes:
        cool_after_days: Move to the cool tier after this many days.
        archive_after_days: Move to the archive tier after this many days.
        delete_after_days: Delete after this many days.
        keep_latest_runs: Most recent runs never touched, regardless of age.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    cool_after_days: int | None = Field(default=30, ge=1)
    archive_after_days: int | None = Field(default=90, ge=1)
    delete_after_days: int | None = Field(default=365, ge=1)
    keep_latest_runs: int = Field(default=3, ge=0)

    @field_validator("archive_after_days", "delete_after_days")
    @classmethod
    def stages_increase(cls, v: int | None, info: ValidationInfo) -> int | None:
        """Validate that each configured stage comes after the earlier ones."""
        if v is None:
            return v
        for earlier in ("cool_after_days", "archive_after_days"):
            if earlier == info.field_name:
                break
            previous = info.data.get(earlier)
            if previous is not None and v <= previous:
                msg = f"{info.field_name} ({v}) must be > {earlier} ({previous})"
                raise ValueError(msg)
        return v
