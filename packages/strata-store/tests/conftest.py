"""Shared pytest fixtures for strata-store tests.

This module provides common fixtures used across unit and integration
tests: structlog capture, a controllable clock, stores and upload items.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import structlog

from strata_core.config import RetryConfig
from strata_core.encoding import sha256_hex
from strata_core.publishing import (
    PACKAGE_CONTENT_TYPE,
    TEMPLATE_CONTENT_TYPE,
    UploadItem,
    UploadKind,
)
from strata_store.config import StoreConfig
from strata_store.stores import InMemoryArtifactStore, LocalArtifactStore

START = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
SECRET = b"test-signing-secret"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def configure_structlog_for_tests() -> None:
    """Configure structlog to output to stdout for test capture.

    This fixture ensures structlog outputs to stdout so that capsys
    can capture the output in tests. Without this, structlog may use
    different processors depending on test execution order.
    """
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,  # Important for test isolation
    )


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting at 2026-03-01 12:00 UTC."""
    return FakeClock()


@pytest.fixture
def memory_store(clock: FakeClock) -> InMemoryArtifactStore:
    """In-memory store with a fixed secret."""
    return InMemoryArtifactStore(secret=SECRET, clock=clock)


@pytest.fixture
def local_store(tmp_path: Path, clock: FakeClock) -> LocalArtifactStore:
    """Filesystem store under a temporary directory."""
    return LocalArtifactStore(tmp_path / "store", secret=SECRET, clock=clock)


@pytest.fixture
def store_config() -> StoreConfig:
    """Upload settings without retry waits."""
    return StoreConfig(
        access_ttl_seconds=3600,
        reuse_margin_seconds=600,
        upload_concurrency=4,
        upload_timeout_seconds=None,
        retry=RetryConfig(
            max_attempts=3,
            initial_wait_seconds=0,
            max_wait_seconds=0,
            jitter_seconds=0,
        ),
    )


@pytest.fixture
def make_item() -> Callable[..., UploadItem]:
    """Factory for upload items keyed by their content."""

    def factory(name: str, data: bytes, kind: UploadKind = UploadKind.TEMPLATE) -> UploadItem:
        return UploadItem(
            name=name,
            kind=kind,
            content_hash=f"sha256:{sha256_hex(data)}",
            data=data,
            content_type=(
                TEMPLATE_CONTENT_TYPE if kind is UploadKind.TEMPLATE else PACKAGE_CONTENT_TYPE
            ),
        )

    return factory
