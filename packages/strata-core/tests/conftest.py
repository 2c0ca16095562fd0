"""Shared pytest fixtures for strata-core tests.

This module provides common fixtures used across unit and integration
tests: structlog capture, sample resource graphs and fast retry settings.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import structlog

from strata_core.config import (
    EngineConfig,
    PackagingConfig,
    RetryConfig,
    SplitterConfig,
)
from strata_core.graph.models import InlineCode, ResourceGraph, ResourceNode

API_VERSION = "2023-01-01"
LOCATION = "westeurope"

SUBNET = "Microsoft.Network/virtualNetworks/subnets/vnet/app"
STORAGE = "Microsoft.Storage/storageAccounts/data"
PLAN = "Microsoft.Web/serverfarms/plan"
SITE = "Microsoft.Web/sites/api"


def _ref(target: str, prop: str | None = None) -> dict[str, str]:
    """Build a reference marker."""
    marker = {"$ref": target}
    if prop is not None:
        marker["property"] = prop
    return marker


def _node(resource_type: str, name: str, **kwargs: Any) -> ResourceNode:
    """Build a resource node with the default API version and location."""
    kwargs.setdefault("api_version", API_VERSION)
    kwargs.setdefault("location", LOCATION)
    return ResourceNode(type=resource_type, name=name, **kwargs)


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
def fast_retry() -> RetryConfig:
    """Retry policy without waits."""
    return RetryConfig(
        max_attempts=3,
        initial_wait_seconds=0,
        max_wait_seconds=0,
        jitter_seconds=0,
    )


@pytest.fixture
def web_app_graph() -> ResourceGraph:
    """Network, storage, hosting plan, site and a role assignment.

    Edges:
    - subnet -> vnet (inferred parent)
    - site -> plan, subnet, storage (references)
    - role -> site, storage (references)
    """
    return ResourceGraph(
        stack="shop",
        resources=(
            _node(
                "Microsoft.Network/virtualNetworks",
                "vnet",
                properties={"addressSpace": {"addressPrefixes": ["10.0.0.0/16"]}},
            ),
            _node(
                "Microsoft.Network/virtualNetworks/subnets",
                "vnet/app",
                properties={"addressPrefix": "10.0.1.0/24"},
            ),
            _node(
                "Microsoft.Storage/storageAccounts",
                "data",
                properties={"accessTier": "Hot"},
            ),
            _node("Microsoft.Web/serverfarms", "plan", properties={"reserved": True}),
            _node(
                "Microsoft.Web/sites",
                "api",
                properties={
                    "serverFarmId": _ref(PLAN),
                    "virtualNetworkSubnetId": _ref(SUBNET),
                    "siteConfig": {
                        "appSettings": [
                            {
                                "name": "BLOB_ENDPOINT",
                                "value": _ref(STORAGE, "primaryEndpoints.blob"),
                            }
                        ]
                    },
                },
            ),
            _node(
                "Microsoft.Authorization/roleAssignments",
                "api-data",
                properties={
                    "principalId": _ref(SITE, "identity.principalId"),
                    "scope": _ref(STORAGE),
                },
            ),
        ),
    )


@pytest.fixture
def function_code() -> Callable[..., InlineCode]:
    """Factory for inline function code."""

    def factory(source: str = "module.exports = async () => 'hello';", **kwargs: Any) -> InlineCode:
        kwargs.setdefault("bindings", [{"type": "httpTrigger", "direction": "in", "name": "req"}])
        return InlineCode(source=source, **kwargs)

    return factory


@pytest.fixture
def function_graph(function_code: Callable[..., InlineCode]) -> ResourceGraph:
    """Site with two functions: one inline-sized, one with dependencies."""
    return ResourceGraph(
        stack="fn",
        resources=(
            _node("Microsoft.Web/serverfarms", "plan"),
            _node("Microsoft.Web/sites", "api", properties={"serverFarmId": _ref(PLAN)}),
            _node(
                "Microsoft.Web/sites/functions",
                "api/hello",
                properties={"config": {"disabled": False}},
                inline_code=function_code(),
            ),
            _node(
                "Microsoft.Web/sites/functions",
                "api/report",
                properties={"config": {"disabled": False}},
                inline_code=function_code(
                    "const pad = require('left-pad'); module.exports = async () => pad('r', 4);",
                    dependencies={"left-pad": "^1.3.0"},
                ),
            ),
        ),
    )


@pytest.fixture
def bulk_graph() -> Callable[[int, int], ResourceGraph]:
    """Factory for ``count`` independent storage accounts of ``payload`` bytes each."""

    def factory(count: int, payload: int) -> ResourceGraph:
        return ResourceGraph(
            stack="bulk",
            resources=tuple(
                _node(
                    "Microsoft.Storage/storageAccounts",
                    f"store{index:02d}",
                    properties={"accessTier": "Hot", "blob": "x" * payload},
                )
                for index in range(count)
            ),
        )

    return factory


@pytest.fixture
def engine_config(tmp_path: Path, fast_retry: RetryConfig) -> EngineConfig:
    """Engine configuration writing into a temporary directory."""
    return EngineConfig(
        output_dir=tmp_path / "out",
        packaging=PackagingConfig(concurrency=2, retry=fast_retry),
    )


@pytest.fixture
def split_config() -> SplitterConfig:
    """Budget forcing the web app graph into one unit per tier."""
    return SplitterConfig(max_resources_per_unit=3)
