"""Custom exception hierarchy for strata-core.

This module defines the exception classes used throughout strata:
- StrataError: Base exception for all strata-related errors
- SynthesisError: Fatal, non-retryable errors that abort a synthesis run
- BuildError / TransientBuildError: Per-function packaging failures
- SynthesisFailedError: Aggregated per-item failures (packaging, upload)

User-facing messages are safe to display; technical details are logged
internally via structlog.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from strata_core.engine import FailureReport
    from strata_core.validation.models import ValidationReport

logger = structlog.get_logger(__name__)


class StrataError(Exception):
    """Base exception for strata.

    Args:
        user_message: Safe message to display to the user.
        internal_details: Optional technical details for logging. This is
            logged internally but never exposed to the user.

    Example:
        >>> raise StrataError(
        ...     "Synthesis failed",
        ...     internal_details="unit app-01 rendered to 4194400 bytes",
        ... )
    """

    def __init__(
        self,
        user_message: str,
        *,
        internal_details: str | None = None,
    ) -> None:
        super().__init__(user_message)
        self.user_message = user_message

        if internal_details:
            logger.error(
                "strata_error",
                error_type=self.__class__.__name__,
                user_message=user_message,
                internal_details=internal_details,
            )


class ConfigurationError(StrataError):
    """Raised when engine configuration parsing or validation fails.

    Attributes:
        file_path: Path to the configuration file (if known).
        field_path: Dot-separated path to the invalid field.

    Example:
        >>> raise ConfigurationError(
        ...     "Invalid splitter budget",
        ...     file_path="strata.yaml",
        ...     field_path="splitter.safety_buffer_bytes",
        ... )
    """

    def __init__(
        self,
        user_message: str,
        *,
        file_path: str | None = None,
        field_path: str | None = None,
        internal_details: str | None = None,
    ) -> None:
        context_parts: list[str] = []
        if file_path:
            context_parts.append(f"in {file_path}")
        if field_path:
            context_parts.append(f"field '{field_path}'")

        if context_parts:
            full_message = f"{user_message} ({', '.join(context_parts)})"
        else:
            full_message = user_message

        super().__init__(full_message, internal_details=internal_details)

        self.file_path = file_path
        self.field_path = field_path


class SynthesisError(StrataError):
    """Fatal synthesis error.

    Raised when the input graph itself cannot be synthesized. These errors
    always propagate to the top level and no manifest is written.
    """

    remediation: str | None = None


class MissingDependencyError(SynthesisError):
    """Raised when a resource references an id that is not in the graph.

    Attributes:
        source_id: Id of the referencing resource.
        target_id: Id that could not be found.

    Example:
        >>> raise MissingDependencyError(
        ...     "Microsoft.Web/sites/api",
        ...     "Microsoft.Storage/storageAccounts/missing",
        ... )
    """

    def __init__(
        self,
        source_id: str,
        target_id: str,
        *,
        internal_details: str | None = None,
    ) -> None:
        user_message = (
            f"Resource '{source_id}' references unknown resource '{target_id}'"
        )
        super().__init__(user_message, internal_details=internal_details)

        self.source_id = source_id
        self.target_id = target_id
        self.remediation = f"Declare '{target_id}' in the graph or remove the reference"


class DependencyCycleError(SynthesisError):
    """Raised when a dependency cycle is detected.

    The full cycle path is enumerated in the message; breaking the cycle is
    left to the resource author.

    Attributes:
        cycle: Node ids along the cycle, first id repeated at the end.
        scope: What the cycle was found in ("resource" or "unit").
    """

    def __init__(
        self,
        cycle: Sequence[str],
        *,
        scope: str = "resource",
        internal_details: str | None = None,
    ) -> None:
        path = " -> ".join(cycle)
        super().__init__(
            f"Dependency cycle detected between {scope}s: {path}",
            internal_details=internal_details,
        )

        self.cycle = list(cycle)
        self.scope = scope
        self.remediation = "Remove one of the references along the cycle"


class ResourceTooLargeError(SynthesisError):
    """Raised when a single atomic group cannot fit in any template unit.

    Attributes:
        resource_id: Largest resource of the offending group.
        group: All resource ids that must stay together.
        size_bytes: Serialized size of the group alone (0 when the count
            budget was exceeded).
        limit_bytes: Configured unit size limit.
    """

    def __init__(
        self,
        resource_id: str,
        *,
        group: Sequence[str],
        size_bytes: int,
        limit_bytes: int,
        resource_count: int | None = None,
        max_resources: int | None = None,
    ) -> None:
        if resource_count is not None and max_resources is not None:
            detail = f"{resource_count} resources exceed the per-unit cap of {max_resources}"
        else:
            detail = f"{size_bytes} bytes exceed the unit limit of {limit_bytes} bytes"
        user_message = (
            f"Resource '{resource_id}' cannot fit in a single template unit ({detail})"
        )
        super().__init__(user_message)

        self.resource_id = resource_id
        self.group = list(group)
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        self.remediation = (
            f"Extract large inline payloads of '{resource_id}' into separate artifacts"
        )


class ValidationFailedError(SynthesisError):
    """Raised when a validation layer rejects the synthesized output.

    Attributes:
        report: Validation report holding every issue of the failing layer.
    """

    def __init__(self, report: ValidationReport) -> None:
        failed = report.failed_layer or "unknown"
        count = len(report.blocking_issues())
        super().__init__(f"Validation failed in layer '{failed}' with {count} issue(s)")
        self.report = report


class SynthesisCancelledError(SynthesisError):
    """Raised when a synthesis run is cancelled before the manifest is written."""

    def __init__(self, stage: str) -> None:
        super().__init__(f"Synthesis cancelled during {stage}")
        self.stage = stage


class SynthesisFailedError(StrataError):
    """Raised after all independent items completed and some of them failed.

    Attributes:
        report: Aggregated failure report, one entry per failed item.
    """

    def __init__(self, report: FailureReport) -> None:
        super().__init__(
            f"Synthesis failed: {len(report.failures)} item(s) could not be prepared"
        )
        self.report = report


class BuildError(StrataError):
    """Raised when a function build fails permanently."""

    def __init__(
        self,
        resource_id: str,
        reason: str,
        *,
        internal_details: str | None = None,
    ) -> None:
        super().__init__(
            f"Build failed for '{resource_id}': {reason}",
            internal_details=internal_details,
        )
        self.resource_id = resource_id
        self.reason = reason


class TransientBuildError(BuildError):
    """Raised when a build invocation fails in a way that may succeed on retry."""
