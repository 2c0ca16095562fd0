"""Validation result models.

Covers individual issues, per-layer results and the aggregated report.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from strata_core.config import ValidationLevel


class Severity(str, Enum):
    """Issue severity, most severe first."""

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"


class LayerStatus(str, Enum):
    """Outcome of one validation layer."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    NOT_RUN = "not_run"


_BLOCKING: dict[ValidationLevel, frozenset[Severity]] = {
    ValidationLevel.STRICT: frozenset(Severity),
    ValidationLevel.NORMAL: frozenset({Severity.CRITICAL, Severity.ERROR}),
    ValidationLevel.LENIENT: frozenset({Severity.CRITICAL}),
    ValidationLevel.OFF: frozenset(),
}


def is_blocking(severity: Severity, level: ValidationLevel) -> bool:
    """Whether an issue of ``severity`` fails a layer running at ``level``."""
    return severity in _BLOCKING[level]


class ValidationIssue(BaseModel):
    """A single finding.

    Attributes:
        layer: Layer that produced the issue.
        code: Stable machine-readable code.
        severity: Issue severity.
        subject: Resource id or unit name the issue is about.
        message: Human-readable description.
        suggestion: Remediation hint, if one is known.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    layer: str
    code: str
    severity: Severity
    subject: str
    message: str
    suggestion: str | None = None


class LayerResult(BaseModel):
    """Result of running one layer."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    level: ValidationLevel
    status: LayerStatus
    issues: list[ValidationIssue] = Field(default_factory=list)
    duration_ms: int = Field(default=0, ge=0)

    def blocking_issues(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if is_blocking(issue.severity, self.level)]


class ValidationReport(BaseModel):
    """Aggregated result of the validation pipeline.

    Attributes:
        layers: One result per configured layer, in pipeline order.
        failed_layer: Name of the first failing layer, if any.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    layers: list[LayerResult] = Field(default_factory=list)
    failed_layer: str | None = None

    @property
    def passed(self) -> bool:
        return self.failed_layer is None

    def issues(self) -> list[ValidationIssue]:
        return [issue for layer in self.layers for issue in layer.issues]

    def blocking_issues(self) -> list[ValidationIssue]:
        return [issue for layer in self.layers for issue in layer.blocking_issues()]

    def warnings(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues() if issue.severity is Severity.WARNING]

    def to_text(self) -> str:
        """Generate text report.

        Returns:
            Formatted text report for display.
        """
        lines: list[str] = []
        lines.append("=" * 60)
        lines.append("STRATA VALIDATION REPORT")
        lines.append("=" * 60)
        lines.append("")
        status = "PASSED" if self.passed else f"FAILED ({self.failed_layer})"
        lines.append(f"Status: {status}")
        lines.append("")

        for layer in self.layers:
            lines.append("-" * 60)
            lines.append(
                f"{layer.name} [{layer.level.value}]: {layer.status.value} "
                f"({len(layer.issues)} issue(s), {layer.duration_ms}ms)"
            )
            for issue in layer.issues:
                lines.append(
                    f"  {issue.severity.value.upper()} {issue.code} {issue.subject}: "
                    f"{issue.message}"
                )
                if issue.suggestion:
                    lines.append(f"     -> {issue.suggestion}")

        lines.append("")
        lines.append("=" * 60)
        return "\n".join(lines)
