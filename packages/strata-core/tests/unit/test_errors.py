"""Unit tests for the strata-core exception hierarchy."""

from __future__ import annotations

import pytest

from strata_core.config import ValidationLevel
from strata_core.engine import FailureItem, FailureReport
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
from strata_core.validation.models import (
    LayerResult,
    LayerStatus,
    Severity,
    ValidationIssue,
    ValidationReport,
)


class TestStrataError:
    """Tests for the base StrataError exception."""

    def test_stores_user_message(self) -> None:
        """StrataError should store and expose user_message."""
        error = StrataError("Something went wrong")
        assert error.user_message == "Something went wrong"
        assert str(error) == "Something went wrong"

    def test_logs_internal_details(self, capsys: pytest.CaptureFixture[str]) -> None:
        """StrataError should log internal_details when provided."""
        StrataError("User sees this", internal_details="unit shop-01 was 4194400 bytes")

        captured = capsys.readouterr()
        assert "strata_error" in captured.out
        assert "unit shop-01 was 4194400 bytes" in captured.out

    def test_no_log_without_internal_details(self, capsys: pytest.CaptureFixture[str]) -> None:
        """StrataError should not log if internal_details is None."""
        StrataError("Just a user message")
        assert "strata_error" not in capsys.readouterr().out


class TestConfigurationError:
    """Tests for ConfigurationError."""

    def test_message_includes_file_and_field(self) -> None:
        """File and field context should be appended to the message."""
        error = ConfigurationError(
            "Invalid value",
            file_path="strata.yaml",
            field_path="splitter.safety_buffer_bytes",
        )
        assert str(error) == (
            "Invalid value (in strata.yaml, field 'splitter.safety_buffer_bytes')"
        )
        assert error.file_path == "strata.yaml"
        assert error.field_path == "splitter.safety_buffer_bytes"

    def test_message_without_context(self) -> None:
        """Without context the message is unchanged."""
        assert str(ConfigurationError("Invalid value")) == "Invalid value"


class TestSynthesisErrors:
    """Tests for fatal synthesis errors."""

    def test_missing_dependency(self) -> None:
        """MissingDependencyError names both ends and suggests a fix."""
        error = MissingDependencyError("A.B/c/src", "A.B/c/missing")

        assert isinstance(error, SynthesisError)
        assert error.source_id == "A.B/c/src"
        assert error.target_id == "A.B/c/missing"
        assert "A.B/c/missing" in str(error)
        assert error.remediation is not None

    def test_dependency_cycle_enumerates_path(self) -> None:
        """DependencyCycleError lists every node on the cycle."""
        error = DependencyCycleError(["a", "b", "c", "a"])

        assert str(error) == "Dependency cycle detected between resources: a -> b -> c -> a"
        assert error.cycle == ["a", "b", "c", "a"]
        assert error.scope == "resource"

    def test_dependency_cycle_unit_scope(self) -> None:
        """Unit-level cycles say so."""
        error = DependencyCycleError(["u1", "u2", "u1"], scope="unit")
        assert "between units" in str(error)

    def test_resource_too_large_by_size(self) -> None:
        """Size overflow reports the byte counts."""
        error = ResourceTooLargeError(
            "A.B/c/big",
            group=["A.B/c/big"],
            size_bytes=5000,
            limit_bytes=4000,
        )
        assert "5000 bytes exceed the unit limit of 4000 bytes" in str(error)
        assert error.group == ["A.B/c/big"]
        assert error.remediation is not None

    def test_resource_too_large_by_count(self) -> None:
        """Count overflow reports the resource cap."""
        error = ResourceTooLargeError(
            "A.B/c/x",
            group=["A.B/c/x", "A.B/c/y"],
            size_bytes=0,
            limit_bytes=4000,
            resource_count=2,
            max_resources=1,
        )
        assert "2 resources exceed the per-unit cap of 1" in str(error)

    def test_cancelled_records_stage(self) -> None:
        """SynthesisCancelledError records where the run stopped."""
        error = SynthesisCancelledError("upload")
        assert error.stage == "upload"
        assert isinstance(error, SynthesisError)

    def test_validation_failed_summarizes_report(self) -> None:
        """ValidationFailedError names the failing layer and issue count."""
        issue = ValidationIssue(
            layer="structure",
            code="invalid_schema",
            severity=Severity.ERROR,
            subject="shop-main",
            message="bad",
        )
        report = ValidationReport(
            layers=[
                LayerResult(
                    name="structure",
                    level=ValidationLevel.NORMAL,
                    status=LayerStatus.FAILED,
                    issues=[issue],
                )
            ],
            failed_layer="structure",
        )

        error = ValidationFailedError(report)

        assert str(error) == "Validation failed in layer 'structure' with 1 issue(s)"
        assert error.report is report


class TestItemFailures:
    """Tests for per-item failure errors."""

    def test_synthesis_failed_counts_items(self) -> None:
        """SynthesisFailedError carries the failure report."""
        report = FailureReport(
            run_id="run-1",
            failures=[
                FailureItem(id="A.B/c/x", stage="packaging", message="boom"),
                FailureItem(id="abc.zip", stage="upload", message="denied"),
            ],
        )
        error = SynthesisFailedError(report)

        assert "2 item(s)" in str(error)
        assert not isinstance(error, SynthesisError)
        assert error.report.failures[1].stage == "upload"

    def test_build_error_message(self) -> None:
        """BuildError names the resource and reason."""
        error = BuildError("A.B/c/fn", "syntax error")
        assert str(error) == "Build failed for 'A.B/c/fn': syntax error"
        assert error.reason == "syntax error"

    def test_transient_build_error_is_build_error(self) -> None:
        """TransientBuildError is a BuildError subtype."""
        assert issubclass(TransientBuildError, BuildError)
