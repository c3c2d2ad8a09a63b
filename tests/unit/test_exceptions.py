"""Unit tests for the exception hierarchy."""

from overmind.infrastructure.exceptions import (
    ConstraintError,
    DuplicateTypeError,
    NotFoundError,
    OvermindError,
    PhaseFailedError,
    ProviderError,
    ProviderNotConfiguredError,
    ProviderTimeoutError,
    ValidationError,
)


class TestMessages:
    """Tests for error messages and attributes."""

    def test_not_found(self) -> None:
        """Test the not found message and attributes."""
        error = NotFoundError("task", "1234")

        assert str(error) == "Task 1234 not found"
        assert error.kind == "task"
        assert error.identifier == "1234"

    def test_validation_errors_joined(self) -> None:
        """Test that individual failures are listed in the message."""
        error = ValidationError("Invalid Company properties", ["a is required", "b is not int"])

        assert str(error) == "Invalid Company properties: a is required; b is not int"
        assert error.errors == ["a is required", "b is not int"]

    def test_provider_remediation(self) -> None:
        """Test that remediation is appended to provider errors."""
        error = ProviderNotConfiguredError()

        assert str(error).startswith("Anthropic API key not configured")
        assert "--provider mock" in str(error)

    def test_timeout(self) -> None:
        """Test the timeout message."""
        error = ProviderTimeoutError(2.5)

        assert str(error) == "Provider call timed out after 2.5s"
        assert error.timeout_seconds == 2.5

    def test_phase_failure_keeps_cause(self) -> None:
        """Test that a phase failure records the phase and its cause."""
        cause = ProviderError("overloaded")
        error = PhaseFailedError("analysis_generation", cause)

        assert error.phase == "analysis_generation"
        assert error.cause is cause
        assert "overloaded" in str(error)


class TestHierarchy:
    """Tests for exception inheritance."""

    def test_all_domain_errors_share_base(self) -> None:
        """Test that callers can catch every domain error at once."""
        for error_type in (NotFoundError, ValidationError, ConstraintError, ProviderError):
            assert issubclass(error_type, OvermindError)

    def test_specializations(self) -> None:
        """Test the narrower error types."""
        assert issubclass(DuplicateTypeError, ConstraintError)
        assert issubclass(ProviderTimeoutError, ProviderError)
        assert issubclass(ProviderNotConfiguredError, ProviderError)
