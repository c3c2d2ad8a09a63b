"""Exception hierarchy for Overmind."""

from typing import Any


class OvermindError(Exception):
    """Base exception for all Overmind errors."""

    pass


class NotFoundError(OvermindError):
    """A caller-supplied identifier does not resolve.

    Attributes:
        kind: Kind of entity looked up (e.g. "agent", "task")
        identifier: The identifier that failed to resolve
    """

    def __init__(self, kind: str, identifier: Any):
        """Initialize not found error.

        Args:
            kind: Kind of entity looked up
            identifier: The identifier that failed to resolve
        """
        super().__init__(f"{kind.capitalize()} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


class ForbiddenError(OvermindError):
    """An identifier resolves but does not belong to the expected owner."""

    pass


class ValidationError(OvermindError):
    """Structured LLM output or graph properties failed a schema check.

    Attributes:
        errors: Individual validation failures, one line each
    """

    def __init__(self, message: str, errors: list[str] | None = None):
        """Initialize validation error.

        Args:
            message: Summary of what was being validated
            errors: Individual validation failures
        """
        self.errors = errors or []
        if self.errors:
            message = f"{message}: {'; '.join(self.errors)}"
        super().__init__(message)


class ConstraintError(OvermindError):
    """A write violates a structural constraint such as edge endpoint types."""

    pass


class DuplicateTypeError(ConstraintError):
    """A graph type with the same name already exists in the same scope."""

    pass


class ProviderError(OvermindError):
    """LLM provider call failed.

    Attributes:
        remediation: Optional guidance on how to fix the issue
    """

    def __init__(self, message: str, remediation: str | None = None):
        """Initialize provider error.

        Args:
            message: Error message
            remediation: Optional remediation guidance
        """
        super().__init__(message)
        self.remediation = remediation

    def __str__(self) -> str:
        """Return formatted error message with remediation if available."""
        if self.remediation:
            return f"{self.args[0]}\n\nRemediation: {self.remediation}"
        return str(self.args[0])


class ProviderTimeoutError(ProviderError):
    """LLM provider call exceeded its deadline."""

    def __init__(self, timeout_seconds: float):
        """Initialize provider timeout error.

        Args:
            timeout_seconds: Deadline that was exceeded
        """
        super().__init__(f"Provider call timed out after {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


class ProviderNotConfiguredError(ProviderError):
    """No usable provider could be constructed from configuration."""

    def __init__(self, message: str = "Anthropic API key not configured"):
        """Initialize provider configuration error.

        Args:
            message: Optional custom error message
        """
        super().__init__(
            message=message,
            remediation=(
                "Set ANTHROPIC_API_KEY, store a key with: overmind config set-key, "
                "or run with --provider mock"
            ),
        )


class PhaseFailedError(OvermindError):
    """A pipeline phase exhausted its retry budget.

    Attributes:
        phase: Name of the failed phase
        cause: Underlying error of the last attempt
    """

    def __init__(self, phase: str, cause: Exception):
        """Initialize phase failure.

        Args:
            phase: Name of the failed phase
            cause: Underlying error of the last attempt
        """
        super().__init__(f"Phase {phase} failed: {cause}")
        self.phase = phase
        self.cause = cause
