"""Domain errors and failure typing."""


class OnboardError(Exception):
    """Base class for onboarding failures."""

    error_code = "ONBOARD_ERROR"


class ConfigError(OnboardError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"


class SourceError(OnboardError):
    """Raised when an input file cannot be parsed into identity records."""

    error_code = "SOURCE_ERROR"


class PreconditionError(OnboardError):
    """Raised when a run cannot start: not connected, no credential, no local identity."""

    error_code = "PRECONDITION_ERROR"


class ValidationError(OnboardError):
    """Raised for a single record missing a required field."""

    error_code = "VALIDATION_ERROR"


class SubmissionError(OnboardError):
    """Raised when the registry rejects a create call."""

    error_code = "SUBMISSION_ERROR"

    def __init__(self, message: str, *, remote_code: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.remote_code = remote_code
        self.status_code = status_code


class PollError(OnboardError):
    """Raised for a transient failure reading import status."""

    error_code = "POLL_ERROR"
