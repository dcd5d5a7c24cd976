"""Custom exceptions for ADO Bridge.

This module defines exception classes for the error conditions that can occur
while driving the external migration tool, talking to the GitHub API, and
managing run state.
"""

from ado_migration.utils.logging import redact_tokens


class ADOMigrationError(Exception):
    """Base exception for all ADO migration tool errors."""

    pass


class ToolError(ADOMigrationError):
    """Base class for failures reported by the external migration tool."""

    def __init__(
        self,
        message: str,
        returncode: int | None = None,
        output: str | None = None,
    ):
        """Initialize tool error.

        Args:
            message: Error message
            returncode: Exit code of the tool process (None if it never ran)
            output: Captured tool output (stdout and stderr combined)
        """
        self.message = message
        self.returncode = returncode
        self.output = output
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with exit code and the last line of output."""
        msg = self.message
        if self.returncode is not None:
            msg = f"[exit {self.returncode}] {msg}"
        if self.output:
            last_line = self.output.strip().splitlines()[-1] if self.output.strip() else ""
            if last_line:
                msg = f"{msg}: {redact_tokens(last_line)}"
        return msg


class LockFailure(ToolError):
    """Raised when the source repository could not be locked before migration."""

    pass


class SubmitFailure(ToolError):
    """Raised when the migration request could not be queued."""

    pass


class RemoteFailure(ToolError):
    """Raised when a queued migration failed or timed out on the remote side."""

    pass


class MonitoringFault(ADOMigrationError):
    """Raised when the coordinator's handle to an in-flight operation errored.

    Distinct from the operation itself failing: the task running the adapter
    call raised or was cancelled instead of returning an outcome.
    """

    pass


class APIError(ADOMigrationError):
    """Base class for GitHub API errors."""

    def __init__(self, message: str, status_code: int | None = None, response: dict | None = None):
        """Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code
            response: API response body
        """
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with status code and response."""
        msg = self.message
        if self.status_code:
            msg = f"[{self.status_code}] {msg}"
        if self.response:
            msg = f"{msg}: {self.response}"
        return msg


class AuthenticationError(APIError):
    """Raised when authentication fails (401 Unauthorized)."""

    pass


class RateLimitError(APIError):
    """Raised when the API rate limit is exceeded (403/429 with rate limit headers)."""

    pass


class ServerError(APIError):
    """Raised when server returns 5xx error."""

    pass


class NetworkError(ADOMigrationError):
    """Raised when network-related errors occur (timeouts, connection failures)."""

    pass


class ValidationError(ADOMigrationError):
    """Raised when input validation fails before a run starts."""

    pass


class StateError(ADOMigrationError):
    """Raised when state management errors occur."""

    pass


class ConfigurationError(ADOMigrationError):
    """Raised when configuration is invalid or missing."""

    pass
