"""
Custom exceptions for the ReleaseHub application.

This module defines domain-specific exceptions that let the core report
*what kind* of failure happened, so the HTTP boundary can map each kind to a
response without guessing.
"""


class ReleaseHubError(Exception):
    """
    Base exception for all ReleaseHub errors.

    All custom exceptions in ReleaseHub should inherit from this class
    to allow for easy catching of all application-specific errors.
    """

    status_code = 500
    kind = "error"

    def __init__(self, message: str, details: str | None = None) -> None:
        """
        Initialize the exception.

        Args:
            message: The primary error message.
            details: Optional additional context about the error.
        """
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(ReleaseHubError):
    """
    Exception raised when configuration is invalid or missing.

    This includes:
    - Missing required configuration keys
    - Invalid configuration values
    - Configuration file parsing errors
    """

    kind = "configuration"


class ConfigFileError(ConfigurationError):
    """Exception raised when configuration file cannot be read or parsed."""

    pass


class ConfigValidationError(ConfigurationError):
    """Exception raised when configuration validation fails."""

    def __init__(
        self,
        message: str,
        key: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.key = key


# =============================================================================
# Query Errors
# =============================================================================


class NotFoundError(ReleaseHubError):
    """
    Exception raised when no release, asset or manifest entry matches a query.

    This is a caller error (the release exists upstream or it does not); it is
    never used to report a failed upstream fetch.
    """

    status_code = 404
    kind = "not_found"


class MalformedInputError(ReleaseHubError):
    """
    Exception raised when a request is missing a required parameter or carries
    a value that cannot be interpreted (unknown platform, bad version range).

    Attributes:
        field: The name of the offending parameter.
        value: The value that was rejected.
    """

    status_code = 400
    kind = "malformed_input"

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.field = field
        self.value = value


# =============================================================================
# Upstream Errors
# =============================================================================


class UpstreamError(ReleaseHubError):
    """
    Exception raised when the release backend cannot be reached or answers
    with an error.

    Attributes:
        url: The URL that was being fetched when the error occurred.
        upstream_status: HTTP status code returned by the backend, if any.
        is_retryable: Whether a later attempt may succeed.
    """

    status_code = 502
    kind = "upstream_failure"

    def __init__(
        self,
        message: str,
        url: str | None = None,
        upstream_status: int | None = None,
        is_retryable: bool = True,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.url = url
        self.upstream_status = upstream_status
        self.is_retryable = is_retryable


class UpstreamTimeoutError(UpstreamError):
    """Exception raised when a backend fetch exceeds the configured timeout."""

    status_code = 504


# =============================================================================
# Data Errors
# =============================================================================


class ManifestDecodeError(ReleaseHubError):
    """
    Exception raised when a Squirrel RELEASES manifest cannot be parsed.

    A malformed manifest means the published data is corrupt; it is never
    silently repaired because a truncated feed breaks client update checks.

    Attributes:
        line_number: 1-based line number of the offending line.
        line: The raw offending line.
    """

    status_code = 500
    kind = "decode_failure"

    def __init__(
        self,
        message: str,
        line_number: int | None = None,
        line: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.line_number = line_number
        self.line = line


# =============================================================================
# Access Errors
# =============================================================================


class AuthenticationError(ReleaseHubError):
    """Exception raised when an API request lacks a valid access token."""

    status_code = 401
    kind = "unauthorized"


class WebhookSignatureError(ReleaseHubError):
    """Exception raised when a webhook payload signature does not verify."""

    status_code = 403
    kind = "invalid_signature"
