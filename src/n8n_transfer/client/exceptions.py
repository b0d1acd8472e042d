"""Custom exceptions for n8n Bridge.

This module defines exception classes for the error conditions that can occur
while talking to n8n instances and while running a transfer. Every exception
exposes a stable ``code`` that ends up in ``TransferSummary.errors``.
"""


class TransferError(Exception):
    """Base exception for all n8n transfer errors."""

    code = "TRANSFER_ERROR"


class ConfigurationError(TransferError):
    """Raised when configuration is invalid or missing."""

    code = "CONFIGURATION_ERROR"


class ConnectivityError(TransferError):
    """Raised when an instance cannot be reached or rejects the credentials."""

    code = "CONNECTIVITY_ERROR"

    def __init__(self, message: str, suggestion: str | None = None):
        """Initialize connectivity error.

        Args:
            message: Error message
            suggestion: Human-readable remediation hint
        """
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)


class APIError(TransferError):
    """Base class for API-related errors."""

    code = "API_ERROR"

    def __init__(self, message: str, status_code: int | None = None, response: object = None):
        """Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code
            response: Parsed API response body
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


class ClientError(APIError):
    """Raised for 4xx responses other than 429. Never retried."""

    code = "CLIENT_ERROR"


class AuthenticationError(ClientError):
    """Raised when authentication fails (401 Unauthorized)."""

    code = "AUTHENTICATION_ERROR"


class AuthorizationError(ClientError):
    """Raised when authorization fails (403 Forbidden)."""

    code = "AUTHORIZATION_ERROR"


class NotFoundError(ClientError):
    """Raised when a resource is not found (404 Not Found)."""

    code = "NOT_FOUND"


class ConflictError(ClientError):
    """Raised when a resource conflict occurs (409 Conflict)."""

    code = "CONFLICT"


class TransientTransportError(TransferError):
    """Base class for failures that are worth retrying."""

    code = "TRANSIENT_ERROR"


class RateLimitError(APIError, TransientTransportError):
    """Raised when API rate limit is exceeded (429 Too Many Requests)."""

    code = "RATE_LIMITED"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: object = None,
        retry_after: int | None = None,
    ):
        """Initialize rate limit error.

        Args:
            message: Error message
            status_code: HTTP status code
            response: API response body
            retry_after: Seconds to wait before retrying (from Retry-After header)
        """
        super().__init__(message, status_code, response)
        self.retry_after = retry_after


class ServerError(APIError, TransientTransportError):
    """Raised when server returns 5xx error."""

    code = "SERVER_ERROR"


class NetworkError(TransientTransportError):
    """Raised for transient network failures.

    ``code`` is one of ``ECONNRESET``, ``ECONNREFUSED``, ``ENOTFOUND`` or
    ``ETIMEDOUT``.
    """

    def __init__(self, message: str, code: str = "ECONNRESET"):
        self.message = message
        self.code = code
        super().__init__(message)


class RequestTimeoutError(NetworkError):
    """Raised when a single request attempt exceeds its timeout."""

    def __init__(self, message: str):
        super().__init__(message, code="ETIMEDOUT")


class TransportFailureError(TransferError):
    """Raised for transport failures that retrying cannot fix (TLS, proxy, protocol)."""

    code = "TRANSPORT_ERROR"


class PayloadValidationError(TransferError):
    """Raised when a request payload is missing required fields."""

    code = "INVALID_PAYLOAD"


class StateError(TransferError):
    """Raised when id mappings cannot be saved or loaded."""

    code = "STATE_ERROR"


class PluginError(TransferError):
    """Raised when a plugin is invalid or cannot be registered."""

    code = "PLUGIN_ERROR"


class PluginNotFoundError(PluginError):
    """Raised when a required plugin is not registered."""

    code = "PLUGIN_NOT_FOUND"
