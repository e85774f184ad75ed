"""
Exception classes for appstore-connect-mcp.
"""


class AppStoreConnectError(Exception):
    """Base exception class for App Store Connect API errors."""

    pass


class AuthenticationError(AppStoreConnectError):
    """Raised when authentication fails."""

    pass


class RateLimitError(AppStoreConnectError):
    """Raised when rate limits are exceeded."""

    pass


class ValidationError(AppStoreConnectError):
    """Raised when request validation fails."""

    pass


class NotFoundError(AppStoreConnectError):
    """Raised when requested resource is not found.

    For report endpoints this means "no report for this slice", which the
    report processor treats as an empty day or region.
    """

    pass


class PermissionError(AppStoreConnectError):
    """Raised when insufficient permissions for operation."""

    pass


class ServerError(AppStoreConnectError):
    """Raised when server returns 5xx error."""

    pass


class MalformedReportError(AppStoreConnectError):
    """Raised when a report payload is not a tab-separated report."""

    pass


class ConfigurationError(AppStoreConnectError):
    """Raised when required configuration (e.g. vendor number) is missing."""

    pass
