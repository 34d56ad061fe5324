"""Error taxonomy shared by the services and the HTTP layer.

Each error carries a stable ``code`` and the HTTP ``status_code`` the REST
layer answers with. Routes raise these; ``rest.main`` renders them as
``{"error": {"code": ..., "message": ...}}``.
"""

from typing import Any


class AnalyticsError(Exception):
    """Base error for all analytics API exceptions."""

    code: str = "ANALYTICS_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the error envelope (details stay server-side)."""
        return {"code": self.code, "message": self.message}


class ValidationError(AnalyticsError):
    """Invalid input data (400)."""

    code = "VALIDATION_ERROR"
    status_code = 400


class AuthenticationError(AnalyticsError):
    """Missing, invalid, expired or revoked credentials (401)."""

    code = "AUTHENTICATION_ERROR"
    status_code = 401


class AuthorizationError(AnalyticsError):
    """Authenticated but not allowed (403)."""

    code = "AUTHORIZATION_ERROR"
    status_code = 403


class NotFoundError(AnalyticsError):
    """Resource not found (404)."""

    code = "NOT_FOUND_ERROR"
    status_code = 404


class RateLimitError(AnalyticsError):
    """Upstream or local rate limit exceeded (429)."""

    code = "RATE_LIMIT_ERROR"
    status_code = 429

    def __init__(self, message: str, retry_after: int | None = None):
        super().__init__(message, {"retry_after": retry_after})
        self.retry_after = retry_after


class ExternalAPIError(AnalyticsError):
    """Failure talking to a third-party service (502 by default)."""

    code = "EXTERNAL_API_ERROR"
    status_code = 502

    def __init__(
        self,
        service: str,
        message: str,
        status_code: int = 502,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(f"{service} API Error: {message}", {"service": service, **(details or {})})
        self.service = service
        self.status_code = status_code


class ConfigurationError(AnalyticsError):
    """Required setup is missing (500)."""

    code = "CONFIGURATION_ERROR"
    status_code = 500
