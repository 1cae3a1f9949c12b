from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for gateway exceptions mapped to HTTP responses.

    Every failure of a pipeline stage maps to exactly one subclass and one
    HTTP status:
    - BadRequestError / ProhibitedContentError (400)
    - AuthenticationError (401)
    - RateLimitedError (429)
    - ServerError / ConfigurationError / UpstreamEmptyResponseError (500)
    - UpstreamUnavailableError (503)

    ``message`` is shown to the caller; ``detail`` is for logs only.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}
        self.headers = headers or {}

    def response_body(self) -> dict:
        return {"error": self.message}


class BadRequestError(ServiceError):
    """Request body is missing, malformed or out of bounds (400)."""
    status_code = 400
    error_code = "bad_request"


class ProhibitedContentError(BadRequestError):
    """Query matched the content denylist (400)."""
    error_code = "prohibited_content"


class AuthenticationError(ServiceError):
    """Bearer credential missing, malformed or rejected (401)."""
    status_code = 401
    error_code = "unauthenticated"


class RateLimitedError(ServiceError):
    """Per-user request window exhausted or blocked (429)."""
    status_code = 429
    error_code = "rate_limited"

    def __init__(self, message: str, *, reset_time_ms: int, **kwargs) -> None:
        headers = {
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(reset_time_ms),
        }
        headers.update(kwargs.pop("headers", None) or {})
        super().__init__(message, headers=headers, **kwargs)
        self.reset_time_ms = reset_time_ms

    def response_body(self) -> dict:
        return {"error": self.message, "resetTime": self.reset_time_ms}


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "internal_error"


class ConfigurationError(ServerError):
    """Required deployment configuration is missing (500)."""
    error_code = "configuration_error"


class UpstreamEmptyResponseError(ServerError):
    """Upstream AI call succeeded but carried no answer text (500)."""
    error_code = "upstream_empty_response"


class UpstreamUnavailableError(ServiceError):
    """Upstream AI service failed, timed out or was unreachable (503)."""
    status_code = 503
    error_code = "upstream_unavailable"

    def __init__(
        self,
        message: str = "AI service temporarily unavailable",
        *,
        upstream_status: Optional[int] = None,
        upstream_body: str = "",
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body


__all__ = [
    "ServiceError",
    "BadRequestError",
    "ProhibitedContentError",
    "AuthenticationError",
    "RateLimitedError",
    "ServerError",
    "ConfigurationError",
    "UpstreamEmptyResponseError",
    "UpstreamUnavailableError",
]
