from __future__ import annotations

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries an HTTP ``status_code`` and a default
    ``error_code``. Callers override ``error_code`` with the stable code the
    auth endpoints expose (``INVALID_USERNAME``, ``NO_TOKEN`` ...):

    - validation errors (400)
    - authentication errors (401)
    - CSRF / authorization errors (403)
    - rate limiting (429)
    - server errors (500)
    """

    status_code: int = 400
    error_code: str = "INVALID_BODY"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        detail: Optional[dict] = None,
        headers: Optional[Dict[str, str]] = None,
        staged_response: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}
        self.headers = headers or {}
        # Response whose Set-Cookie headers must accompany the error reply
        self.staged_response = staged_response


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "INVALID_BODY"


class AuthenticationError(ServiceError):
    """Credentials or session token rejected (401)."""
    status_code = 401
    error_code = "UNAUTHORIZED"


class ForbiddenError(ServiceError):
    """CSRF check failed or access denied (403)."""
    status_code = 403
    error_code = "INVALID_CSRF"


class RateLimitedError(ServiceError):
    """Rate limit exceeded (429)."""
    status_code = 429
    error_code = "RATE_LIMITED"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "INTERNAL_ERROR"


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "ForbiddenError",
    "RateLimitedError",
    "ServerError",
]
