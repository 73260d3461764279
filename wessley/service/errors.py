from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass pins an HTTP ``status_code`` and the stable ``error_code``
    returned in the ``error`` field of the JSON body:
    - invalid_input (400)
    - unauthorized (401)
    - subscription_required (402)
    - forbidden (403)
    - not_found (404)
    - file_too_large (413)
    - unsupported_type (415)
    - rate_limited (429)
    - internal_error (500)
    - service_unavailable (503)
    """

    status_code: int = 400
    error_code: str = "invalid_input"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "invalid_input"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class PaymentRequiredError(ServiceError):
    """Feature requires an active subscription (402)."""
    status_code = 402
    error_code = "subscription_required"


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class PayloadTooLargeError(ServiceError):
    """Uploaded document exceeds the size limit (413)."""
    status_code = 413
    error_code = "file_too_large"


class UnsupportedMediaTypeError(ServiceError):
    """Uploaded document type is not accepted (415)."""
    status_code = 415
    error_code = "unsupported_type"


class RateLimitedError(ServiceError):
    """Rate limit exceeded (429)."""
    status_code = 429
    error_code = "rate_limited"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "internal_error"


class ServiceUnavailableError(ServiceError):
    """A required provider is unconfigured or unreachable (503)."""
    status_code = 503
    error_code = "service_unavailable"


class UpstreamServiceError(Exception):
    """Non-success answer from one of the microservices behind the API.

    ``status_code`` is the upstream HTTP status (504 for timeouts, 503 when the
    service could not be reached) and ``error_code`` is the upstream's own
    ``error`` field when it sent one.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        service: str,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.service = service
        self.error_code = error_code

    @property
    def is_timeout(self) -> bool:
        return self.status_code == 504 or "timeout" in self.message.lower()


class NetlistifyError(UpstreamServiceError):
    """Error returned by the netlistify schematic service."""

    def __init__(
        self, message: str, status_code: int, error_code: Optional[str] = None
    ) -> None:
        super().__init__(message, status_code, "netlistify", error_code)


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "PaymentRequiredError",
    "ForbiddenError",
    "NotFoundError",
    "PayloadTooLargeError",
    "UnsupportedMediaTypeError",
    "RateLimitedError",
    "ServerError",
    "ServiceUnavailableError",
    "UpstreamServiceError",
    "NetlistifyError",
]
