from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from wessley.logging import get_correlation_id, get_logger, sanitize_error_message
from wessley.service.errors import ServiceError, UpstreamServiceError
from wessley.service.rate_limit import RateLimitExceeded, rate_limited_response
from wessley.storage.errors import ConstraintViolation

logger = get_logger(__name__)

# Stable error codes for plain HTTP exceptions
_STATUS_TO_CODE = {
    400: "invalid_input",
    401: "unauthorized",
    402: "subscription_required",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    413: "file_too_large",
    415: "unsupported_type",
    429: "rate_limited",
    500: "internal_error",
    503: "service_unavailable",
}


def _error_code_for_status(status_code: int) -> str:
    return _STATUS_TO_CODE.get(status_code, "internal_error")


def error_body(
    code: str,
    message: str,
    details: dict | list | None = None,
    **extra,
) -> dict:
    body: dict = {"error": code, "message": message}
    if details:
        body["details"] = details
    body.update(extra)
    body["request_id"] = get_correlation_id()
    return body


def _error_response(
    status_code: int,
    message: str,
    details: dict | list | None = None,
    code: str | None = None,
    headers: dict | None = None,
    **extra,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_body(code or _error_code_for_status(status_code), message, details, **extra),
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers that render every failure as ``{error, message, request_id}``."""

    @app.exception_handler(RateLimitExceeded)
    async def handle_rate_limited(request: Request, exc: RateLimitExceeded):
        return rate_limited_response(exc.result)

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(409, exc.message, exc.detail, code="conflict")

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
        )
        return _error_response(exc.status_code, exc.message, exc.detail, code=exc.error_code)

    @app.exception_handler(UpstreamServiceError)
    async def handle_upstream_error(request: Request, exc: UpstreamServiceError):
        logger.error(
            "upstream_service_error",
            path=request.url.path,
            method=request.method,
            service=exc.service,
            status_code=exc.status_code,
            error_code=exc.error_code,
        )
        status_code = exc.status_code if exc.status_code >= 400 else 502
        return _error_response(
            status_code,
            sanitize_error_message(exc.message),
            code=exc.error_code or "service_error",
            service=exc.service,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        logger.warning(
            "request_validation_failed",
            path=request.url.path,
            method=request.method,
            errors=len(errors),
        )
        return _error_response(400, "Invalid request body", errors, code="invalid_input")

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        # _http_error() detail: {"error": code, "message": ..., "details"?, extras}
        if isinstance(exc.detail, dict) and "error" in exc.detail:
            detail = dict(exc.detail)
            code = detail.pop("error")
            message = detail.pop("message", "http error")
            details = detail.pop("details", None)
            log_fn = logger.error if exc.status_code >= 500 else logger.warning
            log_fn(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                error_code=code,
                message=message,
            )
            return _error_response(
                exc.status_code, message, details, code=code, headers=exc.headers, **detail
            )
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        if exc.status_code >= 500:
            logger.error(
                "http_error_fallback",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
        return _error_response(exc.status_code, message, headers=exc.headers)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return _error_response(500, "An unexpected error occurred", code="internal_error")
