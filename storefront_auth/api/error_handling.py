from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from storefront_auth.api.schemas import ErrorBody, ErrorEnvelope
from storefront_auth.logging import get_logger
from storefront_auth.service.errors import ServiceError

logger = get_logger(__name__)

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

_STATUS_TO_CODE = {
    400: "INVALID_BODY",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
}


def _error_code_for_status(status_code: int) -> str:
    return _STATUS_TO_CODE.get(status_code, "INTERNAL_ERROR")


def error_response(
    status_code: int,
    message: str,
    *,
    code: Optional[str] = None,
    details: Any = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Render ``{success: false, error: {code, message}}`` with no-store headers."""
    body = ErrorEnvelope(
        error=ErrorBody(
            code=code or _error_code_for_status(status_code),
            message=message,
            details=details,
        )
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
        headers={**NO_STORE_HEADERS, **(headers or {})},
    )


def _copy_set_cookie(source: Any, target: JSONResponse) -> None:
    if source is None:
        return
    for key, value in source.raw_headers:
        if key.lower() == b"set-cookie":
            target.raw_headers.append((key, value))


def register_exception_handlers(app: FastAPI) -> None:
    """Install the auth error envelope for service, validation and HTTP errors."""

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
        response = error_response(
            exc.status_code,
            exc.message,
            code=exc.error_code,
            details=exc.detail or None,
            headers=exc.headers,
        )
        _copy_set_cookie(exc.staged_response, response)
        return response

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        logger.warning(
            "request_validation_error",
            path=request.url.path,
            method=request.method,
            error_count=len(exc.errors()),
        )
        return error_response(400, "Invalid request body.", code="INVALID_BODY")

    @app.exception_handler(PydanticValidationError)
    async def handle_model_validation(request: Request, exc: PydanticValidationError):
        logger.warning(
            "body_validation_error",
            path=request.url.path,
            method=request.method,
            error_count=exc.error_count(),
        )
        return error_response(400, "Invalid request body.", code="INVALID_BODY")

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
        return error_response(exc.status_code, message, headers=exc.headers)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )
        return error_response(500, "internal server error", code="INTERNAL_ERROR")
