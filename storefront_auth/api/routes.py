from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request, Response

from storefront_auth.api.error_handling import NO_STORE_HEADERS
from storefront_auth.api.schemas import (
    CartSyncOut,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    LogoutResponse,
    RefreshResponse,
    SessionResponse,
    ValidateResponse,
)
from storefront_auth.logging import get_logger
from storefront_auth.service.csrf import CSRFValidator
from storefront_auth.service.errors import ValidationError
from storefront_auth.service.results import Degraded, Err, Outcome
from storefront_auth.service.runtime import get_runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _no_store(response: Response) -> None:
    for key, value in NO_STORE_HEADERS.items():
        response.headers[key] = value


async def _read_json(request: Request, *, required: bool = True) -> dict[str, Any]:
    """Parse the request body as a JSON object.

    Bodies are parsed by hand so that rate limiting runs before validation.
    With ``required=False`` an empty or malformed body reads as ``{}``.
    """
    try:
        payload = await request.json()
    except ValueError:
        if not required:
            return {}
        raise ValidationError("Request body must be valid JSON.", error_code="INVALID_BODY")
    if not isinstance(payload, dict):
        if not required:
            return {}
        raise ValidationError("Request body must be a JSON object.", error_code="INVALID_BODY")
    return payload


def _cart_sync_out(outcome: Outcome, merged: int) -> CartSyncOut:
    if isinstance(outcome, Degraded):
        return CartSyncOut(status="degraded", reason=outcome.reason, merged=merged)
    if isinstance(outcome, Err):
        return CartSyncOut(status="error", reason=outcome.code, merged=merged)
    return CartSyncOut(status="ok", merged=merged)


@router.post("/login", response_model=LoginResponse)
async def login(request: Request, response: Response):
    """Authenticate against the commerce backend and start a session.

    Raises:
        400: missing or malformed credentials
        401: credentials rejected
        429: too many attempts from this client
        500: backend unavailable
    """
    _no_store(response)
    runtime = get_runtime()
    decision = await runtime.auth.enforce_login_rate_limit(request)
    decision.apply_headers(response)

    body = LoginRequest.model_validate(await _read_json(request))
    result = await runtime.auth.login(
        request,
        response,
        body.username,
        body.password,
        cart_items=[item.to_cart_item() for item in body.cart_items],
        redirect_to=body.requested_redirect,
    )
    return LoginResponse(
        user=result.user,
        redirect_to=result.redirect_to,
        cart_sync=_cart_sync_out(result.cart_sync, result.merged_items),
        csrf_token=result.csrf_token,
    )


@router.post("/logout", response_model=LogoutResponse)
async def logout(request: Request, response: Response):
    """End the session. A supplied CSRF token must match; none is tolerated."""
    _no_store(response)
    runtime = get_runtime()
    body = LogoutRequest.model_validate(await _read_json(request, required=False))
    submitted = CSRFValidator.submitted_token(request, body.csrf_token)
    outcome = await runtime.auth.logout(request, response, submitted)
    if isinstance(outcome, Degraded):
        logger.info("logout_degraded", reason=outcome.reason)
    return LogoutResponse()


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(request: Request, response: Response):
    _no_store(response)
    runtime = get_runtime()
    result = await runtime.auth.refresh(request, response)
    return RefreshResponse(user=result.user, csrf_token=result.csrf_token)


@router.get(
    "/validate", response_model=ValidateResponse, response_model_exclude_none=True
)
async def validate(request: Request, response: Response):
    _no_store(response)
    runtime = get_runtime()
    check = await runtime.auth.validate_session(request, response)
    if not check.authenticated:
        response.status_code = 401
        return ValidateResponse(valid=False)
    return ValidateResponse(valid=True, user=check.user)


@router.get("/session", response_model=SessionResponse, response_model_exclude_none=True)
async def session(request: Request, response: Response):
    """Session summary for client hydration; never rotates the session."""
    _no_store(response)
    runtime = get_runtime()
    check = await runtime.auth.validate_session(request, response)
    if not check.authenticated:
        return SessionResponse(authenticated=False)
    return SessionResponse(
        authenticated=True,
        user=check.user,
        csrf_token=runtime.auth.current_csrf_token(request),
    )
