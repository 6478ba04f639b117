from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Sequence

from fastapi import Request, Response

from storefront_auth.config import Settings
from storefront_auth.logging import get_logger
from storefront_auth.service.commerce import CartItem, CommerceBackend
from storefront_auth.service.csrf import CSRFValidator
from storefront_auth.service.errors import (
    AuthenticationError,
    ForbiddenError,
    RateLimitedError,
    ServerError,
    ValidationError,
)
from storefront_auth.service.rate_limit import RateLimitDecision, RateLimiter, client_key
from storefront_auth.service.redirects import sanitize_redirect
from storefront_auth.service.results import Degraded, Err, Ok, Outcome
from storefront_auth.service.session import CookieSessionManager

logger = get_logger(__name__)

USERNAME_MIN, USERNAME_MAX = 3, 255
PASSWORD_MIN, PASSWORD_MAX = 6, 128

LOGIN_RATE_LIMIT_ROUTE = "login"


class SessionStatus(str, Enum):
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"
    INVALID = "invalid"


@dataclass
class LoginResult:
    user: dict
    csrf_token: str
    redirect_to: str
    cart_sync: Outcome
    merged_items: int = 0


@dataclass
class RefreshResult:
    user: dict
    csrf_token: str


@dataclass
class SessionCheck:
    status: SessionStatus
    user: Optional[dict] = None

    @property
    def authenticated(self) -> bool:
        return self.status == SessionStatus.AUTHENTICATED


class AuthService:
    """Login, logout, refresh and session checks against the commerce backend.

    Every operation takes the current request and the response it will be
    answered with, so cookie changes land on that response. Errors are raised
    as ``ServiceError`` subclasses carrying the stable wire code; when the
    session was cleared on the way out, the response is attached so the
    error reply still carries the expiring cookies.
    """

    def __init__(
        self,
        settings: Settings,
        backend: CommerceBackend,
        sessions: CookieSessionManager,
        csrf: CSRFValidator,
        rate_limiter: RateLimiter,
    ) -> None:
        self.settings = settings
        self.backend = backend
        self.sessions = sessions
        self.csrf = csrf
        self.rate_limiter = rate_limiter

    async def enforce_login_rate_limit(self, request: Request) -> RateLimitDecision:
        key = client_key(
            request,
            LOGIN_RATE_LIMIT_ROUTE,
            trust_proxy_headers=self.settings.trust_proxy_headers,
        )
        decision = await self.rate_limiter.check(
            key,
            self.settings.login_rate_limit_window_seconds,
            self.settings.login_rate_limit_max,
        )
        if not decision.allowed:
            raise RateLimitedError(
                "Too many login attempts. Please try again later.",
                headers=decision.headers(),
            )
        return decision

    @staticmethod
    def _validate_credentials(username: Any, password: Any) -> tuple[str, str]:
        username = username.strip() if isinstance(username, str) else ""
        password = password if isinstance(password, str) else ""
        if not username or not password:
            raise ValidationError(
                "Username and password are required.", error_code="INVALID_BODY"
            )
        if not USERNAME_MIN <= len(username) <= USERNAME_MAX:
            raise ValidationError("Invalid username format.", error_code="INVALID_USERNAME")
        if not PASSWORD_MIN <= len(password) <= PASSWORD_MAX:
            raise ValidationError(
                f"Password must be between {PASSWORD_MIN} and {PASSWORD_MAX} characters.",
                error_code="INVALID_PASSWORD",
            )
        return username, password

    async def _merge_cart(self, token: str, items: Sequence[CartItem]) -> tuple[Outcome, int]:
        if not items:
            return Ok(), 0
        try:
            result = await self.backend.merge_cart(token, list(items))
        except Exception as exc:
            logger.warning(
                "cart_merge_failed", error_type=type(exc).__name__, error=str(exc)
            )
            return Err("cart_merge_failed", "Cart could not be merged."), 0
        if not result.success:
            logger.warning(
                "cart_merge_partial",
                merged=result.merged_count,
                failed=result.failed_count,
            )
            return Degraded("cart_merge_partial"), result.merged_count
        return Ok(), result.merged_count

    async def login(
        self,
        request: Request,
        response: Response,
        username: Any,
        password: Any,
        *,
        cart_items: Optional[Sequence[CartItem]] = None,
        redirect_to: Optional[str] = None,
    ) -> LoginResult:
        username, password = self._validate_credentials(username, password)
        try:
            result = await self.backend.login(username, password)
        except Exception as exc:
            logger.error(
                "login_backend_error", error_type=type(exc).__name__, error=str(exc)
            )
            raise ServerError(
                "Unable to sign in right now.", error_code="LOGIN_ERROR"
            ) from exc
        if not result.success or not result.token:
            logger.info("login_failed")
            raise AuthenticationError(
                "Invalid username or password.", error_code="LOGIN_FAILED"
            )

        csrf_token = self.sessions.set_session(response, result.token)
        cart_sync, merged = await self._merge_cart(result.token, cart_items or [])
        target = sanitize_redirect(
            redirect_to,
            self.settings.allowed_redirect_paths,
            self.settings.default_redirect,
        )
        user = result.user or {}
        logger.info("login_succeeded", user_id=user.get("id"), cart_sync=cart_sync.status)
        return LoginResult(
            user=user,
            csrf_token=csrf_token,
            redirect_to=target,
            cart_sync=cart_sync,
            merged_items=merged,
        )

    async def logout(
        self, request: Request, response: Response, csrf_token: Optional[str] = None
    ) -> Outcome:
        if csrf_token is not None and not self.csrf.validate(request, csrf_token):
            raise ForbiddenError("Invalid CSRF token.", error_code="INVALID_CSRF")

        outcome: Outcome = Ok()
        token = self.sessions.get_session(request)
        if token:
            try:
                await self.backend.logout(token)
            except Exception as exc:
                logger.warning(
                    "backend_logout_failed",
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                outcome = Degraded("backend_logout_failed")
        self.sessions.clear_session(response)
        logger.info("logout", outcome=outcome.status)
        return outcome

    def _clear_quietly(self, response: Response) -> None:
        try:
            self.sessions.clear_session(response)
        except Exception as exc:
            logger.error("session_clear_failed", error=str(exc))

    async def refresh(self, request: Request, response: Response) -> RefreshResult:
        token = self.sessions.get_session(request)
        if not token:
            if request.cookies.get(self.sessions.session_cookie):
                self.sessions.clear_session(response)
                logger.info("refresh_rejected_unverifiable_cookie")
                raise AuthenticationError(
                    "Session is no longer valid.",
                    error_code="INVALID_TOKEN",
                    staged_response=response,
                )
            raise AuthenticationError("No session to refresh.", error_code="NO_TOKEN")
        try:
            if not await self.backend.validate_token(token):
                self.sessions.clear_session(response)
                raise AuthenticationError(
                    "Session is no longer valid.",
                    error_code="INVALID_TOKEN",
                    staged_response=response,
                )
            user = await self.backend.get_user_data(token)
            if not user:
                self.sessions.clear_session(response)
                raise AuthenticationError(
                    "Session is no longer valid.",
                    error_code="USER_NOT_FOUND",
                    staged_response=response,
                )
            csrf_token = self.sessions.set_session(response, token)
        except AuthenticationError:
            raise
        except Exception as exc:
            logger.error("refresh_failed", error_type=type(exc).__name__, error=str(exc))
            self._clear_quietly(response)
            raise ServerError(
                "Unable to refresh session.",
                error_code="REFRESH_FAILED",
                staged_response=response,
            ) from exc
        logger.info("session_refreshed", user_id=user.get("id"))
        return RefreshResult(user=user, csrf_token=csrf_token)

    async def validate_session(self, request: Request, response: Response) -> SessionCheck:
        """Check the current session without rotating it.

        Sessions the backend no longer accepts are cleared on ``response``.
        """
        token = self.sessions.get_session(request)
        if not token:
            if request.cookies.get(self.sessions.session_cookie):
                # Present but unverifiable: drop it
                self.sessions.clear_session(response)
                return SessionCheck(SessionStatus.INVALID)
            return SessionCheck(SessionStatus.UNAUTHENTICATED)
        try:
            valid = await self.backend.validate_token(token)
            user = await self.backend.get_user_data(token) if valid else None
        except Exception as exc:
            logger.warning(
                "session_validation_error", error_type=type(exc).__name__, error=str(exc)
            )
            valid, user = False, None
        if not valid or not user:
            self.sessions.clear_session(response)
            return SessionCheck(SessionStatus.INVALID)
        return SessionCheck(SessionStatus.AUTHENTICATED, user)

    def current_csrf_token(self, request: Request) -> Optional[str]:
        state = self.sessions.read_session(request)
        return state.csrf_token if state else None
