from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Request, Response

from storefront_auth.config import Settings
from storefront_auth.logging import get_logger
from storefront_auth.service.tokens import SessionState, TokenStore, looks_like_token

logger = get_logger(__name__)


def new_csrf_token() -> str:
    return secrets.token_urlsafe(32)


class CookieSessionManager:
    """Reads and writes the session and CSRF cookies.

    The session cookie is httpOnly and carries the signed backend credential.
    The CSRF cookie holds the same CSRF token bound into the session payload
    and is left readable so page scripts can echo it back.
    """

    def __init__(self, settings: Settings, token_store: TokenStore) -> None:
        self.settings = settings
        self.token_store = token_store

    @property
    def session_cookie(self) -> str:
        return self.settings.session_cookie_name

    @property
    def csrf_cookie(self) -> str:
        return self.settings.csrf_cookie_name

    def _cookie_options(self) -> dict:
        return {
            "secure": self.settings.secure_cookies,
            "samesite": self.settings.cookie_samesite,
            "path": "/",
        }

    def set_session(self, response: Response, token: str) -> str:
        """Write a fresh session for ``token`` and return its new CSRF token."""
        csrf_token = new_csrf_token()
        cookie_value, state = self.token_store.encode(token, csrf_token)
        max_age = self.token_store.ttl_seconds
        options = self._cookie_options()
        response.set_cookie(
            self.session_cookie,
            cookie_value,
            max_age=max_age,
            httponly=True,
            **options,
        )
        response.set_cookie(
            self.csrf_cookie,
            csrf_token,
            max_age=max_age,
            httponly=False,
            **options,
        )
        logger.info("session_set", expires_at=state.expires_at)
        return csrf_token

    def read_session(self, request: Request) -> Optional[SessionState]:
        try:
            raw = request.cookies.get(self.session_cookie)
            if not raw:
                return None
            return self.token_store.decode(raw)
        except Exception as exc:
            logger.warning(
                "session_read_failed", error_type=type(exc).__name__, error=str(exc)
            )
            return None

    def get_session(self, request: Request) -> Optional[str]:
        state = self.read_session(request)
        return state.token if state else None

    def has_session_cookie(self, request: Request) -> bool:
        """Presence and shape only; the signature is not verified here."""
        try:
            return looks_like_token(request.cookies.get(self.session_cookie))
        except Exception as exc:
            logger.warning("session_cookie_inspect_failed", error=str(exc))
            return False

    def clear_session(self, response: Response) -> None:
        options = self._cookie_options()
        response.delete_cookie(self.session_cookie, httponly=True, **options)
        response.delete_cookie(self.csrf_cookie, httponly=False, **options)
