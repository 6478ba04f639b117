from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Request

from storefront_auth.logging import get_logger
from storefront_auth.service.session import CookieSessionManager

logger = get_logger(__name__)

CSRF_HEADER = "X-CSRF-Token"


class CSRFValidator:
    """Double-submit check against the token bound into the signed session."""

    def __init__(self, sessions: CookieSessionManager) -> None:
        self.sessions = sessions

    def validate(self, request: Request, submitted: Optional[str]) -> bool:
        if not submitted or not isinstance(submitted, str):
            return False
        state = self.sessions.read_session(request)
        if state is None:
            logger.warning("csrf_no_session")
            return False
        if not hmac.compare_digest(state.csrf_token.encode(), submitted.encode()):
            logger.warning("csrf_mismatch")
            return False
        return True

    @staticmethod
    def submitted_token(request: Request, body_token: Optional[str] = None) -> Optional[str]:
        """The CSRF value sent with a request: JSON body first, then header."""
        if body_token:
            return body_token
        return request.headers.get(CSRF_HEADER) or None
