from __future__ import annotations

import base64
import hashlib
import hmac
import json
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from storefront_auth.logging import get_logger

logger = get_logger(__name__)

# base64url segments joined by a single dot
_TOKEN_SHAPE = re.compile(r"^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+$")
_MAX_TOKEN_LENGTH = 8192


@dataclass(frozen=True)
class SessionState:
    """Decoded contents of a verified session cookie."""

    token: str
    csrf_token: str
    expires_at: int

    def expired(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) >= self.expires_at


def looks_like_token(value: Optional[str]) -> bool:
    """Cheap shape check used where verifying the signature is not needed."""
    if not value or len(value) > _MAX_TOKEN_LENGTH:
        return False
    return bool(_TOKEN_SHAPE.match(value))


class TokenStore:
    """Signs the backend credential and its CSRF token into one cookie value.

    The value is ``base64url(payload).base64url(HMAC-SHA256(payload))``. Any
    value whose signature, encoding, fields or expiry do not check out is
    rejected as a whole.
    """

    def __init__(
        self,
        secret: str,
        ttl_seconds: int,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("session secret is required")
        self._secret = secret.encode()
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, payload_b64: str) -> str:
        digest = hmac.new(self._secret, payload_b64.encode(), hashlib.sha256).digest()
        return self._encode_segment(digest)

    def encode(self, token: str, csrf_token: str) -> tuple[str, SessionState]:
        if not token:
            raise ValueError("token must be a non-empty string")
        expires_at = int(self._clock()) + self.ttl_seconds
        state = SessionState(token=token, csrf_token=csrf_token, expires_at=expires_at)
        payload = {"tok": token, "csrf": csrf_token, "exp": expires_at}
        payload_b64 = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        return f"{payload_b64}.{self._sign(payload_b64)}", state

    def decode(self, value: Optional[str]) -> Optional[SessionState]:
        if not looks_like_token(value):
            return None
        payload_b64, sig_b64 = value.split(".")
        if not hmac.compare_digest(self._sign(payload_b64), sig_b64):
            logger.warning("session_signature_invalid")
            return None
        try:
            payload: Any = json.loads(self._decode_segment(payload_b64))
        except (ValueError, UnicodeDecodeError) as exc:
            logger.warning("session_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict):
            return None
        token = payload.get("tok")
        csrf_token = payload.get("csrf")
        expires_at = payload.get("exp")
        if not isinstance(token, str) or not token:
            return None
        if not isinstance(csrf_token, str) or not csrf_token:
            return None
        if not isinstance(expires_at, int) or isinstance(expires_at, bool):
            return None
        state = SessionState(token=token, csrf_token=csrf_token, expires_at=expires_at)
        if state.expired(self._clock()):
            logger.info("session_expired", expires_at=expires_at)
            return None
        return state
