"""Open-redirect defence for post-login "next" targets.

Every caller-supplied destination is reduced to a same-origin path and
checked against an allow-list. Rejections fall back to a fixed default and
never raise, since this runs on every protected-route redirect.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional
from urllib.parse import unquote, urlsplit

from storefront_auth.config import ALLOWED_REDIRECT_PATHS, DEFAULT_REDIRECT
from storefront_auth.logging import get_logger

logger = get_logger(__name__)

_DANGEROUS_SCHEMES = ("javascript:", "data:", "vbscript:", "file:", "about:")
_SCHEME_PREFIXES = ("http://", "https://", "//", "ftp://", "mailto:")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_REPEATED_SLASHES = re.compile(r"/{2,}")


def _has_scheme_or_host(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered.startswith(_DANGEROUS_SCHEMES) or lowered.startswith(_SCHEME_PREFIXES):
        return True
    # Browsers treat "/\evil.com" and "\\evil.com" like "//evil.com"
    if lowered.startswith("\\") or lowered.startswith("/\\"):
        return True
    try:
        parts = urlsplit(lowered)
    except ValueError:
        return True
    return bool(parts.scheme or parts.netloc)


def _has_traversal(value: str) -> bool:
    return "../" in value or "..\\" in value


def _normalize_path(value: str) -> str:
    cleaned = _CONTROL_CHARS.sub("", value).strip()
    cleaned = _REPEATED_SLASHES.sub("/", cleaned)
    path = cleaned.split("?", 1)[0].split("#", 1)[0]
    if not path.startswith("/"):
        path = f"/{path}"
    return path


def _matches_allow_list(path: str, allow_list: Iterable[str]) -> bool:
    for allowed in allow_list:
        if path == allowed or path.startswith(f"{allowed.rstrip('/')}/"):
            return True
    return False


def _reject(reason: str, value: str, fallback: str) -> str:
    # Log the shape of the input, not the input itself
    logger.warning("redirect_rejected", reason=reason, length=len(value))
    return fallback


def sanitize_redirect(
    requested: Optional[str],
    allow_list: Optional[Iterable[str]] = ALLOWED_REDIRECT_PATHS,
    fallback: str = DEFAULT_REDIRECT,
) -> str:
    """Return a safe same-origin path for ``requested`` or ``fallback``.

    An empty or missing value is a rejection, not "no preference", so a
    blank ``next`` parameter cannot bounce the user back to the current page.
    Passing ``allow_list=None`` skips the allow-list check but keeps every
    other defence.
    """
    if not requested or not isinstance(requested, str) or not requested.strip():
        return fallback

    trimmed = requested.strip()
    if _has_scheme_or_host(trimmed):
        return _reject("absolute_url", trimmed, fallback)

    path = _normalize_path(trimmed)
    if _has_scheme_or_host(path):
        return _reject("absolute_url", trimmed, fallback)
    if _has_traversal(path):
        return _reject("path_traversal", trimmed, fallback)

    try:
        decoded = unquote(path, errors="strict")
    except UnicodeDecodeError:
        return _reject("invalid_encoding", trimmed, fallback)
    if _has_traversal(decoded) or _has_scheme_or_host(decoded) or "\\" in decoded:
        return _reject("encoded_escape", trimmed, fallback)

    if allow_list is not None:
        allowed = list(allow_list)
        if allowed and not _matches_allow_list(path, allowed):
            return _reject("not_allow_listed", trimmed, fallback)

    return path


def is_safe_redirect(
    requested: Optional[str], allow_list: Optional[Iterable[str]] = ALLOWED_REDIRECT_PATHS
) -> bool:
    """True when ``requested`` would be accepted as-is by the sanitizer."""
    if not requested or not isinstance(requested, str):
        return False
    trimmed = requested.strip()
    if not trimmed.startswith("/"):
        return False
    sentinel = "\x00rejected"
    return sanitize_redirect(trimmed, allow_list, sentinel) != sentinel
