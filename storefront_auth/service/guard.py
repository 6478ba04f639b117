from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional
from urllib.parse import urlencode

from storefront_auth.config import ALLOWED_REDIRECT_PATHS
from storefront_auth.logging import get_logger
from storefront_auth.service.redirects import sanitize_redirect

logger = get_logger(__name__)

LOGIN_PATH = "/login"
GUARD_FALLBACK_REDIRECT = "/my-account"

PUBLIC_EXACT = ("/",)
PUBLIC_PREFIXES = (
    "/login",
    "/register",
    "/shop",
    "/products",
    "/product-category",
    "/cart",
    "/checkout",
    "/search",
    "/forgot",
    "/reset",
    "/about",
)
PROTECTED_PREFIXES = (
    "/my-account",
    "/dashboard",
    "/account",
    "/orders",
    "/checkout/order-received",
)

_SKIPPED_PREFIXES = ("/api", "/_next/", "/static", "/favicon.ico")
_ASSET_SUFFIX = re.compile(r"\.(?:svg|png|jpg|jpeg|gif|webp|ico)$", re.IGNORECASE)


class RouteClass(str, Enum):
    PUBLIC = "public"
    PROTECTED = "protected"
    UNCLASSIFIED = "unclassified"


def _matches_prefix(path: str, prefixes: Iterable[str]) -> bool:
    return any(path.startswith(prefix) for prefix in prefixes)


def classify_path(path: str) -> RouteClass:
    """Protected prefixes win over public ones (``/checkout/order-received``)."""
    if _matches_prefix(path, PROTECTED_PREFIXES):
        return RouteClass.PROTECTED
    if path in PUBLIC_EXACT or _matches_prefix(path, PUBLIC_PREFIXES):
        return RouteClass.PUBLIC
    return RouteClass.UNCLASSIFIED


def is_guarded_path(path: str) -> bool:
    """False for API routes and static assets, which the guard never inspects."""
    if _matches_prefix(path, _SKIPPED_PREFIXES):
        return False
    return not _ASSET_SUFFIX.search(path)


@dataclass
class GuardDecision:
    route_class: RouteClass
    redirect_to: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.redirect_to is None


class RouteGuard:
    """Decides, before any page logic runs, whether a request may proceed.

    Only presence and shape of the session cookie are checked here; the
    session itself is verified by the auth endpoints.
    """

    def __init__(
        self,
        allow_list: Iterable[str] = ALLOWED_REDIRECT_PATHS,
        fallback: str = GUARD_FALLBACK_REDIRECT,
    ) -> None:
        self.allow_list = tuple(allow_list)
        self.fallback = fallback

    def login_redirect(self, path: str) -> str:
        target = sanitize_redirect(path, self.allow_list, self.fallback)
        return f"{LOGIN_PATH}?{urlencode({'next': target})}"

    def decide(self, path: str, has_session: bool) -> GuardDecision:
        try:
            route_class = classify_path(path)
            if route_class == RouteClass.PROTECTED and not has_session:
                return GuardDecision(route_class, self.login_redirect(path))
            return GuardDecision(route_class)
        except Exception as exc:
            logger.error(
                "route_guard_failed",
                path=path,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return GuardDecision(RouteClass.UNCLASSIFIED)
