from __future__ import annotations

import asyncio
import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from storefront_auth.config import get_settings, reset_settings_cache
from storefront_auth.logging import get_logger
from storefront_auth.service.auth import AuthService
from storefront_auth.service.commerce import CommerceBackend, HttpCommerceBackend
from storefront_auth.service.csrf import CSRFValidator
from storefront_auth.service.guard import RouteGuard
from storefront_auth.service.rate_limit import RateLimiter, RateLimitStore
from storefront_auth.service.session import CookieSessionManager
from storefront_auth.service.tokens import TokenStore
from storefront_auth.storage.memory import MemoryRateLimitStore
from storefront_auth.storage.redis_cache import RedisRateLimitStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if not parsed.password:
            return url
        netloc = parsed.hostname or ""
        if parsed.port:
            netloc = f"{netloc}:{parsed.port}"
        netloc = f"{parsed.username or ''}:***@{netloc}"
        return urlunparse(
            (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
        )
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self, backend: Optional[CommerceBackend] = None):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            environment=self.settings.environment.value,
            test_mode=self.settings.test_mode,
        )

        self.redis: Optional[RedisRateLimitStore] = None
        redis_error: Exception | None = None
        if self.settings.redis_url:
            try:
                store = RedisRateLimitStore(
                    self.settings.redis_url,
                    socket_timeout=self.settings.redis_timeout_seconds,
                )
                store.verify_connection()
                self.redis = store
            except Exception as exc:
                redis_error = exc
                self.redis = None

        rate_limit_store: RateLimitStore
        if self.redis is not None:
            rate_limit_store = self.redis
        else:
            if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
                raise RuntimeError(
                    "Redis is required for shared login rate limits; start Redis or set "
                    "TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for the in-memory fallback."
                ) from redis_error
            fallback_mode = (
                "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
            )
            logger.warning(
                "redis_disabled_fallback",
                redis_url=_mask_url_password(self.settings.redis_url),
                error=str(redis_error) if redis_error else "redis_url_missing",
                message=f"Running without Redis under {fallback_mode}; rate limits are per-process only.",
                mode=fallback_mode,
            )
            rate_limit_store = MemoryRateLimitStore()
        self.rate_limit_store = rate_limit_store

        self.backend: CommerceBackend = backend or HttpCommerceBackend(
            self.settings.commerce_api_url,
            timeout=self.settings.commerce_timeout_seconds,
            logout_path=self.settings.commerce_logout_path,
        )
        self.tokens = TokenStore(
            self.settings.session_secret or "", self.settings.session_ttl_seconds
        )
        self.sessions = CookieSessionManager(self.settings, self.tokens)
        self.csrf = CSRFValidator(self.sessions)
        self.rate_limiter = RateLimiter(self.rate_limit_store)
        self.auth = AuthService(
            self.settings, self.backend, self.sessions, self.csrf, self.rate_limiter
        )
        self.guard = RouteGuard(self.settings.allowed_redirect_paths)

        logger.info(
            "runtime_initialized",
            redis_enabled=self.redis is not None,
            commerce_api_url=self.settings.commerce_api_url,
            secure_cookies=self.settings.secure_cookies,
        )

    async def close(self) -> None:
        close_backend = getattr(self.backend, "close", None)
        if close_backend is not None:
            await close_backend()
        if self.redis is not None:
            await self.redis.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests(backend: Optional[CommerceBackend] = None) -> Runtime:
    """Rebuild the runtime singleton, optionally around a fake backend."""
    global runtime

    with _runtime_lock:
        if runtime is not None and runtime.redis is not None:
            try:
                asyncio.run(runtime.redis.close())
            except RuntimeError as exc:
                logger.warning("runtime_reset_close_failed", error=str(exc))

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(backend=backend)
        return runtime
