from __future__ import annotations

import os
import secrets
from enum import Enum
from typing import Any, List

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from storefront_auth.logging import get_logger

logger = get_logger(__name__)


class Environment(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TEST = "test"


# Paths a "next" parameter may point at after login
ALLOWED_REDIRECT_PATHS: tuple[str, ...] = (
    "/my-account",
    "/dashboard",
    "/account",
    "/dashboard/orders",
    "/dashboard/addresses",
    "/dashboard/wishlist",
    "/dashboard/quotes",
    "/dashboard/settings",
    "/shop",
    "/cart",
    "/checkout",
)

DEFAULT_REDIRECT = "/dashboard"

_MIN_SECRET_LENGTH = 32


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


def _split_csv(value: Any) -> Any:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class Settings(BaseModel):
    """Runtime settings for the storefront session service."""

    environment: Environment = env_field(Environment.DEVELOPMENT, "ENVIRONMENT")
    # Session cookies
    session_secret: str | None = env_field(
        None,
        "SESSION_SECRET",
        description="HMAC key used to sign session cookies",
    )
    session_ttl_seconds: int = env_field(60 * 60, "SESSION_TTL_SECONDS", gt=0)
    session_cookie_name: str = env_field("session", "SESSION_COOKIE_NAME")
    csrf_cookie_name: str = env_field("csrf-token", "CSRF_COOKIE_NAME")
    cookie_samesite: str = env_field("lax", "COOKIE_SAMESITE")
    cookie_secure: bool | None = env_field(
        None,
        "COOKIE_SECURE",
        description="Force the Secure cookie flag; defaults to on in production",
    )
    # Remote commerce backend
    commerce_api_url: str = env_field("http://localhost:8080", "COMMERCE_API_URL")
    commerce_timeout_seconds: float = env_field(5.0, "COMMERCE_TIMEOUT_SECONDS", gt=0)
    commerce_logout_path: str | None = env_field(
        None,
        "COMMERCE_LOGOUT_PATH",
        description="Optional backend path notified on logout",
    )
    # Rate limiting
    redis_url: str | None = env_field("redis://localhost:6379/0", "REDIS_URL")
    redis_timeout_seconds: float = env_field(2.0, "REDIS_TIMEOUT_SECONDS", gt=0)
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(False, "TEST_MODE")
    login_rate_limit_max: int = env_field(5, "LOGIN_RATE_LIMIT_MAX")
    login_rate_limit_window_seconds: int = env_field(
        15 * 60, "LOGIN_RATE_LIMIT_WINDOW_SECONDS"
    )
    trust_proxy_headers: bool = env_field(
        False,
        "TRUST_PROXY_HEADERS",
        description="Use the first X-Forwarded-For hop as the client address",
    )
    # Redirects
    allowed_redirect_paths: List[str] = env_field(
        list(ALLOWED_REDIRECT_PATHS), "ALLOWED_REDIRECT_PATHS"
    )
    default_redirect: str = env_field(DEFAULT_REDIRECT, "DEFAULT_REDIRECT")
    # HTTP surface
    cors_allow_origins: List[str] = env_field([], "CORS_ALLOW_ORIGINS")
    enable_hsts: bool = env_field(True, "ENABLE_HSTS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def secure_cookies(self) -> bool:
        if self.cookie_secure is not None:
            return self.cookie_secure
        return self.is_production

    @field_validator("allowed_redirect_paths", "cors_allow_origins", mode="before")
    @classmethod
    def _parse_csv(cls, value: Any) -> Any:
        return _split_csv(value)

    @field_validator("cookie_samesite")
    @classmethod
    def _validate_samesite(cls, value: str) -> str:
        normalized = (value or "lax").lower()
        # "none" would let cross-site requests carry the session cookie
        if normalized not in {"lax", "strict"}:
            raise ValueError("COOKIE_SAMESITE must be 'lax' or 'strict'")
        return normalized

    @field_validator("redis_url")
    @classmethod
    def _blank_redis_url(cls, value: str | None) -> str | None:
        return value or None

    @field_validator("commerce_api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def _ensure_session_secret(self) -> "Settings":
        if self.session_secret and len(self.session_secret) >= _MIN_SECRET_LENGTH:
            return self
        if self.is_production:
            raise ValueError(
                f"SESSION_SECRET must be set to at least {_MIN_SECRET_LENGTH} characters in production"
            )
        if self.session_secret:
            logger.warning(
                "session_secret_too_short",
                length=len(self.session_secret),
                message="Replacing short SESSION_SECRET with a generated one",
            )
        else:
            logger.warning(
                "session_secret_generated",
                message="SESSION_SECRET not set; sessions will not survive a restart",
            )
        self.session_secret = secrets.token_urlsafe(64)
        return self


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
