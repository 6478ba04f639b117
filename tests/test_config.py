import pytest
from pydantic import ValidationError

from storefront_auth.config import DEFAULT_REDIRECT, Environment, Settings

LONG_SECRET = "s" * 40


def test_defaults():
    settings = Settings(session_secret=LONG_SECRET)
    assert settings.session_ttl_seconds == 3600
    assert settings.session_cookie_name == "session"
    assert settings.csrf_cookie_name == "csrf-token"
    assert settings.login_rate_limit_max == 5
    assert settings.login_rate_limit_window_seconds == 900
    assert settings.redis_timeout_seconds == 2.0
    assert settings.default_redirect == DEFAULT_REDIRECT
    assert "/dashboard/orders" in settings.allowed_redirect_paths


def test_production_requires_strong_secret():
    with pytest.raises(ValidationError):
        Settings(environment=Environment.PRODUCTION, session_secret="short")
    with pytest.raises(ValidationError):
        Settings(environment=Environment.PRODUCTION)


def test_missing_secret_is_generated_outside_production():
    settings = Settings(environment=Environment.DEVELOPMENT)
    assert settings.session_secret and len(settings.session_secret) >= 32
    assert Settings().session_secret != settings.session_secret


def test_secure_cookies_follow_environment():
    assert Settings(environment="production", session_secret=LONG_SECRET).secure_cookies is True
    assert Settings(session_secret=LONG_SECRET).secure_cookies is False
    assert Settings(session_secret=LONG_SECRET, cookie_secure=True).secure_cookies is True


@pytest.mark.parametrize("value", ["none", "bogus"])
def test_samesite_must_be_lax_or_strict(value):
    with pytest.raises(ValidationError):
        Settings(session_secret=LONG_SECRET, cookie_samesite=value)


def test_samesite_is_normalized():
    assert Settings(session_secret=LONG_SECRET, cookie_samesite="Strict").cookie_samesite == "strict"


def test_from_env_parses_csv_and_blank_redis(monkeypatch):
    monkeypatch.setenv("ALLOWED_REDIRECT_PATHS", "/a, /b ,")
    monkeypatch.setenv("REDIS_URL", "")
    monkeypatch.setenv("COMMERCE_API_URL", "https://shop.example.com/")
    settings = Settings.from_env()
    assert settings.allowed_redirect_paths == ["/a", "/b"]
    assert settings.redis_url is None
    assert settings.commerce_api_url == "https://shop.example.com"
