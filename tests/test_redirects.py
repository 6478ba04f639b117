"""Tests for the post-login redirect sanitizer."""

import pytest

from storefront_auth.config import ALLOWED_REDIRECT_PATHS
from storefront_auth.service.redirects import is_safe_redirect, sanitize_redirect

FALLBACK = "/dashboard"


def _sanitize(value):
    return sanitize_redirect(value, ALLOWED_REDIRECT_PATHS, FALLBACK)


class TestSanitizeRedirect:
    @pytest.mark.parametrize(
        "value",
        [
            "//evil.com",
            "https://evil.com/my-account",
            "http://evil.com",
            "javascript:alert(1)",
            "JavaScript:alert(1)",
            "data:text/html,hi",
            "vbscript:msgbox",
            "file:///etc/passwd",
            "about:blank",
            "ftp://evil.com",
            "mailto:a@b.c",
            "\\\\evil.com",
            "/\\evil.com",
        ],
    )
    def test_rejects_absolute_and_dangerous_targets(self, value):
        assert _sanitize(value) == FALLBACK

    @pytest.mark.parametrize(
        "value",
        [
            "/dashboard/../admin",
            "/my-account/..%2F..%2Fadmin",
            "/dashboard/%2e%2e/%2e%2e/etc",
        ],
    )
    def test_rejects_traversal_including_encoded(self, value):
        assert _sanitize(value) == FALLBACK

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_empty_input_falls_back(self, value):
        assert _sanitize(value) == FALLBACK

    def test_exact_and_sub_path_matches_are_accepted(self):
        assert _sanitize("/dashboard/orders") == "/dashboard/orders"
        assert _sanitize("/my-account") == "/my-account"
        assert _sanitize("/dashboard/orders/123") == "/dashboard/orders/123"

    def test_prefix_without_separator_is_not_a_sub_path(self):
        assert _sanitize("/dashboardevil") == FALLBACK
        assert _sanitize("/shopping") == FALLBACK

    def test_paths_outside_allow_list_fall_back(self):
        assert _sanitize("/admin") == FALLBACK
        assert _sanitize("/orders/17") == FALLBACK

    def test_query_and_fragment_are_dropped(self):
        assert _sanitize("/cart?coupon=x#top") == "/cart"

    def test_missing_leading_slash_and_repeated_slashes_are_normalized(self):
        assert _sanitize("shop") == "/shop"
        assert _sanitize("/dashboard///orders") == "/dashboard/orders"

    def test_control_characters_are_stripped(self):
        assert _sanitize("/cart\n") == "/cart"
        assert _sanitize("/ca\trt") == "/cart"

    def test_none_allow_list_skips_only_the_allow_list(self):
        assert sanitize_redirect("/anything", None, FALLBACK) == "/anything"
        assert sanitize_redirect("//evil.com", None, FALLBACK) == FALLBACK

    def test_custom_fallback(self):
        assert sanitize_redirect("https://evil.com", ALLOWED_REDIRECT_PATHS, "/my-account") == "/my-account"


class TestIsSafeRedirect:
    def test_reports_the_same_decision(self):
        assert is_safe_redirect("/dashboard/wishlist") is True
        assert is_safe_redirect("//evil.com") is False
        assert is_safe_redirect("/admin") is False

    def test_requires_a_leading_slash(self):
        assert is_safe_redirect("dashboard") is False
        assert is_safe_redirect("") is False
        assert is_safe_redirect(None) is False
