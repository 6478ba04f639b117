"""Tests for the WordPress/WooCommerce backend client and user normalization."""

import json

import httpx
import pytest

from storefront_auth.service.commerce import (
    CART_ADD_ITEM_PATH,
    TOKEN_PATH,
    USER_PATH,
    VALIDATE_PATH,
    CartItem,
    HttpCommerceBackend,
    normalize_user,
)


def _backend(handler, **kwargs):
    return HttpCommerceBackend(
        "http://commerce.test/", transport=httpx.MockTransport(handler), **kwargs
    )


class TestNormalizeUser:
    def test_wordpress_user(self):
        user = normalize_user(
            {"id": "7", "email": "a@b.c", "name": "Ann", "slug": "ann", "roles": ["customer"]}
        )
        assert user == {
            "id": 7,
            "email": "a@b.c",
            "name": "Ann",
            "username": "ann",
            "roles": ["customer"],
        }

    def test_name_falls_back_to_first_and_last(self):
        user = normalize_user({"id": 1, "first_name": "Ann", "last_name": "Lee"})
        assert user["name"] == "Ann Lee"
        assert user["roles"] == []

    @pytest.mark.parametrize("payload", [None, [], {}, {"id": 0}, {"id": "abc"}])
    def test_unusable_payloads(self, payload):
        assert normalize_user(payload) is None


class TestHttpCommerceBackend:
    async def test_login_success(self):
        def handler(request):
            assert request.url.path == TOKEN_PATH
            assert json.loads(request.content) == {"username": "ann", "password": "pw123456"}
            return httpx.Response(
                200,
                json={"token": "jwt-1", "user": {"id": 3, "email": "a@b.c", "name": "Ann"}},
            )

        backend = _backend(handler)
        result = await backend.login("ann", "pw123456")
        await backend.close()
        assert result.success is True
        assert result.token == "jwt-1"
        assert result.user["id"] == 3

    async def test_login_fetches_user_when_token_response_lacks_email(self):
        def handler(request):
            if request.url.path == TOKEN_PATH:
                return httpx.Response(200, json={"token": "jwt-1", "user_display_name": "Ann"})
            assert request.url.path == USER_PATH
            assert request.headers["Authorization"] == "Bearer jwt-1"
            return httpx.Response(200, json={"id": 3, "email": "a@b.c", "slug": "ann"})

        backend = _backend(handler)
        result = await backend.login("ann", "pw123456")
        await backend.close()
        assert result.user["email"] == "a@b.c"

    async def test_login_rejected(self):
        backend = _backend(lambda request: httpx.Response(403, json={"code": "incorrect_password"}))
        result = await backend.login("ann", "wrong-pw")
        await backend.close()
        assert result.success is False
        assert result.token is None

    async def test_login_server_error_raises(self):
        backend = _backend(lambda request: httpx.Response(502, text="bad gateway"))
        with pytest.raises(httpx.HTTPStatusError):
            await backend.login("ann", "pw123456")
        await backend.close()

    async def test_validate_token(self):
        def handler(request):
            assert request.url.path == VALIDATE_PATH
            ok = request.headers["Authorization"] == "Bearer good"
            return httpx.Response(200 if ok else 403, json={})

        backend = _backend(handler)
        assert await backend.validate_token("good") is True
        assert await backend.validate_token("bad") is False
        await backend.close()

    async def test_get_user_data_unauthorized_is_none(self):
        backend = _backend(lambda request: httpx.Response(401, json={}))
        assert await backend.get_user_data("jwt-1") is None
        await backend.close()

    async def test_merge_cart_reports_partial_failure(self):
        def handler(request):
            assert request.url.path == CART_ADD_ITEM_PATH
            body = json.loads(request.content)
            return httpx.Response(400 if body["id"] == 2 else 201, json={})

        backend = _backend(handler)
        result = await backend.merge_cart(
            "jwt-1", [CartItem(1), CartItem(2), CartItem(3, 2, variation_id=9)]
        )
        await backend.close()
        assert result.success is False
        assert result.merged_count == 2
        assert result.failed_count == 1

    async def test_logout_is_noop_without_path(self):
        calls = []
        backend = _backend(lambda request: calls.append(request) or httpx.Response(200))
        await backend.logout("jwt-1")
        await backend.close()
        assert calls == []

    async def test_logout_posts_to_configured_path(self):
        seen = []

        def handler(request):
            seen.append(request.url.path)
            return httpx.Response(200, json={})

        backend = _backend(handler, logout_path="/wp-json/storefront/v1/logout")
        await backend.logout("jwt-1")
        await backend.close()
        assert seen == ["/wp-json/storefront/v1/logout"]
