import pytest

from storefront_auth.service.guard import (
    RouteClass,
    RouteGuard,
    classify_path,
    is_guarded_path,
)


@pytest.mark.parametrize(
    "path,expected",
    [
        ("/", RouteClass.PUBLIC),
        ("/shop/shoes", RouteClass.PUBLIC),
        ("/login", RouteClass.PUBLIC),
        ("/checkout", RouteClass.PUBLIC),
        ("/my-account", RouteClass.PROTECTED),
        ("/dashboard/orders", RouteClass.PROTECTED),
        ("/orders/5", RouteClass.PROTECTED),
        ("/checkout/order-received/12", RouteClass.PROTECTED),
        ("/blog/post", RouteClass.UNCLASSIFIED),
    ],
)
def test_classify_path(path, expected):
    assert classify_path(path) == expected


@pytest.mark.parametrize(
    "path", ["/api/auth/login", "/_next/static/chunk.js", "/static/app.css", "/favicon.ico", "/img/a.PNG"]
)
def test_assets_and_api_are_not_guarded(path):
    assert is_guarded_path(path) is False


def test_pages_are_guarded():
    assert is_guarded_path("/my-account") is True


class TestRouteGuard:
    def test_anonymous_protected_request_is_redirected(self):
        decision = RouteGuard().decide("/dashboard/orders", has_session=False)
        assert not decision.allowed
        assert decision.redirect_to == "/login?next=%2Fdashboard%2Forders"

    def test_session_allows_protected_request(self):
        decision = RouteGuard().decide("/dashboard", has_session=True)
        assert decision.allowed
        assert decision.route_class == RouteClass.PROTECTED

    def test_public_and_unclassified_pass(self):
        guard = RouteGuard()
        assert guard.decide("/shop", has_session=False).allowed
        assert guard.decide("/blog", has_session=False).allowed

    def test_next_target_follows_allow_list(self):
        decision = RouteGuard().decide("/account/secret", has_session=False)
        assert decision.redirect_to == "/login?next=%2Faccount%2Fsecret"
        decision = RouteGuard().decide("/orders/1", has_session=False)
        assert decision.redirect_to == "/login?next=%2Fmy-account"

    def test_classification_errors_fail_open(self, monkeypatch):
        def boom(path):
            raise RuntimeError("bad matcher")

        monkeypatch.setattr("storefront_auth.service.guard.classify_path", boom)
        decision = RouteGuard().decide("/my-account", has_session=False)
        assert decision.allowed
        assert decision.route_class == RouteClass.UNCLASSIFIED
