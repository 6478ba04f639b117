import asyncio
import inspect
import os
import sys
from pathlib import Path

# Set before any import that might build settings or the runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("SESSION_SECRET", "test-session-secret-for-testing-only-0123456789")
os.environ.setdefault("COMMERCE_API_URL", "http://commerce.test")
# Empty REDIS_URL keeps rate limits in the in-memory store
os.environ["REDIS_URL"] = ""

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from storefront_auth.service.runtime import reset_runtime_for_tests  # noqa: E402
from storefront_auth.service.commerce import BackendLoginResult, CartSyncResult  # noqa: E402


class FakeCommerceBackend:
    """In-memory stand-in for the commerce backend, recording every call."""

    def __init__(self) -> None:
        self.users = {"shopper": ("correct-horse", "backend-token-1")}
        self.valid_tokens = {"backend-token-1"}
        self.user_records = {
            "backend-token-1": {
                "id": 42,
                "email": "shopper@example.com",
                "name": "Shop Per",
                "username": "shopper",
                "roles": ["customer"],
            }
        }
        self.calls: list[tuple] = []
        self.login_error: Exception | None = None
        self.logout_error: Exception | None = None
        self.merge_error: Exception | None = None
        self.merge_failures = 0
        self.user_error: Exception | None = None

    async def login(self, username, password):
        self.calls.append(("login", username))
        if self.login_error:
            raise self.login_error
        record = self.users.get(username)
        if not record or record[0] != password:
            return BackendLoginResult(success=False, error="invalid_credentials")
        token = record[1]
        return BackendLoginResult(success=True, token=token, user=self.user_records.get(token))

    async def validate_token(self, token):
        self.calls.append(("validate_token", token))
        return token in self.valid_tokens

    async def get_user_data(self, token):
        self.calls.append(("get_user_data", token))
        if self.user_error:
            raise self.user_error
        return self.user_records.get(token)

    async def merge_cart(self, token, items):
        self.calls.append(("merge_cart", token, len(items)))
        if self.merge_error:
            raise self.merge_error
        failed = min(self.merge_failures, len(items))
        return CartSyncResult(
            success=failed == 0, merged_count=len(items) - failed, failed_count=failed
        )

    async def logout(self, token):
        self.calls.append(("logout", token))
        if self.logout_error:
            raise self.logout_error

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def backend():
    return FakeCommerceBackend()


@pytest.fixture(autouse=True)
def reset_runtime_state(backend):
    runtime = reset_runtime_for_tests(backend=backend)
    yield runtime
    reset_runtime_for_tests()


@pytest.fixture
def runtime(reset_runtime_state):
    return reset_runtime_state


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")


def _build_request(cookies=None, headers=None, path="/", client=("203.0.113.7", 40000)):
    from starlette.requests import Request

    raw_headers = []
    if cookies:
        cookie_header = "; ".join(f"{key}={value}" for key, value in cookies.items())
        raw_headers.append((b"cookie", cookie_header.encode()))
    for key, value in (headers or {}).items():
        raw_headers.append((key.lower().encode(), value.encode()))
    scope = {
        "type": "http",
        "method": "POST",
        "path": path,
        "query_string": b"",
        "headers": raw_headers,
        "client": client,
        "scheme": "http",
        "server": ("testserver", 80),
    }
    return Request(scope)


def _parse_set_cookies(response) -> dict:
    """Map cookie name to (value, attributes) for every Set-Cookie header."""
    from http.cookies import SimpleCookie

    parsed = {}
    for header in response.headers.getlist("set-cookie"):
        jar = SimpleCookie()
        jar.load(header)
        for name, morsel in jar.items():
            attributes = header.split(";", 1)[1].lower() if ";" in header else ""
            parsed[name] = (morsel.value, attributes)
    return parsed


@pytest.fixture
def make_request():
    return _build_request


@pytest.fixture
def set_cookies():
    return _parse_set_cookies
