from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Protocol

import httpx

from storefront_auth.logging import get_logger

logger = get_logger(__name__)

TOKEN_PATH = "/wp-json/jwt-auth/v1/token"
VALIDATE_PATH = "/wp-json/jwt-auth/v1/token/validate"
USER_PATH = "/wp-json/wp/v2/users/me"
CART_ADD_ITEM_PATH = "/wp-json/wc/store/v1/cart/add-item"


@dataclass
class CartItem:
    product_id: int
    quantity: int = 1
    variation_id: Optional[int] = None


@dataclass
class BackendLoginResult:
    success: bool
    token: Optional[str] = None
    user: Optional[dict] = None
    error: Optional[str] = None


@dataclass
class CartSyncResult:
    success: bool
    merged_count: int = 0
    failed_count: int = 0
    errors: list[str] = field(default_factory=list)


class CommerceBackend(Protocol):
    async def login(self, username: str, password: str) -> BackendLoginResult: ...

    async def validate_token(self, token: str) -> bool: ...

    async def get_user_data(self, token: str) -> Optional[dict]: ...

    async def merge_cart(self, token: str, items: list[CartItem]) -> CartSyncResult: ...

    async def logout(self, token: str) -> None: ...


def _display_name(data: dict) -> str:
    name = data.get("name") or data.get("display_name")
    if not name and (data.get("first_name") or data.get("last_name")):
        name = f"{data.get('first_name') or ''} {data.get('last_name') or ''}".strip()
    return name or data.get("nicename") or data.get("user_login") or ""


def normalize_user(data: Any) -> Optional[dict]:
    """Reduce a WordPress user payload to ``{id, email, name, username, roles}``.

    Returns ``None`` when the payload has no usable id.
    """
    if not isinstance(data, dict):
        return None
    raw_id = data.get("id") or data.get("user_id")
    try:
        user_id = int(raw_id)
    except (TypeError, ValueError):
        return None
    if user_id <= 0:
        return None
    roles = data.get("roles")
    return {
        "id": user_id,
        "email": data.get("email") or data.get("user_email") or "",
        "name": _display_name(data),
        "username": data.get("slug")
        or data.get("username")
        or data.get("user_login")
        or data.get("nicename")
        or "",
        "roles": list(roles) if isinstance(roles, (list, tuple)) else [],
    }


class HttpCommerceBackend:
    """WordPress/WooCommerce client over JWT auth and the Store API."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 5.0,
        logout_path: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.logout_path = logout_path
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 3.0)),
                headers={"Accept": "application/json"},
                follow_redirects=False,
                transport=self._transport,
            )
        return self._client

    @staticmethod
    def _bearer(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def login(self, username: str, password: str) -> BackendLoginResult:
        client = await self._get_client()
        response = await client.post(
            TOKEN_PATH, json={"username": username, "password": password}
        )
        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.status_code >= 500:
            # Surface as an exception so callers report a server-side failure
            response.raise_for_status()
        if not response.is_success or not isinstance(data, dict) or not data.get("token"):
            logger.info("commerce_login_rejected", status_code=response.status_code)
            return BackendLoginResult(success=False, error="invalid_credentials")

        token = data["token"]
        raw_user = data.get("user") or data.get("data") or data
        user = normalize_user(raw_user)
        if user is None or not user["email"]:
            fetched = await self.get_user_data(token)
            if fetched:
                user = fetched
        if user is None:
            # JWT plugin without id in the token response; keep what it did return
            user = {
                "id": 0,
                "email": data.get("user_email") or "",
                "name": data.get("user_display_name") or "",
                "username": data.get("user_nicename") or "",
                "roles": [],
            }
        return BackendLoginResult(success=True, token=token, user=user)

    async def validate_token(self, token: str) -> bool:
        client = await self._get_client()
        try:
            response = await client.post(VALIDATE_PATH, headers=self._bearer(token))
        except httpx.TimeoutException:
            logger.warning("commerce_validate_timeout")
            return False
        return response.is_success

    async def get_user_data(self, token: str) -> Optional[dict]:
        client = await self._get_client()
        response = await client.get(USER_PATH, headers=self._bearer(token))
        if response.status_code in (401, 403):
            return None
        if not response.is_success:
            logger.error("commerce_user_fetch_failed", status_code=response.status_code)
            return None
        try:
            return normalize_user(response.json())
        except ValueError:
            logger.error("commerce_user_payload_invalid")
            return None

    async def merge_cart(self, token: str, items: Iterable[CartItem]) -> CartSyncResult:
        items = list(items)
        result = CartSyncResult(success=True)
        if not items:
            return result
        client = await self._get_client()
        for item in items:
            body: dict[str, Any] = {"id": item.product_id, "quantity": item.quantity}
            if item.variation_id:
                body["variation"] = [
                    {"attribute": "variation_id", "value": item.variation_id}
                ]
            try:
                response = await client.post(
                    CART_ADD_ITEM_PATH, json=body, headers=self._bearer(token)
                )
                response.raise_for_status()
                result.merged_count += 1
            except httpx.HTTPError as exc:
                result.failed_count += 1
                result.errors.append(f"{item.product_id}: {type(exc).__name__}")
        result.success = result.failed_count == 0
        return result

    async def logout(self, token: str) -> None:
        if not self.logout_path:
            return
        client = await self._get_client()
        response = await client.post(self.logout_path, headers=self._bearer(token))
        response.raise_for_status()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
