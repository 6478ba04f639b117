from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront_auth.service.commerce import CartItem

MAX_CART_ITEMS = 100


class CartItemIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: int = Field(alias="productId", gt=0)
    quantity: int = Field(default=1, ge=1, le=999)
    variation_id: Optional[int] = Field(default=None, alias="variationId", gt=0)

    def to_cart_item(self) -> CartItem:
        return CartItem(
            product_id=self.product_id,
            quantity=self.quantity,
            variation_id=self.variation_id,
        )


class LoginRequest(BaseModel):
    """Login body. Length rules live in the auth service so they map to
    ``INVALID_USERNAME`` / ``INVALID_PASSWORD`` rather than ``INVALID_BODY``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    username: Optional[str] = None
    password: Optional[str] = None
    cart_items: List[CartItemIn] = Field(default_factory=list, alias="cartItems")
    redirect_to: Optional[str] = Field(default=None, alias="redirectTo")
    next: Optional[str] = None

    @field_validator("cart_items")
    @classmethod
    def _limit_cart_items(cls, value: List[CartItemIn]) -> List[CartItemIn]:
        if len(value) > MAX_CART_ITEMS:
            raise ValueError(f"at most {MAX_CART_ITEMS} cart items may be merged")
        return value

    @property
    def requested_redirect(self) -> Optional[str]:
        return self.redirect_to or self.next


class LogoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    csrf_token: Optional[str] = Field(default=None, alias="csrfToken")


class CartSyncOut(BaseModel):
    status: Literal["ok", "degraded", "error"]
    reason: Optional[str] = None
    merged: int = 0


class LoginResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    user: dict
    redirect_to: str = Field(alias="redirectTo")
    cart_sync: CartSyncOut = Field(alias="cartSync")
    csrf_token: str = Field(alias="csrfToken")


class RefreshResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    user: dict
    csrf_token: str = Field(alias="csrfToken")


class LogoutResponse(BaseModel):
    success: bool = True


class ValidateResponse(BaseModel):
    valid: bool
    user: Optional[dict] = None


class SessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    authenticated: bool
    user: Optional[dict] = None
    csrf_token: Optional[str] = Field(default=None, alias="csrfToken")


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[Any] = None


class ErrorEnvelope(BaseModel):
    success: bool = False
    error: ErrorBody
