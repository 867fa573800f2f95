# cart_session/domain/schemas.py
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class CartSource(str, Enum):
    API = "api"
    NATIVE = "native"


class CartRecord(BaseModel):
    """Wiersz koszyka w trwalym magazynie (i jego kopia w cache)."""

    cart_key: str = Field(..., min_length=1)
    user_id: int = 0
    customer_id: int = 0
    value: Dict[str, Any] = Field(default_factory=dict)
    created_at: int
    expires_at: int
    source: CartSource
    content_hash: str = ""


class RequestContext(BaseModel):
    """
    Wszystko co silnik sesji wie o requescie.
    Budowane przez warstwe HTTP, silnik nie czyta requestu bezposrednio.
    """

    is_api_request: bool = False
    cookie: str | None = None
    # tylko tryb API
    requested_cart_key: str | None = None
    requested_customer_id: int = 0
    current_user_id: int = Field(0, ge=0)

    @property
    def is_logged_in(self) -> bool:
        return self.current_user_id > 0


class CookiePayload(BaseModel):
    """Zdekodowane pola cookie koszyka."""

    cart_key: str
    expiration: int
    expiring: int
    cookie_hash: str
    user_id: int = 0
    customer_id: int = 0


class SessionOut(BaseModel):
    """Schema dla sesji koszyka (response)."""

    cart_key: str
    user_id: int
    customer_id: int
    source: CartSource
    expires_at: int
    data: Dict[str, Any]


class SessionDataIn(BaseModel):
    """Schema dla zmiany danych sesji (klucze nadpisywane, null usuwa klucz)."""

    values: Dict[str, Any] = Field(default_factory=dict)
