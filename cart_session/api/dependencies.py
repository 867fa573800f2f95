# cart_session/api/dependencies.py
import re

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from cart_session.domain.schemas import RequestContext
from cart_session.repos.cart_repo import CartRepo
from cart_session.services.cache_service import CartCache
from cart_session.services.identity_service import IdentityService
from cart_session.services.session_service import SessionContext, SessionEngine
from cart_session.utils.settings import (
    API_PREFIX,
    AUTH_USER_HEADER,
    CART_COOKIE_NAME,
    CART_CUSTOMER_HEADER,
    CART_KEY_HEADER,
)

_KEY_CHARS = re.compile(r"[^a-z0-9_\-]")


def sanitize_key(raw: str | None) -> str:
    return _KEY_CHARS.sub("", (raw or "").strip().lower())


def _as_int(raw: str | None) -> int:
    raw = (raw or "").strip()
    #naglowki sa latin-1, isdigit() przepuszcza np. "²"
    if not (raw.isascii() and raw.isdigit()):
        return 0
    return int(raw)


def is_api_request(request: Request) -> bool:
    return request.url.path.startswith(API_PREFIX.rstrip("/") + "/")


def build_request_context(request: Request) -> RequestContext:
    """
    Request HTTP -> RequestContext.
    Id usera ustawia gateway uwierzytelniajacy, klucz koszyka i klient z naglowkow
    sa brane pod uwage tylko w trybie API.
    """
    api = is_api_request(request)

    requested_cart_key = None
    requested_customer_id = 0
    if api:
        # naglowek wygrywa z parametrem url
        requested_cart_key = sanitize_key(
            request.headers.get(CART_KEY_HEADER) or request.query_params.get("cart_key")
        ) or None
        requested_customer_id = _as_int(request.headers.get(CART_CUSTOMER_HEADER))

    return RequestContext(
        is_api_request=api,
        cookie=None if api else request.cookies.get(CART_COOKIE_NAME),
        requested_cart_key=requested_cart_key,
        requested_customer_id=requested_customer_id,
        current_user_id=_as_int(request.headers.get(AUTH_USER_HEADER)),
    )


def build_engine(db: Session, cache: CartCache) -> SessionEngine:
    return SessionEngine(repo=CartRepo(db, cache), identity=IdentityService(db))


def get_cart_session(request: Request) -> SessionContext:
    ctx = getattr(request.state, "cart_session", None)
    if ctx is None:
        raise HTTPException(status_code=500, detail="Cart session not initialised")
    return ctx
