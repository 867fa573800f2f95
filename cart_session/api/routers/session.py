# cart_session/api/routers/session.py
from fastapi import APIRouter, Depends

from cart_session.api.dependencies import get_cart_session
from cart_session.domain.schemas import SessionDataIn, SessionOut
from cart_session.services.session_service import SessionContext
from cart_session.utils.settings import API_PREFIX

router = APIRouter(prefix="/session", tags=["session"])
api_router = APIRouter(prefix=f"{API_PREFIX.rstrip('/')}/session", tags=["session-api"])


def _out(ctx: SessionContext) -> SessionOut:
    return SessionOut(
        cart_key=ctx.cart_key,
        user_id=ctx.user_id,
        customer_id=ctx.customer_id,
        source=ctx.source,
        expires_at=ctx.expiration_at,
        data=ctx.data,
    )


def get_session(ctx: SessionContext = Depends(get_cart_session)):
    return _out(ctx)


def update_session(payload: SessionDataIn, ctx: SessionContext = Depends(get_cart_session)):
    #zapis nastapi w middleware po odpowiedzi handlera
    for key, value in payload.values.items():
        ctx.set(key, value)
    return _out(ctx)


def delete_session(ctx: SessionContext = Depends(get_cart_session)):
    #wylogowanie / porzucenie koszyka
    ctx.destroy()
    ctx.forget()
    return _out(ctx)


for r in (router, api_router):
    r.add_api_route("", get_session, methods=["GET"], response_model=SessionOut)
    r.add_api_route("", update_session, methods=["PATCH"], response_model=SessionOut)
    r.add_api_route("", delete_session, methods=["DELETE"], response_model=SessionOut)
