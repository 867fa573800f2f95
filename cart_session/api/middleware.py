# cart_session/api/middleware.py
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from cart_session.api.dependencies import build_engine, build_request_context
from cart_session.services.session_service import SessionContext, SessionEngine
from cart_session.utils.settings import CART_COOKIE_NAME, CART_COOKIE_SECURE
from cart_session.utils.logging import get_logger

logger = get_logger(__name__)


class CartSessionMiddleware(BaseHTTPMiddleware):
    """
    Jedna sesja koszyka na request:
    -rozwiazanie przed handlerem (request.state.cart_session)
    -zapis jesli dirty po handlerze
    -ustawienie / usuniecie cookie w trybie natywnym
    Blad bazy nie przerywa requestu, najgorzej user dostaje pusty koszyk.
    """

    def __init__(self, app, session_factory, cache):
        super().__init__(app)
        self.session_factory = session_factory
        self.cache = cache

    def _resolve(self, engine: SessionEngine, request_ctx) -> SessionContext:
        try:
            return engine.resolve(request_ctx)
        except SQLAlchemyError as e:
            engine.repo.db.rollback()
            logger.error(f"Cart session resolution failed, using a fresh cart: {e}")
            return engine.fresh_context(request_ctx)

    def _finalize(self, engine: SessionEngine, ctx: SessionContext) -> None:
        try:
            engine.finalize(ctx)
        except SQLAlchemyError as e:
            engine.repo.db.rollback()
            logger.error(f"Saving cart {ctx.cart_key} failed: {e}")

    async def dispatch(self, request, call_next):
        db = self.session_factory()
        try:
            engine = build_engine(db, self.cache)
            ctx = await run_in_threadpool(self._resolve, engine, build_request_context(request))
            request.state.cart_session = ctx

            response = await call_next(request)

            await run_in_threadpool(self._finalize, engine, ctx)

            if ctx.cookie_cleared:
                response.delete_cookie(CART_COOKIE_NAME, path="/")
            elif ctx.cookie_pending:
                response.set_cookie(
                    CART_COOKIE_NAME,
                    engine.cookie_value(ctx),
                    max_age=max(0, ctx.expiration_at - engine.now()),
                    path="/",
                    secure=CART_COOKIE_SECURE,
                    httponly=True,
                    samesite="lax",
                )
            return response
        finally:
            db.close()
