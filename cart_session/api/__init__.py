# cart_session/api/__init__.py
from fastapi import FastAPI
from cart_session.api.middleware import CartSessionMiddleware
from cart_session.api.routers import health, session


def create_app(session_factory=None, cache=None) -> FastAPI:
    if session_factory is None:
        from cart_session.data.database import SessionLocal
        session_factory = SessionLocal
    if cache is None:
        from cart_session.services.cache_service import CartCache
        cache = CartCache()

    app = FastAPI(title="Cart Session Service", version="1.0.0")
    app.add_middleware(CartSessionMiddleware, session_factory=session_factory, cache=cache)

    app.include_router(health.router)
    app.include_router(session.router)
    app.include_router(session.api_router)
    return app
