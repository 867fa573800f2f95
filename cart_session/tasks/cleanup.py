# cart_session/tasks/cleanup.py
from sqlalchemy.orm import Session

from cart_session.celery_worker import celery_app
from cart_session.data.database import SessionLocal
from cart_session.repos.cart_repo import CartRepo
from cart_session.services.cache_service import CartCache
from cart_session.utils import clock
from cart_session.utils.logging import get_logger

logger = get_logger(__name__)


def sweep_expired_carts(db: Session, cache: CartCache, now=clock.now) -> int:
    removed = CartRepo(db, cache, now=now).cleanup_expired()
    logger.info(f"Removed {removed} expired carts")
    return removed


@celery_app.task(name="cart_session.tasks.cleanup.cleanup_carts_task")
def cleanup_carts_task():
    logger.info("Cleanup carts task started")

    db = SessionLocal()
    try:
        return sweep_expired_carts(db, CartCache())
    finally:
        db.close()
