# cart_session/celery_worker.py
from celery import Celery

from cart_session.utils.settings import (
    CART_CLEANUP_INTERVAL_SECONDS,
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
)

celery_app = Celery(
    "cart_session",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# taski musza byc zaimportowane zeby Celery je zarejestrowal
celery_app.conf.imports = (
    "cart_session.tasks.cleanup",
)

celery_app.conf.beat_schedule = {
    "cleanup-expired-carts": {
        "task": "cart_session.tasks.cleanup.cleanup_carts_task",
        "schedule": float(CART_CLEANUP_INTERVAL_SECONDS),
    },
}

celery_app.conf.timezone = "UTC"
