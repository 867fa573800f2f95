# cart_session/main.py
import uvicorn

from cart_session.api import create_app
from cart_session.data.database import Base, engine
from cart_session.utils.logging import get_logger

# import modeli przed create_all zeby byly w Base.metadata
from cart_session.data.models import CartModel, UserModel  # noqa: F401

logger = get_logger(__name__)

logger.info(f"Initializing database, tables: {list(Base.metadata.tables.keys())}")

try:
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")
except Exception as e:
    logger.error(f"Failed to create tables: {e}")
    raise


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
