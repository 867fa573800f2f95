# cart_session/data/models/cart.py
from sqlalchemy import BigInteger, Column, Index, Integer, String, Text

from cart_session.data.database import Base


CART_KEY_MAX_LENGTH = 64


class CartModel(Base):
    __tablename__ = "cart_sessions"

    cart_key = Column(String(CART_KEY_MAX_LENGTH), primary_key=True)
    user_id = Column(Integer, nullable=False, default=0)
    customer_id = Column(Integer, nullable=False, default=0)

    #json z danymi sesji, warstwa nie interpretuje zawartosci
    value = Column(Text, nullable=False, default="{}")

    #unix timestamp
    created_at = Column(BigInteger, nullable=False)
    expires_at = Column(BigInteger, nullable=False)

    source = Column(String(16), nullable=False)
    content_hash = Column(String(32), nullable=False, default="")

    __table_args__ = (
        Index("ix_cart_sessions_user_expiry", "user_id", "expires_at"),
        Index("ix_cart_sessions_user_customer", "user_id", "customer_id"),
    )
