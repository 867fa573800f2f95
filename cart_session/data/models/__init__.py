#import wszystkich modeli zeby SQLAlchemy je zarejestrowal w base metadata

from cart_session.data.models.user import UserModel
from cart_session.data.models.cart import CartModel

__all__ = ["UserModel", "CartModel"]
