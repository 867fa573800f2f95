from sqlalchemy import Column, Integer, String
from cart_session.data.database import Base

class UserModel(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    #role rozdzielone przecinkami, np. "customer" albo "shop_manager,administrator"
    roles = Column(String, nullable=False, default="customer")
