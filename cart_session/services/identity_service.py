from typing import Set
from sqlalchemy.orm import Session
from cart_session.repos.user_repo import UserRepo

CUSTOMER_ROLE = "customer"


class IdentityService:
    """
    Informacje o tozsamosci potrzebne silnikowi sesji.
    Samo uwierzytelnienie robi gateway przed aplikacja, tu tylko role i istnienie usera.
    """

    def __init__(self, db: Session):
        self.repo = UserRepo(db)

    def is_registered(self, user_id: int) -> bool:
        if not isinstance(user_id, int) or user_id <= 0:
            return False
        return self.repo.get_user(user_id) is not None

    def user_roles(self, user_id: int) -> Set[str]:
        if not isinstance(user_id, int) or user_id <= 0:
            return set()
        user = self.repo.get_user(user_id)
        if not user or not user.roles:
            return set()
        return {role.strip() for role in user.roles.split(",") if role.strip()}

    def is_customer(self, user_id: int) -> bool:
        return CUSTOMER_ROLE in self.user_roles(user_id)
