# cart_session/repos/cart_repo.py
import json
from typing import Any, Callable, Dict

from pydantic import ValidationError
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cart_session.data.models.cart import CartModel
from cart_session.domain.schemas import CartRecord, CartSource
from cart_session.services.cache_service import CartCache
from cart_session.utils import clock
from cart_session.utils.keys import generate_key
from cart_session.utils.settings import API_CART_EXPIRATION_SECONDS
from cart_session.utils.logging import get_logger

logger = get_logger(__name__)


def _dump_value(value: Dict[str, Any]) -> str:
    return json.dumps(value or {}, separators=(",", ":"), default=str)


def _to_record(model: CartModel) -> CartRecord:
    return CartRecord(
        cart_key=model.cart_key,
        user_id=model.user_id,
        customer_id=model.customer_id,
        value=json.loads(model.value or "{}"),
        created_at=model.created_at,
        expires_at=model.expires_at,
        source=CartSource(model.source),
        content_hash=model.content_hash or "",
    )


class CartRepo:
    """
    Koszyki w bazie + cache w redisie.

    Odczyt: cache -> baza -> wpis do cache z TTL = czas do wygasniecia.
    Kazdy zapis ktory zmienia value/expires_at od razu aktualizuje cache
    (write-through), delete czysci cache i wiersz razem.
    Brak rekordu to None, nie wyjatek.
    """

    def __init__(self, db: Session, cache: CartCache, now: Callable[[], int] = clock.now):
        self.db = db
        self.cache = cache
        self.now = now

    # =====================================================
    # cache
    # =====================================================
    def _cache_record(self, record: CartRecord) -> None:
        self.cache.set(record.cart_key, record.model_dump_json(), max(0, record.expires_at - self.now()))

    def _refresh_cache(self, cart_key: str) -> None:
        model = self.db.get(CartModel, cart_key)
        if model is None:
            self.cache.delete(cart_key)
        else:
            self._cache_record(_to_record(model))

    def _cached(self, cart_key: str) -> CartRecord | None:
        raw = self.cache.get(cart_key)
        if raw is None:
            return None
        try:
            return CartRecord.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Dropping unreadable cache entry for cart {cart_key}")
            self.cache.delete(cart_key)
            return None

    # =====================================================
    # odczyt
    # =====================================================
    def read(self, cart_key: str) -> CartRecord | None:
        if not cart_key:
            return None

        record = self._cached(cart_key)
        if record is None:
            model = self.db.get(CartModel, cart_key)
            if model is None:
                return None
            record = _to_record(model)
            self._cache_record(record)

        #wygasly ale jeszcze nie usuniety przez cleanup
        if record.expires_at < self.now():
            return None

        return record

    def get_customer_id(self, cart_key: str) -> int:
        record = self.read(cart_key)
        return record.customer_id if record else 0

    def get_user_id(self, cart_key: str) -> int | None:
        record = self.read(cart_key)
        return record.user_id if record else None

    def _keys_for_user(self, user_id: int):
        return (
            select(CartModel.cart_key)
            .where(
                CartModel.user_id == user_id,
                #bez koszykow prowadzonych dla innych klientow
                or_(CartModel.customer_id == user_id, CartModel.customer_id == 0),
                CartModel.expires_at >= self.now(),
            )
            .order_by(CartModel.expires_at.desc())
        )

    def find_by_user(self, user_id: int) -> str | None:
        if not isinstance(user_id, int) or user_id <= 0:
            return None
        return self.db.execute(self._keys_for_user(user_id).limit(1)).scalar_one_or_none()

    def find_latest_by_user(self, user_id: int) -> str:
        """Ostatnio uzywany klucz usera albo nowy klucz, nigdy None."""
        cart_key = self.find_by_user(user_id)
        if cart_key is None:
            cart_key = generate_key()
        return cart_key

    def find_by_user_and_customer(self, user_id: int, customer_id: int) -> str | None:
        if not isinstance(user_id, int) or user_id <= 0:
            return None
        if not isinstance(customer_id, int) or customer_id <= 0:
            return None

        stmt = (
            select(CartModel.cart_key)
            .where(
                CartModel.user_id == user_id,
                CartModel.customer_id == customer_id,
                CartModel.expires_at >= self.now(),
            )
            .order_by(CartModel.expires_at.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def exists_for_user(self, cart_key: str, user_id: int) -> bool:
        """Czy koszyk jest prowadzony dla danego klienta (customer_id)."""
        if not cart_key or not isinstance(user_id, int) or user_id <= 0:
            return False

        stmt = select(CartModel.cart_key).where(
            CartModel.cart_key == cart_key,
            CartModel.customer_id == user_id,
        )
        return self.db.execute(stmt).scalar_one_or_none() is not None

    # =====================================================
    # zapis
    # =====================================================
    def create(
        self,
        cart_key: str | None = None,
        customer_id: int = 0,
        value: Dict[str, Any] | None = None,
        expires_at: int | None = None,
        source: CartSource = CartSource.API,
    ) -> str | None:
        cart_key = cart_key or generate_key()
        now = self.now()
        if not expires_at:
            expires_at = now + API_CART_EXPIRATION_SECONDS

        if self.db.get(CartModel, cart_key) is not None:
            logger.warning(f"Cart {cart_key} already exists, not created")
            return None

        model = CartModel(
            cart_key=cart_key,
            user_id=customer_id,
            customer_id=customer_id,
            value=_dump_value(value),
            created_at=now,
            expires_at=expires_at,
            source=CartSource(source).value,
            content_hash="",
        )

        try:
            self.db.add(model)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning(f"Cart {cart_key} already exists, not created")
            return None

        self._cache_record(_to_record(model))
        logger.info(f"Created cart {cart_key} for customer {customer_id}")
        return cart_key

    def upsert(self, record: CartRecord) -> None:
        """
        Insert albo, gdy klucz juz jest, update tylko value/expires_at/content_hash.
        user_id, customer_id, created_at i source zostaja z pierwszego zapisu.
        """
        model = self.db.get(CartModel, record.cart_key)

        if model is None:
            model = CartModel(
                cart_key=record.cart_key,
                user_id=record.user_id,
                customer_id=record.customer_id,
                created_at=record.created_at,
                source=CartSource(record.source).value,
            )
            self.db.add(model)

        model.value = _dump_value(record.value)
        model.expires_at = record.expires_at
        model.content_hash = record.content_hash

        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        self._cache_record(_to_record(model))

    def update(self, cart_key: str, value: Dict[str, Any], expires_at: int) -> bool:
        model = self.db.get(CartModel, cart_key)
        if model is None:
            return False

        model.value = _dump_value(value)
        model.expires_at = expires_at
        self.db.commit()

        self._cache_record(_to_record(model))
        return True

    def update_expiry(self, cart_key: str, expires_at: int) -> bool:
        model = self.db.get(CartModel, cart_key)
        if model is None:
            return False

        model.expires_at = expires_at
        self.db.commit()

        self._refresh_cache(cart_key)
        return True

    def update_customer(self, cart_key: str, customer_id: int) -> bool:
        if not isinstance(customer_id, int) or customer_id <= 0:
            return False

        model = self.db.get(CartModel, cart_key)
        if model is None:
            return False

        model.customer_id = customer_id
        self.db.commit()

        self._refresh_cache(cart_key)
        return True

    def delete(self, cart_key: str) -> None:
        if not cart_key:
            return

        self.cache.delete(cart_key)
        self.db.execute(delete(CartModel).where(CartModel.cart_key == cart_key))
        self.db.commit()

    def cleanup_expired(self) -> int:
        result = self.db.execute(delete(CartModel).where(CartModel.expires_at < self.now()))
        self.db.commit()

        #grube uniewaznienie, wygasle wpisy i tak nie sa juz wazne
        self.cache.invalidate_namespace()
        return result.rowcount or 0
