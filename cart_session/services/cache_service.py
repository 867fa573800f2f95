import redis
from redis.exceptions import RedisError
from cart_session.utils.retry import redis_retry
from cart_session.utils.settings import REDIS_URL, CART_CACHE_NAMESPACE
from cart_session.utils.logging import get_logger

logger = get_logger(__name__)


class CartCache:
    """
    -cache rekordow koszyka (read-through przed baza)
    -TTL zgodny z czasem wygasniecia koszyka
    -uniewaznienie calej przestrzeni przez podbicie generacji

    Cache jest best-effort: blad redisa po retry jest logowany
    i traktowany jak miss, baza zostaje zrodlem prawdy.
    """

    def __init__(self, url: str | None = None, namespace: str = CART_CACHE_NAMESPACE, client=None):
        self.namespace = namespace
        self.redis = client or redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    @property
    def generation_key(self) -> str:
        return f"{self.namespace}:generation"

    #klucz zalezy od generacji, po INCR stare wpisy sa nieosiagalne i wygasaja same z TTL
    def _name(self, cart_key: str) -> str:
        generation = self.redis.get(self.generation_key) or "0"
        return f"{self.namespace}:{generation}:{cart_key}"

    @redis_retry()
    def _get(self, cart_key: str) -> str | None:
        return self.redis.get(self._name(cart_key))

    @redis_retry()
    def _set(self, cart_key: str, value: str, ttl: int) -> None:
        self.redis.set(name=self._name(cart_key), value=value, ex=ttl)

    @redis_retry()
    def _delete(self, cart_key: str) -> None:
        self.redis.delete(self._name(cart_key))

    @redis_retry()
    def _invalidate(self) -> int:
        return self.redis.incr(self.generation_key)

    def get(self, cart_key: str) -> str | None:
        try:
            return self._get(cart_key)
        except RedisError as e:
            logger.warning(f"Cache get failed for cart {cart_key}: {e}")
            return None

    def set(self, cart_key: str, value: str, ttl: int) -> None:
        #ttl <= 0 znaczy ze koszyk juz wygasl, nie ma czego cache'owac
        if ttl <= 0:
            self.delete(cart_key)
            return
        try:
            self._set(cart_key, value, ttl)
        except RedisError as e:
            logger.warning(f"Cache set failed for cart {cart_key}: {e}")

    def delete(self, cart_key: str) -> None:
        try:
            self._delete(cart_key)
        except RedisError as e:
            logger.warning(f"Cache delete failed for cart {cart_key}: {e}")

    def invalidate_namespace(self) -> None:
        try:
            generation = self._invalidate()
            logger.info(f"Cache namespace {self.namespace} invalidated, generation {generation}")
        except RedisError as e:
            logger.warning(f"Cache namespace invalidation failed: {e}")
