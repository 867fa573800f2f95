# cart_session/services/cookie_codec.py
"""
Cookie koszyka dla trybu natywnego.

Format: cart_key||expiration||expiring||hash||user_id||customer_id

hash to HMAC po "cart_key|expiration", klucz HMAC wyprowadzany z sekretu
serwera i podpisywanej wartosci, wiec bez sekretu nie da sie podrobic cookie.
Dekodowanie nigdy nie rzuca wyjatku, zly cookie == brak cookie.
"""
import hashlib
import hmac

from cart_session.domain.schemas import CookiePayload
from cart_session.utils.settings import SESSION_SECRET

DELIMITER = "||"
MIN_FIELDS = 6


def _sign(cart_key: str, expiration: int | str, secret: str) -> str:
    to_hash = f"{cart_key}|{expiration}".encode()
    derived_key = hmac.new(secret.encode(), to_hash, hashlib.sha256).hexdigest()
    return hmac.new(derived_key.encode(), to_hash, hashlib.sha256).hexdigest()


def _as_user_id(raw: str) -> int:
    #stare cookie gosci mialy losowe id zamiast liczby, traktujemy je jako goscia
    return int(raw) if raw.isdigit() else 0


def encode_cookie(
    cart_key: str,
    expiration: int,
    expiring: int,
    user_id: int,
    customer_id: int,
    secret: str = SESSION_SECRET,
) -> str:
    cookie_hash = _sign(cart_key, expiration, secret)
    return DELIMITER.join(
        [cart_key, str(expiration), str(expiring), cookie_hash, str(user_id), str(customer_id)]
    )


def decode_cookie(value, secret: str = SESSION_SECRET) -> CookiePayload | None:
    if not value or not isinstance(value, str):
        return None

    parts = value.split(DELIMITER)
    if len(parts) < MIN_FIELDS:
        return None

    cart_key, expiration, expiring, cookie_hash, user_id, customer_id = parts[:MIN_FIELDS]
    if not cart_key or not cookie_hash:
        return None

    expected = _sign(cart_key, expiration, secret)
    if not hmac.compare_digest(expected.encode(), cookie_hash.encode()):
        return None

    try:
        return CookiePayload(
            cart_key=cart_key,
            expiration=int(expiration),
            expiring=int(expiring),
            cookie_hash=cookie_hash,
            user_id=_as_user_id(user_id.strip()),
            customer_id=_as_user_id(customer_id.strip()),
        )
    except ValueError:
        return None
