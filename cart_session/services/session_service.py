# cart_session/services/session_service.py
import hashlib
import json
from typing import Any, Callable, Dict

from sqlalchemy.exc import SQLAlchemyError

from cart_session.data.models.cart import CART_KEY_MAX_LENGTH
from cart_session.domain.schemas import CartRecord, CartSource, RequestContext
from cart_session.repos.cart_repo import CartRepo
from cart_session.services.cookie_codec import decode_cookie, encode_cookie
from cart_session.services.identity_service import IdentityService
from cart_session.utils import clock
from cart_session.utils.keys import generate_key
from cart_session.utils.settings import (
    API_CART_EXPIRATION_SECONDS,
    API_CART_EXPIRING_SECONDS,
    NATIVE_SESSION_EXPIRATION_SECONDS,
    NATIVE_SESSION_EXPIRING_SECONDS,
    SESSION_SECRET,
)
from cart_session.utils.logging import get_logger

logger = get_logger(__name__)


class SessionContext:
    """
    Stan sesji koszyka dla jednego requestu.
    Zmieniany tylko przez SessionEngine, zapisywany na koniec requestu jesli dirty.
    """

    def __init__(self, engine: "SessionEngine", source: CartSource, request: RequestContext):
        self._engine = engine
        self.source = source
        self.request = request

        self.cart_key = ""
        self.user_id = 0
        self.customer_id = 0
        self.expiring_at = 0
        self.expiration_at = 0
        self.data: Dict[str, Any] = {}
        self.content_hash = ""
        self.dirty = False

        #tylko tryb natywny
        self.has_cookie = False
        self.cookie_pending = False
        self.cookie_cleared = False

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        #None usuwa klucz
        if value is None:
            if key in self.data:
                del self.data[key]
                self.dirty = True
            return

        if self.data.get(key) != value:
            self.data[key] = value
            self.dirty = True

    @property
    def has_session(self) -> bool:
        return self._engine.has_session(self)

    def save(self) -> None:
        self._engine.save_data(self)

    def destroy(self) -> None:
        self._engine.destroy_cart(self)

    def forget(self) -> None:
        self._engine.forget_session(self)


class NativeSessionStrategy:
    """
    Sesja z cookie (sklep w przegladarce).
    Tozsamosc tylko z cookie i z logowania, naglowki klienta sa ignorowane.
    """

    source = CartSource.NATIVE

    def __init__(self, expiring: int, expiration: int):
        self.expiring = expiring
        self.expiration = expiration

    def set_expiration(self, ctx: SessionContext, now: int) -> None:
        ctx.expiring_at = now + self.expiring
        ctx.expiration_at = now + self.expiration

    def is_cookie_valid(self, engine: "SessionEngine", ctx: SessionContext, now: int) -> bool:
        request = ctx.request

        # wygasla sesja
        if now > ctx.expiration_at:
            return False

        # user sie wylogowal
        if not request.is_logged_in and not engine.is_guest(ctx.user_id, request):
            return False

        # sesja innego usera (sesja goscia jest ok, zostanie przeniesiona)
        if (
            request.is_logged_in
            and not engine.is_guest(ctx.user_id, request)
            and request.current_user_id != ctx.user_id
        ):
            return False

        return True

    def resolve(self, engine: "SessionEngine", request: RequestContext) -> SessionContext:
        ctx = SessionContext(engine, self.source, request)
        now = engine.now()
        cookie = decode_cookie(request.cookie, engine.secret)

        if cookie is None:
            # nowy gosc albo zalogowany bez cookie, odzyskujemy jego ostatni koszyk
            ctx.user_id = request.current_user_id
            ctx.customer_id = request.current_user_id
            ctx.cart_key = (
                engine.repo.find_latest_by_user(ctx.user_id) if ctx.user_id > 0 else generate_key()
            )
            self.set_expiration(ctx, now)
            ctx.data = engine.load_data(ctx)
            return ctx

        ctx.cart_key = cookie.cart_key
        ctx.expiration_at = cookie.expiration
        ctx.expiring_at = cookie.expiring
        ctx.user_id = cookie.user_id
        ctx.customer_id = cookie.customer_id
        ctx.has_cookie = True
        ctx.data = engine.load_data(ctx)

        if not self.is_cookie_valid(engine, ctx, now):
            logger.info(f"Session cookie for cart {ctx.cart_key} is no longer valid, starting fresh")
            engine.destroy_cart(ctx)
            self.set_expiration(ctx, now)
            ctx.dirty = True
            ctx.cookie_pending = True

        # user sie zalogowal, przenosimy koszyk na nowy klucz
        if request.is_logged_in and request.current_user_id != ctx.user_id:
            engine.migrate(ctx, request.current_user_id)

        # blisko wygasniecia, przedluzamy tylko timestamp
        if now > ctx.expiring_at:
            self.set_expiration(ctx, now)
            engine.repo.update_expiry(ctx.cart_key, ctx.expiration_at)
            ctx.cookie_pending = True

        return ctx


class ApiSessionStrategy:
    """
    Sesja headless (REST API), bez cookie.

    1. tozsamosc z uwierzytelnienia (0 = gosc)
    2. zalogowany -> jego koszyk, gosc -> klucz podany w requescie
    3. customer = user, a dla goscia customer zapisany przy koszyku
    4. operator (nie-klient) moze prowadzic koszyk wskazanego klienta
    5. brak klucza -> ostatni koszyk operatora albo nowy klucz
    """

    source = CartSource.API

    def __init__(self, expiring: int, expiration: int):
        self.expiring = expiring
        self.expiration = expiration

    def set_expiration(self, ctx: SessionContext, now: int) -> None:
        ctx.expiring_at = now + self.expiring
        ctx.expiration_at = now + self.expiration

    def requested_guest_key(self, engine: "SessionEngine", request: RequestContext) -> str:
        cart_key = request.requested_cart_key or ""
        if not cart_key:
            return ""

        # klucz nie zmiesci sie w kolumnie, koszyk nigdy by sie nie zapisal
        if len(cart_key) > CART_KEY_MAX_LENGTH:
            logger.warning(f"Requested cart key longer than {CART_KEY_MAX_LENGTH} chars ignored")
            return ""

        # gosc nie moze przejac koszyka zarejestrowanego usera
        owner = engine.repo.get_user_id(cart_key)
        if owner and engine.identity.is_registered(owner):
            logger.warning(f"Guest request for cart {cart_key} owned by user {owner} ignored")
            return ""

        return cart_key

    def resolve(self, engine: "SessionEngine", request: RequestContext) -> SessionContext:
        ctx = SessionContext(engine, self.source, request)
        now = engine.now()
        user_id = request.current_user_id
        ctx.user_id = user_id

        if user_id > 0:
            ctx.cart_key = engine.repo.find_by_user(user_id) or ""
            ctx.customer_id = user_id
        else:
            ctx.cart_key = self.requested_guest_key(engine, request)
            ctx.customer_id = engine.repo.get_customer_id(ctx.cart_key)

        requested_customer = request.requested_customer_id
        if user_id > 0 and requested_customer > 0 and not engine.identity.is_customer(user_id):
            ctx.cart_key = (
                engine.repo.find_by_user_and_customer(user_id, requested_customer) or generate_key()
            )
            ctx.customer_id = requested_customer
            logger.info(f"User {user_id} acting for customer {requested_customer} on cart {ctx.cart_key}")

        if not ctx.cart_key:
            # nowa sesja koszyka
            reuse = user_id > 0 and not engine.identity.is_customer(user_id)
            ctx.cart_key = engine.repo.find_latest_by_user(user_id) if reuse else generate_key()
            ctx.data = engine.load_data(ctx)
            self.set_expiration(ctx, now)
            return ctx

        record = engine.repo.read(ctx.cart_key)
        if record is None:
            ctx.data = {}
            self.set_expiration(ctx, now)
            return ctx

        ctx.data = dict(record.value)
        ctx.expiration_at = record.expires_at
        ctx.expiring_at = record.expires_at - (self.expiration - self.expiring)

        if now > ctx.expiring_at:
            self.set_expiration(ctx, now)
            engine.repo.update_expiry(ctx.cart_key, ctx.expiration_at)

        return ctx


class SessionEngine:
    """
    Rozwiazuje sesje koszyka dla requestu i zapisuje ja na koniec.
    Tryb (natywny / API) wybierany strategia po fladze is_api_request.
    """

    def __init__(
        self,
        repo: CartRepo,
        identity: IdentityService,
        now: Callable[[], int] = clock.now,
        secret: str = SESSION_SECRET,
        native_expiring: int = NATIVE_SESSION_EXPIRING_SECONDS,
        native_expiration: int = NATIVE_SESSION_EXPIRATION_SECONDS,
        api_expiring: int = API_CART_EXPIRING_SECONDS,
        api_expiration: int = API_CART_EXPIRATION_SECONDS,
    ):
        self.repo = repo
        self.identity = identity
        self.now = now
        self.secret = secret
        self.native = NativeSessionStrategy(native_expiring, native_expiration)
        self.api = ApiSessionStrategy(api_expiring, api_expiration)

    def strategy_for(self, request: RequestContext):
        return self.api if request.is_api_request else self.native

    def resolve(self, request: RequestContext) -> SessionContext:
        return self.strategy_for(request).resolve(self, request)

    def fresh_context(self, request: RequestContext) -> SessionContext:
        """Pusta sesja bez dotykania bazy, gdy nie da sie rozwiazac wlasciwej."""
        strategy = self.strategy_for(request)
        ctx = SessionContext(self, strategy.source, request)
        ctx.cart_key = generate_key()
        ctx.user_id = request.current_user_id
        ctx.customer_id = request.current_user_id
        strategy.set_expiration(ctx, self.now())
        return ctx

    # =====================================================
    # tozsamosc
    # =====================================================
    def is_guest(self, user_id: int, request: RequestContext) -> bool:
        if user_id <= 0:
            return True
        # zalogowany user to na pewno nie gosc, oszczedzamy zapytanie
        if request.is_logged_in and request.current_user_id == user_id:
            return False
        return not self.identity.is_registered(user_id)

    def has_session(self, ctx: SessionContext) -> bool:
        if ctx.has_cookie:
            return True
        if ctx.request.is_logged_in:
            return True
        return bool(ctx.cart_key) and ctx.source is CartSource.API

    # =====================================================
    # dane
    # =====================================================
    def load_data(self, ctx: SessionContext) -> Dict[str, Any]:
        if not self.has_session(ctx):
            return {}
        record = self.repo.read(ctx.cart_key)
        return dict(record.value) if record else {}

    def is_cart_data_valid(self, data: Dict[str, Any], cart_key: str) -> Dict[str, Any] | None:
        """
        Dane sa nie do zapisu gdy w magazynie nie ma nic pod tym kluczem
        a sam koszyk ("cart") jest pusty, nie zapisujemy pustej skorupy.
        """
        if data:
            record = self.repo.read(cart_key)
            if (record is None or not record.value) and not data.get("cart"):
                return None
        return data

    def set_cart_hash(self, ctx: SessionContext) -> None:
        cart = ctx.get("cart")
        totals = ctx.get("cart_totals") or {"total": 0}
        if not cart:
            ctx.content_hash = ""
            return
        payload = json.dumps(cart, sort_keys=True, separators=(",", ":"), default=str)
        ctx.content_hash = hashlib.md5(f"{payload}{totals.get('total', 0)}".encode()).hexdigest()

    # =====================================================
    # zapis
    # =====================================================
    def save_cart(self, ctx: SessionContext, old_key: str | None = None) -> None:
        if not self.has_session(ctx):
            return

        data = self.is_cart_data_valid(ctx.data, ctx.cart_key)
        if not data:
            logger.info(
                f"Cart data for {ctx.cart_key} not valid or the session had not loaded "
                f"during a request. No session saved."
            )
            return

        self.set_cart_hash(ctx)
        self.repo.upsert(
            CartRecord(
                cart_key=ctx.cart_key,
                user_id=ctx.user_id,
                customer_id=ctx.customer_id,
                value=data,
                created_at=self.now(),
                expires_at=ctx.expiration_at,
                source=ctx.source,
                content_hash=ctx.content_hash,
            )
        )
        ctx.dirty = False

        # poprzedni klucz nie jest juz uzywany
        if old_key and old_key != ctx.cart_key:
            self.repo.delete(old_key)

    def save_data(self, ctx: SessionContext, old_key: str | None = None) -> None:
        if ctx.dirty and self.has_session(ctx):
            self.save_cart(ctx, old_key)

    def migrate(self, ctx: SessionContext, user_id: int) -> None:
        """
        Koszyk goscia -> koszyk zalogowanego usera pod nowym kluczem.
        Najpierw zapis nowego, potem usuniecie starego. Gdy cos padnie,
        oba klucze zostaja poprawne i request leci dalej.
        """
        guest_key, guest_user, guest_customer = ctx.cart_key, ctx.user_id, ctx.customer_id

        ctx.cart_key = generate_key()
        ctx.user_id = user_id
        ctx.customer_id = user_id
        ctx.dirty = True

        try:
            self.save_cart(ctx)
        except SQLAlchemyError as e:
            logger.error(f"Cart migration {guest_key} -> {ctx.cart_key} failed, keeping guest cart: {e}")
            ctx.cart_key, ctx.user_id, ctx.customer_id = guest_key, guest_user, guest_customer
            return

        try:
            self.repo.delete(guest_key)
            self.repo.update_customer(ctx.cart_key, user_id)
        except SQLAlchemyError as e:
            self.repo.db.rollback()
            logger.error(f"Could not retire guest cart {guest_key} after migration: {e}")

        self.issue_cookie(ctx)
        logger.info(f"Cart {guest_key} migrated to {ctx.cart_key} for user {user_id}")

    def destroy_cart(self, ctx: SessionContext) -> None:
        self.repo.delete(ctx.cart_key)
        self.forget_cart(ctx)

    def forget_cart(self, ctx: SessionContext) -> None:
        ctx.data = {}
        ctx.content_hash = ""
        ctx.cart_key = generate_key()
        ctx.user_id = 0
        ctx.customer_id = 0

    def forget_session(self, ctx: SessionContext) -> None:
        ctx.has_cookie = False
        ctx.cookie_pending = False
        ctx.cookie_cleared = ctx.source is CartSource.NATIVE
        self.forget_cart(ctx)
        ctx.dirty = False

    # =====================================================
    # cookie
    # =====================================================
    def issue_cookie(self, ctx: SessionContext) -> None:
        if ctx.source is not CartSource.NATIVE:
            return
        ctx.has_cookie = True
        ctx.cookie_pending = True
        ctx.cookie_cleared = False

    def cookie_value(self, ctx: SessionContext) -> str:
        return encode_cookie(
            ctx.cart_key,
            ctx.expiration_at,
            ctx.expiring_at,
            ctx.user_id,
            ctx.customer_id,
            self.secret,
        )

    def finalize(self, ctx: SessionContext) -> None:
        """Koniec requestu: cookie dla nowego koszyka z danymi, zapis jesli dirty."""
        if ctx.source is CartSource.NATIVE and ctx.dirty and ctx.data and not ctx.cookie_cleared:
            self.issue_cookie(ctx)
        self.save_data(ctx)
