"""Pytest configuration and fixtures"""
import os

# Set test environment variables before the package reads its settings
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SESSION_SECRET", "test-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from redis.exceptions import RedisError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cart_session.data.database import Base
from cart_session.data.models import UserModel
from cart_session.repos.cart_repo import CartRepo
from cart_session.services.cache_service import CartCache
from cart_session.services.identity_service import IdentityService
from cart_session.services.session_service import SessionEngine

START_TIME = 1_700_000_000
SECRET = "test-secret"

CUSTOMER_ID = 7
OTHER_CUSTOMER_ID = 8
OPERATOR_ID = 42


class FakeRedis:
    """In-memory stand-in for the redis commands CartCache uses."""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisError("redis unavailable")

    def get(self, name):
        self._check()
        return self.store.get(name)

    def set(self, name, value, ex=None):
        self._check()
        self.store[name] = value
        self.ttls[name] = ex
        return True

    def delete(self, *names):
        self._check()
        removed = 0
        for name in names:
            if self.store.pop(name, None) is not None:
                removed += 1
            self.ttls.pop(name, None)
        return removed

    def incr(self, name):
        self._check()
        value = int(self.store.get(name, 0)) + 1
        self.store[name] = str(value)
        return value

    def cart_entries(self):
        return {k: v for k, v in self.store.items() if not k.endswith(":generation")}


class FrozenClock:
    """Controllable replacement for cart_session.utils.clock.now"""

    def __init__(self, start=START_TIME):
        self.value = start

    def __call__(self):
        return self.value

    def advance(self, seconds):
        self.value += seconds


# ==================== DATABASE FIXTURES ====================

@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across threads"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, autocommit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def users(db_session):
    """Registered users: two customers and one shop operator"""
    users = {
        "customer": UserModel(id=CUSTOMER_ID, name="Anna", roles="customer"),
        "other": UserModel(id=OTHER_CUSTOMER_ID, name="Piotr", roles="customer"),
        "operator": UserModel(id=OPERATOR_ID, name="Ops", roles="shop_manager"),
    }
    db_session.add_all(users.values())
    db_session.commit()
    return users


# ==================== CACHE / CLOCK FIXTURES ====================

@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    return CartCache(namespace="test_carts", client=fake_redis)


@pytest.fixture
def clock():
    return FrozenClock()


# ==================== SERVICE FIXTURES ====================

@pytest.fixture
def repo(db_session, cache, clock):
    return CartRepo(db_session, cache, now=clock)


@pytest.fixture
def identity(db_session):
    return IdentityService(db_session)


@pytest.fixture
def session_engine(repo, identity, clock):
    return SessionEngine(repo=repo, identity=identity, now=clock, secret=SECRET)


@pytest.fixture
def sample_cart():
    """Session data with a non-empty cart"""
    return {
        "cart": {"a1b2": {"product_id": 11, "quantity": 2}},
        "cart_totals": {"total": "59.98"},
    }
