"""
Pytest configuration for unit tests.
"""

import json
from datetime import datetime, timezone
from typing import Dict, Optional
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine, literal_column, select
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

import twofa_service.models  # noqa: F401  register tables
from twofa_service.core.database import Base
from twofa_service.core.redis_client import RedisClient
from twofa_service.models import User, SecurityEventRecord
from twofa_service.repositories import SqlAlchemyTwoFactorRepository
from twofa_service.services.secret_codec import SecretCodec
from twofa_service.services.security_events import SqlSecurityEventLog
from twofa_service.services.totp_engine import TotpEngine
from twofa_service.services.two_factor_service import TwoFactorService


TEST_KEY = bytes(range(32))

# 10 seconds into a 30-second window
FIXED_NOW = datetime(2024, 1, 1, 12, 0, 10, tzinfo=timezone.utc)


class FakeRedisClient(RedisClient):
    """In-memory RedisClient for tests (TTLs recorded, not enforced)"""

    def __init__(self):
        self.store: Dict[str, str] = {}
        self.ttls: Dict[str, Optional[int]] = {}
        self.published = []

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ttl=None):
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    def delete(self, key):
        return 1 if self.store.pop(key, None) is not None else 0

    def getdel(self, key):
        return self.store.pop(key, None)

    def ttl(self, key):
        return self.ttls.get(key) or -1

    def incr(self, key):
        self.store[key] = str(int(self.store.get(key, "0")) + 1)
        return int(self.store[key])

    def set_json_if_exists(self, key, data):
        if key not in self.store:
            return False
        self.store[key] = json.dumps(data)
        return True

    def publish(self, channel, message):
        self.published.append((channel, message))
        return 1

    def ping(self):
        return True

    def close(self):
        pass


@pytest.fixture
def db_engine():
    """Fresh in-memory database per test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    session = sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def make_user(db_session: Session):
    def _make(email="alice@example.com", name="Alice"):
        user = User(email=email, name=name)
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def codec():
    return SecretCodec(TEST_KEY)


@pytest.fixture
def totp_engine():
    return TotpEngine(
        issuer="Test App",
        digits=6,
        interval=30,
        tolerance_windows=1,
        fallback_tolerance_windows=4,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def repository(db_session):
    return SqlAlchemyTwoFactorRepository(db_session)


@pytest.fixture
def mock_notifier():
    """Mock SecurityAlertNotifier"""
    return Mock()


@pytest.fixture
def two_factor_service(repository, codec, totp_engine, db_session, mock_notifier):
    return TwoFactorService(
        repository=repository,
        codec=codec,
        engine=totp_engine,
        event_log=SqlSecurityEventLog(db_session),
        notifier=mock_notifier,
        login_allow_fallback=False,
    )


@pytest.fixture
def fake_redis():
    return FakeRedisClient()


@pytest.fixture
def security_events(db_session):
    """Callable returning the events recorded for a user, oldest first"""
    def _events(user_id):
        return db_session.execute(
            select(SecurityEventRecord)
            .where(SecurityEventRecord.user_id == user_id)
            .order_by(literal_column("rowid"))
        ).scalars().all()
    return _events
