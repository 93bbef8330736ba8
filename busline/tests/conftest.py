"""
Centralized Test Configuration.
"""

import asyncio
import fnmatch
import itertools

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from busline.app.main import app
from busline.app.core.config import settings
from busline.app.core.jwt import create_access_token
from busline.app.db.session import get_db, Base
from busline.app.core.redis_client import get_redis
import busline.app.core.redis_client as redis_client_module
from busline.app.domain.sharing.channel import TrackingChannel
from busline.app.domain.sharing.errors import ChannelConnectionError
from busline.app.domain.sharing.geolocation import (
    GeolocationPositionError,
    GeolocationProvider,
    Position,
)
from busline.app.domain.sharing.notices import RecordingNotifier
from busline.app.domain.sharing.state_store import MemorySharingStateStore
from busline.app.models.enums import UserRole
from busline.app.models.schedule import Schedule
from busline.app.models.user import User
from busline.app.services.tracking_relay import tracking_relay

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

# The app lifespan must not reach for postgres under TestClient
settings.db_create_tables = False


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def delete(self, *keys):
        if self._closed:
            return 0
        removed = 0
        for key in keys:
            if key in self.store:
                del self.store[key]
                removed += 1
        return removed

    async def exists(self, *keys):
        if self._closed:
            return 0
        return sum(1 for key in keys if key in self.store)

    async def scan_iter(self, match="*"):
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


# Redis Fixture (Session Scope)
@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()

@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session.
    Global override is safer here than per-test override to avoid app state flux.
    """

    # Patch the global redis client used by token revocation and /health
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client

@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

@pytest.fixture(autouse=True)
def reset_relay():
    """Every test starts with an empty relay."""
    tracking_relay.reset()
    yield
    tracking_relay.reset()

@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


# Users, schedules and tokens

def token_for(user: User) -> str:
    return create_access_token(data={
        "sub": user.username,
        "user_id": user.id,
        "role": user.role.value,
    })

@pytest.fixture
async def driver(db_session):
    user = User(email="kwame@busline.test", username="kwame", full_name="Kwame Mensah", role=UserRole.DRIVER)
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user

@pytest.fixture
async def other_driver(db_session):
    user = User(email="yaw@busline.test", username="yaw", full_name="Yaw Boateng", role=UserRole.DRIVER)
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user

@pytest.fixture
async def passenger(db_session):
    user = User(email="ama@busline.test", username="ama", full_name="Ama Owusu", role=UserRole.PASSENGER)
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user

@pytest.fixture
async def admin(db_session):
    user = User(email="ops@busline.test", username="booking-service", full_name="Booking Service", role=UserRole.ADMIN)
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user

@pytest.fixture
def driver_token(driver):
    return token_for(driver)

@pytest.fixture
def other_driver_token(other_driver):
    return token_for(other_driver)

@pytest.fixture
def passenger_token(passenger):
    return token_for(passenger)

@pytest.fixture
def admin_token(admin):
    return token_for(admin)

@pytest.fixture
async def schedule(db_session, driver):
    from datetime import datetime, timedelta, timezone

    item = Schedule(
        driver_id=driver.id,
        route_name="Circle - Madina",
        departure_time=datetime.now(timezone.utc) + timedelta(hours=1),
    )
    db_session.add(item)
    await db_session.commit()
    await db_session.refresh(item)
    return item


# Publisher test doubles

class FakeGeolocation(GeolocationProvider):
    """Geolocation source driven by the test."""

    def __init__(self, supported=True):
        self.supported = supported
        self.watches = {}
        self.cleared = []
        self.options = None
        self.current = None  # Position, GeolocationPositionError or None
        self.current_options = None
        self._ids = itertools.count(1)

    def is_supported(self):
        return self.supported

    def watch_position(self, on_position, on_error, options=None):
        watch_id = next(self._ids)
        self.watches[watch_id] = (on_position, on_error)
        self.options = options
        return watch_id

    def clear_watch(self, watch_id):
        self.cleared.append(watch_id)
        self.watches.pop(watch_id, None)

    async def get_current_position(self, options=None):
        self.current_options = options
        if isinstance(self.current, GeolocationPositionError):
            raise self.current
        return self.current

    @property
    def active(self):
        return bool(self.watches)

    async def emit(self, lat, lng):
        for on_position, _ in list(self.watches.values()):
            await on_position(Position(lat=lat, lng=lng))

    async def fail(self, code, message="Position unavailable"):
        for _, on_error in list(self.watches.values()):
            await on_error(GeolocationPositionError(code, message))


class FakeChannel(TrackingChannel):
    """In-memory tracking channel recording what the publisher sends."""

    def __init__(self, fail=False, gate=None):
        self.fail = fail
        self.gate = gate
        self.sent = []
        self.open_calls = 0
        self.close_calls = 0
        self._open = False
        self._closed = asyncio.Event()

    @property
    def is_open(self):
        return self._open

    async def open(self):
        self.open_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            self._closed.set()
            raise ChannelConnectionError("Connection refused", url="ws://test/ws/tracking")
        self._open = True

    async def send(self, message):
        if not self._open:
            raise ChannelConnectionError("Tracking channel is not open")
        self.sent.append(message)

    async def close(self):
        self.close_calls += 1
        self._open = False
        self._closed.set()

    async def wait_closed(self):
        await self._closed.wait()

    def drop(self):
        """Server side hangs up."""
        self._open = False
        self._closed.set()


class ChannelFactory:
    """Hands out queued channels, then healthy ones."""

    def __init__(self):
        self.queue = []
        self.created = []

    def make(self, **kwargs):
        channel = FakeChannel(**kwargs)
        self.queue.append(channel)
        return channel

    def __call__(self, schedule_id):
        channel = self.queue.pop(0) if self.queue else FakeChannel()
        self.created.append(channel)
        return channel

    @property
    def last(self):
        return self.created[-1]


class FakeVisibility:
    """Stands in for ScheduleVisibilityClient."""

    def __init__(self, succeed=True, gate=None):
        self.succeed = succeed
        self.gate = gate
        self.calls = []

    async def set_live(self, schedule_id, is_live):
        self.calls.append((schedule_id, is_live))
        if is_live and self.gate is not None:
            await self.gate.wait()
        return self.succeed


async def _wait_until(predicate, timeout=1.0):
    """Let background tasks run until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def geolocation():
    return FakeGeolocation()

@pytest.fixture
def channels():
    return ChannelFactory()

@pytest.fixture
def store():
    return MemorySharingStateStore()

@pytest.fixture
def notifier():
    return RecordingNotifier()

@pytest.fixture
def visibility():
    return FakeVisibility()

@pytest.fixture
def wait_until():
    return _wait_until
