"""
Centralized Test Configuration.
"""

import pytest
from datetime import datetime
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from rental_backend.app.main import app
from rental_backend.app.db.session import get_db, Base
from rental_backend.app.core.redis_client import get_redis
from rental_backend.app.core.dependencies import get_storage, get_clock
from rental_backend.app.core.reliability import storage_circuit_breaker
from rental_backend.app.domain.rental.lifecycle_service import ReservationLifecycleService
from rental_backend.app.domain.rental.pricing import RentalTerms
from rental_backend.app.models.vehicle import Vehicle
from rental_backend.app.models.customer import Customer
from rental_backend.app.models.rental_enums import VehicleStatus
import rental_backend.app.core.redis_client as redis_client_module

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

FIXED_NOW = datetime(2025, 6, 1, 8, 0, 0)


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

    async def set(self, key, value, ex=None, nx=False):
        if self._closed:
            return False
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


class FixedClock:
    """Clock frozen at a settable instant."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.current = now

    def now(self) -> datetime:
        return self.current


class InMemoryStorage:
    """File storage keeping uploads in a dict. Set ``fail`` to simulate an outage."""

    def __init__(self):
        self.files = {}
        self.fail = False

    async def store(self, folder: str, filename: str, content: bytes) -> str:
        if self.fail:
            raise OSError("storage backend unreachable")
        key = f"{folder}/{len(self.files) + 1}-{filename}"
        self.files[key] = content
        return f"memory://{key}"


@pytest.fixture
def redis_mock():
    return MockRedis()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture(autouse=True)
def apply_overrides(redis_mock, storage, clock):
    """Point the app at the in-memory database, Redis, storage and clock."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_mock

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_mock

    async def override_get_storage():
        return storage

    async def override_get_clock():
        return clock

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_storage] = override_get_storage
    app.dependency_overrides[get_clock] = override_get_clock
    storage_circuit_breaker.reset_state()
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client
    storage_circuit_breaker.reset_state()


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


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


@pytest.fixture
def terms():
    return RentalTerms(free_km_per_day=300, overage_fee_per_km=3.0, deposit_amount=5000.0, currency="CZK")


@pytest.fixture
def lifecycle(db_session, redis_mock, storage, clock, terms):
    return ReservationLifecycleService(db_session, redis_mock, storage, clock, terms)


async def create_vehicle(db: AsyncSession, **overrides) -> Vehicle:
    values = dict(
        name="Skoda Octavia",
        make="Skoda",
        model="Octavia Combi",
        year=2021,
        license_plate="1AB 2345",
        status=VehicleStatus.AVAILABLE,
        current_mileage=50000,
        rate_4h=800.0,
        rate_12h=1200.0,
        daily_rate=1500.0,
    )
    values.update(overrides)
    vehicle = Vehicle(**values)
    db.add(vehicle)
    await db.commit()
    await db.refresh(vehicle)
    return vehicle


async def create_customer(db: AsyncSession, **overrides) -> Customer:
    values = dict(
        first_name="Jana",
        last_name="Novakova",
        email="jana.novakova@example.com",
        phone="+420 777 123 456",
        address="Masarykova 12, 60200 Brno",
        company_id=None,
        driver_license_number="EH123456",
        driver_license_image_url="memory://licenses/existing.jpg",
    )
    values.update(overrides)
    customer = Customer(**values)
    db.add(customer)
    await db.commit()
    await db.refresh(customer)
    return customer


@pytest.fixture
async def vehicle(db_session):
    return await create_vehicle(db_session)


@pytest.fixture
async def customer(db_session):
    return await create_customer(db_session)


@pytest.fixture
def make_vehicle(db_session):
    async def _make(**overrides):
        return await create_vehicle(db_session, **overrides)
    return _make


@pytest.fixture
def make_customer(db_session):
    async def _make(**overrides):
        return await create_customer(db_session, **overrides)
    return _make
