from datetime import datetime

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.main import app
from app.database import Base, get_db
from app.core.clock import FrozenClock
from app.models.customer import Customer, Order
from app.models.journey import Journey
from app.services.journeys.enrollment_locks import EnrollmentLockRegistry
from app.services.journeys.journey_orchestrator import JourneyOrchestrator
from app.services.journeys.segment_cache import SegmentMembershipCache
from tests.factories import CustomerFactory, OrderFactory, JourneyFactory

# Test database URL (SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

# Every test starts at the same instant
NOW = datetime(2024, 6, 1, 12, 0, 0)


@pytest_asyncio.fixture
async def test_db():
    """Create test database and tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def clock() -> FrozenClock:
    """Manually advanced clock starting at NOW."""
    return FrozenClock(NOW)


@pytest.fixture
def segment_cache(clock: FrozenClock) -> SegmentMembershipCache:
    return SegmentMembershipCache(clock=clock)


@pytest.fixture
def locks() -> EnrollmentLockRegistry:
    return EnrollmentLockRegistry()


@pytest.fixture
def orchestrator(test_db: AsyncSession, clock, segment_cache, locks) -> JourneyOrchestrator:
    """Orchestrator over the test database driven by the frozen clock."""
    return JourneyOrchestrator(test_db, segment_cache=segment_cache, locks=locks, clock=clock)


@pytest_asyncio.fixture
async def client(test_db: AsyncSession, clock, segment_cache, locks):
    """Create test client with overridden database, clock and shared state."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    saved = (app.state.segment_cache, app.state.enrollment_locks)
    app.state.segment_cache = segment_cache
    app.state.enrollment_locks = locks
    app.state.clock = clock

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.segment_cache, app.state.enrollment_locks = saved
    app.state.clock = None


@pytest.fixture
def make_customer(test_db: AsyncSession):
    """Insert a customer built by CustomerFactory; keyword args override fields."""

    async def _make(**overrides) -> Customer:
        customer = Customer(**CustomerFactory(**overrides))
        test_db.add(customer)
        await test_db.commit()
        return customer

    return _make


@pytest.fixture
def make_order(test_db: AsyncSession):
    async def _make(customer: Customer, **overrides) -> Order:
        fields = {"customer_id": customer.id, "email": customer.email, **overrides}
        order = Order(**OrderFactory(**fields))
        test_db.add(order)
        await test_db.commit()
        return order

    return _make


@pytest.fixture
def make_journey(test_db: AsyncSession):
    """Insert a journey; ``definition`` may be a JourneyDefinition or a dict."""

    async def _make(**overrides) -> Journey:
        data = JourneyFactory(**overrides)
        definition = data["definition"]
        if hasattr(definition, "model_dump"):
            data["definition"] = definition.model_dump(mode="json")
        journey = Journey(**data)
        test_db.add(journey)
        await test_db.commit()
        return journey

    return _make
