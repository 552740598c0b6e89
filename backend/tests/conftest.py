"""
Test Configuration — Fixtures for async DB, test client, clock and seed data.

Each test gets its own in-memory SQLite database so the engine's own
commits and rollbacks cannot leak between tests.
"""

import uuid
from datetime import date, datetime

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.pool import StaticPool

from api.deps import get_clock, get_current_user, get_db, get_tenant_db
from api.main import app
from core.clock import FixedClock
from db.session import Base, build_engine

# Use in-memory SQLite for tests (no RLS, no row locks).
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TENANT_ID = "00000000-0000-0000-0000-000000000001"
OTHER_TENANT_ID = "00000000-0000-0000-0000-000000000002"
BRANCH_ID = "00000000-0000-0000-0000-0000000000b1"


@pytest.fixture
async def test_engine():
    """Fresh database per test; StaticPool keeps the single in-memory connection alive."""
    engine = build_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    session = AsyncSession(bind=test_engine, expire_on_commit=False)
    yield session
    await session.close()


@pytest.fixture
def tenant_id() -> uuid.UUID:
    return uuid.UUID(TENANT_ID)


@pytest.fixture
def clock() -> FixedClock:
    """Pinned to the first day of scenario contracts."""
    return FixedClock(datetime(2024, 1, 1, 9, 0, 0))


@pytest.fixture
def mock_user():
    """Mock authenticated user."""
    return {
        "sub": "auth0|test-user-id",
        "email": "tech@maintainops.test",
        "tenant_id": TENANT_ID,
    }


@pytest.fixture
async def client(test_db, mock_user, clock):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    def override_get_current_user():
        return mock_user

    async def override_get_tenant_db():
        """Skip set_config (SQLite doesn't support it), return session directly."""
        return test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_tenant_db] = override_get_tenant_db
    app.dependency_overrides[get_clock] = lambda: clock

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_contract(test_db, tenant_id):
    """Factory for contracts; defaults to an active monthly Jan–Jun 2024 contract."""
    from maintenance.contracts import create_contract

    async def _make(**overrides):
        fields = {
            "tenant_id": tenant_id,
            "branch_id": uuid.UUID(BRANCH_ID),
            "frequency": "monthly",
            "start_date": date(2024, 1, 1),
            "end_date": date(2024, 6, 1),
            "status": "active",
            "customer_name": "Northwind Clinic",
        }
        fields.update(overrides)
        return await create_contract(test_db, **fields)

    return _make


@pytest.fixture
def make_part(test_db, tenant_id):
    from maintenance.inventory import create_part

    async def _make(sku: str, stock_quantity: int, unit_cost: float = 10.0, **overrides):
        part = await create_part(
            test_db,
            tenant_id=overrides.pop("tenant_id", tenant_id),
            sku=sku,
            name=overrides.pop("name", f"Part {sku}"),
            stock_quantity=stock_quantity,
            unit_cost=unit_cost,
        )
        await test_db.commit()
        return part

    return _make


@pytest.fixture
async def in_progress_visit(test_db, make_contract, clock):
    """First visit of the default contract, started by a technician."""
    from maintenance.execution import start_visit
    from maintenance.scheduling import generate_scheduled_visits

    contract = await make_contract()
    visits = await generate_scheduled_visits(test_db, contract.contract_id, clock=clock)
    return await start_visit(test_db, visits[0].visit_id, uuid.uuid4(), clock=clock)
