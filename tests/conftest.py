"""
Shared test fixtures for the auto-checkout service test suite.

Async throughout (aiosqlite + AsyncSession).  Every test gets a fresh
in-memory database; steps that stand in for separate requests or sweep
ticks open their own session via ``session_factory``.
"""

import os
import sys
from types import SimpleNamespace
from typing import AsyncGenerator

import pytest

# Ensure project root is importable
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Override environment BEFORE importing application modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CORS_ORIGINS"] = '["*"]'
os.environ["CRON_API_KEY"] = "test-cron-key"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SWEEP_SCHEDULER_ENABLED"] = "false"

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.api.v1.deps import get_db
from app.core import events
from app.core.security import create_access_token
from app.db.base import Base
from app.main import app
from app.models.auto_checkout_settings import TenantAutoCheckoutSettings
from app.models.tenant import Branch, Employee, Tenant
from app.services import tenant_settings

CRON_KEY = "test-cron-key"

# Branch centre used by every fixture tenant, and points relative to it
BRANCH_LAT = 24.7136
BRANCH_LNG = 46.6753
BRANCH_RADIUS = 150.0
INSIDE = {"lat": 24.7137, "lng": 46.6754, "accuracy": 10.0}
OUTSIDE = {"lat": 24.7336, "lng": 46.6753, "accuracy": 10.0}  # ~2.2 km north


class _TestDB:
    engine = None
    session_factory: async_sessionmaker | None = None


@pytest.fixture(autouse=True)
async def setup_db():
    """Fresh in-memory database per test; tables created before and dropped after."""
    _TestDB.engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _TestDB.session_factory = async_sessionmaker(
        _TestDB.engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with _TestDB.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with _TestDB.engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await _TestDB.engine.dispose()


@pytest.fixture(autouse=True)
def reset_module_state():
    """Tenant-settings cache and event subscribers are process-wide."""
    tenant_settings.clear_cache()
    events.clear()
    yield
    tenant_settings.clear_cache()
    events.clear()


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with _TestDB.session_factory() as session:
        yield session


app.dependency_overrides[get_db] = _override_get_db


@pytest.fixture
async def async_client() -> AsyncGenerator[AsyncClient, None]:
    """Return a httpx AsyncClient wired to the app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def session_factory() -> async_sessionmaker:
    """Open independent sessions, one per simulated request / sweep tick."""
    return _TestDB.session_factory


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Return a raw database session for direct queries in tests."""
    async with _TestDB.session_factory() as session:
        yield session


# ── Seed data ───────────────────────────────────────────────────────
@pytest.fixture
def make_tenant(session_factory):
    """Create tenant + branch + employee (+ settings row unless disabled).

    Returns a namespace with the ids and a bearer ``headers`` dict.
    """

    async def _make(
        *,
        name: str = "Acme",
        enabled: bool = True,
        countdown_seconds: int = 300,
        outside_readings_required: int = 3,
        heartbeat_timeout_seconds: int = 120,
        with_settings: bool = True,
        employee_active: bool = True,
    ) -> SimpleNamespace:
        async with session_factory() as db:
            tenant = Tenant(name=name)
            db.add(tenant)
            await db.flush()

            branch = Branch(
                tenant_id=tenant.id,
                name=f"{name} HQ",
                latitude=BRANCH_LAT,
                longitude=BRANCH_LNG,
                geofence_radius=BRANCH_RADIUS,
            )
            db.add(branch)
            await db.flush()

            employee = Employee(
                tenant_id=tenant.id,
                branch_id=branch.id,
                full_name=f"{name} Employee",
                is_active=employee_active,
            )
            db.add(employee)

            if with_settings:
                db.add(
                    TenantAutoCheckoutSettings(
                        tenant_id=tenant.id,
                        enabled=enabled,
                        countdown_seconds=countdown_seconds,
                        outside_readings_required=outside_readings_required,
                        heartbeat_timeout_seconds=heartbeat_timeout_seconds,
                    )
                )
            await db.commit()

            token = create_access_token(employee.id, tenant.id)
            return SimpleNamespace(
                tenant_id=tenant.id,
                branch_id=branch.id,
                employee_id=employee.id,
                token=token,
                headers={"Authorization": f"Bearer {token}"},
            )

    return _make


@pytest.fixture
async def tenant(make_tenant) -> SimpleNamespace:
    """Default tenant: enabled, 300 s countdown, 3 readings, 120 s timeout."""
    return await make_tenant()
