"""Pytest configuration and shared fixtures.

Tests run against an in-memory SQLite database (aiosqlite). The schema is
created from the ORM metadata for every test, so each test starts empty.
SQLite ignores SELECT ... FOR UPDATE; locking behavior is exercised against
PostgreSQL in deployment, not here.
"""

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from custodia.api import create_app
from custodia.api.dependencies import get_db_session
from custodia.core.config import DatabaseSettings, NotificationSettings, Settings
from custodia.db.models import Base
from custodia.services.lifecycle import DeliveryWorkflowService
from custodia.services.notifications import RecordingPublisher
from custodia.services.returns import DeliveryReturnService
from custodia.services.stock_ledger import StockLedgerService


# ---------------------------------------------------------------------------
# Configuration fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def settings() -> Settings:
    """Settings for an isolated test run (SQLite, no webhook)."""
    return Settings(
        database=DatabaseSettings(url="sqlite:///:memory:"),
        notifications=NotificationSettings(enabled=False),
    )


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def engine():
    """In-memory SQLite engine with the full schema.

    StaticPool keeps a single connection so every session sees the same
    in-memory database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Async session bound to the test database."""
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def publisher() -> RecordingPublisher:
    """Publisher that keeps transition events in memory."""
    return RecordingPublisher()


@pytest.fixture
def workflow(session, settings, publisher) -> DeliveryWorkflowService:
    """Delivery workflow service publishing into the recording publisher."""
    return DeliveryWorkflowService(session, settings=settings, publisher=publisher)


@pytest.fixture
def ledger(session, settings) -> StockLedgerService:
    """Stock ledger bound to the test session."""
    return StockLedgerService(session, settings.inventory)


@pytest.fixture
def returns(session, settings) -> DeliveryReturnService:
    """Return service bound to the test session."""
    return DeliveryReturnService(session, settings.inventory)


# ---------------------------------------------------------------------------
# API client fixture (in-process testing via ASGI transport)
# ---------------------------------------------------------------------------
@pytest.fixture
def test_app(settings, session, publisher):
    """Create a test FastAPI application instance.

    Uses the app factory with test settings; the database dependency is
    overridden to share the test session.
    """
    app = create_app(settings, publisher=publisher)

    async def override_db_session() -> AsyncGenerator[AsyncSession, None]:
        yield session

    app.dependency_overrides[get_db_session] = override_db_session
    return app


@pytest.fixture
async def api_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing the API.

    Uses httpx with ASGI transport for in-process testing.
    """
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
