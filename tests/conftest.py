import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.main import app
from app.database import Base, get_db
from app.services.cache_service import AggregationCache, get_aggregation_cache
from app.services.email_service import MockEmailService
from app.services.feedback.response_processor import ResponseProcessor, get_response_processor
from app.services.whatsapp_service import MockWhatsAppService
from app.api.deps import get_whatsapp_service
from app.tasks.dispatch_queue import DispatchQueue, get_dispatch_queue


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create test database (SQLite file per test) and tables."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    """Session factory bound to the test database, for code that opens its own sessions."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_whatsapp():
    return MockWhatsAppService()


@pytest.fixture
def mock_email():
    return MockEmailService()


@pytest.fixture
def aggregation_cache():
    return AggregationCache(default_ttl=60)


@pytest_asyncio.fixture
async def dispatch_queue():
    queue = DispatchQueue(max_workers=2, max_size=50)
    yield queue
    await queue.stop(drain=True, timeout=5.0)


@pytest.fixture
def response_processor(session_factory, mock_whatsapp, mock_email, aggregation_cache):
    return ResponseProcessor(
        session_factory=session_factory,
        whatsapp=mock_whatsapp,
        email=mock_email,
        cache=aggregation_cache,
    )


@pytest_asyncio.fixture
async def client(test_db, aggregation_cache, dispatch_queue, response_processor, mock_whatsapp):
    """Create test client with the database and engine services overridden."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_aggregation_cache] = lambda: aggregation_cache
    app.dependency_overrides[get_dispatch_queue] = lambda: dispatch_queue
    app.dependency_overrides[get_response_processor] = lambda: response_processor
    app.dependency_overrides[get_whatsapp_service] = lambda: mock_whatsapp

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
