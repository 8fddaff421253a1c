"""
Shared fixtures.

Each test gets its own SQLite file so the worker's session and the
delivery log's session see the same data.
"""
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from storefront.models.base import Base
from storefront.services.webhook_service import WebhookWorker
from tests.factories import Receiver


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def receiver():
    return Receiver()


@pytest.fixture
def worker(session_factory, receiver):
    return WebhookWorker(session_factory, client_factory=receiver.client_factory)
