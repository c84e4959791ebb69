"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks the board provider and Redis.
"""
import os

os.environ.setdefault("APP_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_BASE_URL", "https://sync.example.com")

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB, UUID

import src.models  # noqa: F401  (registers every table on Base.metadata)
from src.database import Base


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


# UUID columns get TEXT affinity; the default NUMERIC affinity turns
# all-digit hex ids into numbers
@compiles(UUID, "sqlite")
def _compile_uuid_sqlite(type_, compiler, **kw):
    return "CHAR(32)"


def _enable_savepoints(engine):
    """pysqlite defers BEGIN, which breaks SAVEPOINT; emit it explicitly."""

    @event.listens_for(engine.sync_engine, "connect")
    def _no_implicit_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest.fixture
async def db():
    """In-memory SQLite database for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    _enable_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture(autouse=True)
def mock_redis():
    """Mock for async Redis, prevents real Redis calls in tests."""
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[0, 1, 1, True])
    redis_mock = AsyncMock()
    redis_mock.pipeline = MagicMock(return_value=pipe)
    redis_mock.set = AsyncMock(return_value=True)
    redis_mock.ping = AsyncMock(return_value=True)
    with patch("src.utils.redis_client.get_redis", new=AsyncMock(return_value=redis_mock)):
        yield redis_mock


@pytest.fixture
def trello_client():
    """Mock provider client handed out by every BoardConfig.client() call."""
    client = MagicMock()
    client.get_card = AsyncMock(return_value=None)
    client.get_board_cards = AsyncMock(return_value=[])
    client.get_board_lists = AsyncMock(return_value=[])
    client.get_board = AsyncMock(return_value=None)
    client.get_member_me = AsyncMock()
    client.list_token_webhooks = AsyncMock(return_value=[])
    client.create_webhook = AsyncMock()
    client.delete_webhook = AsyncMock(return_value=True)
    with patch("src.services.board_config.TrelloClient", return_value=client):
        yield client
