"""Shared pytest fixtures for the MII test suite.

Provides:
- db_engine: in-memory SQLite async engine with all tables
- db_connection: one connection inside an outer transaction, rolled back at teardown
- db_session: SAVEPOINT-isolated async session (app commits don't leak)
- session_factory: per-attempt sessions on the same connection, for recalculations
- client: AsyncClient with dependency overrides for DB-backed testing
- anyio_backend: asyncio only (the orchestrator relies on asyncio locks)
"""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from mii.db.session import Base, get_async_session, get_session_factory
import mii.db.tables  # noqa: F401 register ORM models on Base.metadata


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine with all tables."""
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def db_connection(db_engine):
    """Connection whose outer transaction is never committed."""
    async with db_engine.connect() as conn:
        trans = await conn.begin()
        yield conn
        await trans.rollback()


@pytest.fixture
async def db_session(db_connection):
    """Provide a SAVEPOINT-isolated session.

    The outer transaction is never committed — it rolls back at teardown.
    Application code calling session.commit() triggers a SAVEPOINT release,
    which is then restarted so subsequent operations stay in the same
    outer transaction. This ensures full test isolation.
    """
    conn = db_connection
    session = AsyncSession(bind=conn, expire_on_commit=False)

    # Start a nested SAVEPOINT
    nested = await conn.begin_nested()

    @event.listens_for(session.sync_session, "after_transaction_end")
    def restart_savepoint(sync_session, transaction):  # noqa: ARG001
        nonlocal nested
        if transaction.nested and not transaction._parent.nested:
            nested = conn.sync_connection.begin_nested()

    yield session

    await session.close()


@pytest.fixture
def session_factory(db_connection) -> async_sessionmaker[AsyncSession]:
    """Sessions that commit into a SAVEPOINT of the test connection.

    Each one sees rows flushed by ``db_session``; nothing reaches the
    database past the outer transaction.
    """
    return async_sessionmaker(
        bind=db_connection,
        class_=AsyncSession,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )


@pytest.fixture
async def client(db_session, session_factory):
    """AsyncClient with the session and session factory overridden."""
    from mii.api.main import app

    async def _override_session():
        yield db_session

    app.dependency_overrides[get_async_session] = _override_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
