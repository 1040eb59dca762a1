"""
Async engine, session factories and FastAPI session dependencies.

Two dependencies are exposed:
- get_db: a request-scoped session, committed when the handler returns.
- get_session_factory: the factory itself, for work that outlives the
  request (the payment callback is reconciled after the response is sent)
  or that needs a fresh session per retry attempt.

SQLite (local development and tests) has no row locks. Transactions there
are opened with BEGIN IMMEDIATE so the database write lock is taken up front
and concurrent writers serialize on it instead.
"""

from typing import AsyncGenerator

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ticketing.core.config import get_settings

settings = get_settings()


def create_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        sqlite_engine = create_async_engine(url, connect_args={"timeout": 30})
        _use_immediate_transactions(sqlite_engine)
        return sqlite_engine

    return create_async_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
    )


def _use_immediate_transactions(sqlite_engine: AsyncEngine) -> None:
    @event.listens_for(sqlite_engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = create_engine(settings.DATABASE_URL)
AsyncSessionLocal = make_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return AsyncSessionLocal


async def apply_transaction_timeouts(
    db: AsyncSession,
    statement_timeout_ms: int,
    lock_timeout_ms: int,
) -> None:
    """
    Bound the current transaction so a stuck row lock cannot hold a
    reconciliation open indefinitely. PostgreSQL only; SET LOCAL expires
    with the transaction.
    """
    if db.get_bind().dialect.name != "postgresql":
        return
    await db.execute(text(f"SET LOCAL statement_timeout = {int(statement_timeout_ms)}"))
    await db.execute(text(f"SET LOCAL lock_timeout = {int(lock_timeout_ms)}"))
