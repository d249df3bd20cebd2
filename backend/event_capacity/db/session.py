"""
Async engine and session factory.

Every capacity-changing operation opens its own short transaction from the
session factory, so the factory (not a request-scoped session) is what the
API layer hands to the capacity manager.

SQLite is supported for local runs and tests. It has no row locks, so each
transaction is started with BEGIN IMMEDIATE: writers then serialize on the
database write lock and a busy database surfaces as a lock timeout.
"""

from functools import lru_cache
from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from event_capacity.core.config import get_settings


def is_sqlite_url(url: str) -> bool:
    return make_url(url).get_backend_name() == "sqlite"


def _configure_sqlite(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself instead of the driver's implicit one
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, lock_timeout_ms: int | None = None, **kwargs) -> AsyncEngine:
    settings = get_settings()
    timeout_ms = lock_timeout_ms if lock_timeout_ms is not None else settings.DB_LOCK_TIMEOUT_MS

    if is_sqlite_url(url):
        engine = create_async_engine(
            url,
            connect_args={"timeout": timeout_ms / 1000},
            **kwargs,
        )
        _configure_sqlite(engine)
        return engine

    return create_async_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
        **kwargs,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def apply_lock_timeout(session: AsyncSession, timeout_ms: int) -> None:
    """Bound row-lock waits for the current transaction. SQLite relies on the connect timeout."""
    if session.bind.dialect.name == "postgresql":
        await session.execute(text(f"SET LOCAL lock_timeout = '{int(timeout_ms)}ms'"))


@lru_cache()
def get_engine() -> AsyncEngine:
    settings = get_settings()
    return build_engine(settings.DATABASE_URL, echo=settings.DEBUG)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return _default_session_factory()


@lru_cache()
def _default_session_factory() -> async_sessionmaker[AsyncSession]:
    return build_session_factory(get_engine())


async def get_db(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session for reads and simple writes. Commits on success."""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def dispose_engine() -> None:
    if get_engine.cache_info().currsize:
        await get_engine().dispose()
