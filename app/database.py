"""
Database Configuration

Async SQLAlchemy engine and session factory. Postgres (asyncpg) in
production, SQLite (aiosqlite) for local runs and tests. Journey state,
customer data and the idempotency table all live in this one database so
a transition commits atomically.
"""

import logging
import time

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from app.config import settings

logger = logging.getLogger(__name__)


def _engine_options() -> dict:
    options = {"echo": settings.sqlalchemy_echo, "future": True}
    if not settings.is_sqlite:
        # Pool sizing only applies to server databases
        options.update(
            pool_size=20,
            max_overflow=10,
            pool_recycle=3600,
            pool_pre_ping=True,
        )
    return options


def install_query_timing(target: AsyncEngine, threshold_ms: int) -> None:
    """Warn about statements slower than ``threshold_ms`` (segment scans, due-timer polls)."""

    @event.listens_for(target.sync_engine, "before_cursor_execute")
    def _start(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_started", []).append(time.monotonic())

    @event.listens_for(target.sync_engine, "after_cursor_execute")
    def _finish(conn, cursor, statement, parameters, context, executemany):
        started = conn.info.get("query_started")
        if not started:
            return
        elapsed_ms = (time.monotonic() - started.pop()) * 1000
        if elapsed_ms < threshold_ms:
            return
        first_line = statement.strip().splitlines()[0][:160] if statement.strip() else ""
        logger.warning(f"Slow query ({elapsed_ms:.0f}ms): {first_line}")


engine = create_async_engine(settings.DATABASE_URL, **_engine_options())
install_query_timing(engine, settings.SLOW_QUERY_THRESHOLD_MS)

# Session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


async def get_db() -> AsyncSession:
    """Dependency to get database session.

    Note: The orchestrator commits once per transition; plain CRUD
    endpoints commit themselves. This dependency only closes the session.
    """
    async with async_session_maker() as session:
        yield session


async def init_db():
    """Create journey, enrollment and customer tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
