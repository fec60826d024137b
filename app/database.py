"""
Database Configuration

One async engine per process. Request handlers get a session through
get_db(); background work (dispatch jobs, the daily alert run) opens its own
sessions from async_session_maker because it outlives the request.

SECURITY:
- SQLAlchemy echo disabled in production to prevent credential leakage
- Connection string never logged
"""

import logging
import time

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from app.config import settings

logger = logging.getLogger(__name__)


def build_engine(url: str) -> AsyncEngine:
    """Async engine for url; pool sizing only applies to server databases."""
    options = {}
    if not url.startswith("sqlite"):
        options = {
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_recycle": 3600,
            "pool_pre_ping": True,
        }
    return create_async_engine(url, echo=settings.sqlalchemy_echo, future=True, **options)


def install_query_timer(sync_engine: Engine, threshold_ms: int) -> None:
    """Log statements slower than threshold_ms (analytics reads are the usual suspects)."""

    @event.listens_for(sync_engine, "before_cursor_execute")
    def _start(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_start_time", []).append(time.monotonic())

    @event.listens_for(sync_engine, "after_cursor_execute")
    def _stop(conn, cursor, statement, parameters, context, executemany):
        starts = conn.info.get("query_start_time")
        if not starts:
            return
        duration_ms = (time.monotonic() - starts.pop()) * 1000
        if duration_ms < threshold_ms:
            return
        first_line = statement.strip().splitlines()[0] if statement.strip() else ""
        logger.warning("Slow query (%.0fms): %s", duration_ms, first_line[:200])


engine = build_engine(settings.DATABASE_URL)
install_query_timer(engine.sync_engine, settings.DB_SLOW_QUERY_MS)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


async def get_db() -> AsyncSession:
    """Request-scoped session. Writers commit explicitly (see FeedbackRepository)."""
    async with async_session_maker() as session:
        yield session


async def init_db():
    """Create any missing tables for the survey, notification and settings models."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
