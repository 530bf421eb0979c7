"""
Campus Notes – Async SQLAlchemy engine, session, and declarative base.
"""

from __future__ import annotations

from typing import Optional, Tuple

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from campusnotes.config import settings

# ── Engine ──
engine_kwargs = {
    "echo": settings.DEBUG,
    "future": True,
}

# If using PostgreSQL behind PgBouncer (transaction mode), disable prepared
# statement caching because it is not supported there.
if "postgresql" in settings.DATABASE_URL:
    engine_kwargs["connect_args"] = {"statement_cache_size": 0}

# aiosqlite connections belong to the event loop that opened them.
if settings.DATABASE_URL.startswith("sqlite"):
    engine_kwargs["poolclass"] = NullPool

engine = create_async_engine(
    settings.DATABASE_URL,
    **engine_kwargs
)

# ── Session factory ──
async_session = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── Declarative base ──
class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


# ── Dependency for FastAPI routes ──
async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async database session, auto-closed on exit."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Set-style inserts ──
def insert_ignore(session: AsyncSession, model, rows):
    """
    ``INSERT ... ON CONFLICT DO NOTHING`` for the session's dialect.

    Membership is decided by the table's unique constraint, so concurrent
    writers of the same row cannot both succeed.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(model)
    elif dialect == "sqlite":
        stmt = sqlite_insert(model)
    else:
        raise NotImplementedError(f"insert_ignore is not supported on {dialect}")
    return stmt.values(rows).on_conflict_do_nothing()


# ── Pagination ──
# Largest value an Integer column holds on both SQLite and PostgreSQL.
MAX_ID = 2**31 - 1


def clamp_page(page: Optional[int], limit: Optional[int], default: int, maximum: int) -> Tuple[int, int]:
    """
    Bound client paging input: ``page >= 1`` and ``1 <= limit <= maximum``.

    A missing ``limit`` falls back to ``default``; out-of-range values are
    clamped rather than rejected.
    """
    limit = default if limit is None else limit
    limit = min(max(limit, 1), maximum)
    page = 1 if page is None else page
    page = min(max(page, 1), MAX_ID // limit)
    return page, limit
