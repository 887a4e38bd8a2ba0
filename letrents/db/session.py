"""
db/session.py
-------------
Async engine, session factory and the request-scoped get_db dependency.

PostgreSQL (asyncpg) in deployments; SQLite (aiosqlite) for local runs and
tests. SQLite gets no pool sizing: in-memory databases use a static pool
that rejects pool_size/max_overflow.

Sessions never expire attributes on commit, so services can keep using
ORM objects after committing (webhook handlers log and reconcile the row
they just stored). Services commit explicitly wherever durability must
precede a side effect, such as an email going out or a webhook being
acknowledged; get_db commits whatever is left.
"""

from typing import Any, AsyncIterator, Dict

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from letrents.core.config import settings


def engine_options(database_url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.DEBUG}
    if make_url(database_url).get_backend_name() == "sqlite":
        return options
    options.update(
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,     # survive Postgres restarts / idle disconnects
        pool_recycle=3600,
    )
    return options


# ── Engine / Session Factory ──────────────────────────────────────────────────
engine = create_async_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield one session per request; commit on success, roll back on error."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
