"""
create_tables.py
----------------
Create every LetRents table (users, tokens, companies, units, paybill
settings, M-Pesa transactions, payments) against DATABASE_URL.

Idempotent: existing tables are left alone. Schema changes to existing
tables need a migration tool; this script only bootstraps.

Usage:
    python create_tables.py
"""

import asyncio

from letrents.core.logging import configure_logging, get_logger
from letrents.db.session import engine
from letrents.models import Base  # populates Base.metadata

logger = get_logger(__name__)


async def create_all_tables() -> list[str]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()

    tables = sorted(Base.metadata.tables)
    logger.info("Tables ready", url=engine.url.render_as_string(hide_password=True), tables=tables)
    return tables


if __name__ == "__main__":
    configure_logging()
    asyncio.run(create_all_tables())
