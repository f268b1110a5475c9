import logging
from pathlib import Path
from typing import List

import asyncpg

from .config import Settings

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"
STARTUP_PING_TIMEOUT = 60.0


async def create_pool(settings: Settings) -> asyncpg.pool.Pool:
    """
    Create a connection pool and make sure the database answers.

    The caller owns the pool and must close it with close_pool().
    """
    pool = await asyncpg.create_pool(
        dsn=settings.postgres_dsn,
        min_size=1,
        max_size=settings.db_max_conns,
        statement_cache_size=200,
    )
    try:
        await ping(pool, STARTUP_PING_TIMEOUT)
    except Exception:
        await pool.close()
        raise
    return pool


async def close_pool(pool: asyncpg.pool.Pool) -> None:
    await pool.close()


async def ping(pool: asyncpg.pool.Pool, timeout: float) -> None:
    async with pool.acquire(timeout=timeout) as conn:
        await conn.execute("SELECT 1;", timeout=timeout)


async def migrate(pool: asyncpg.pool.Pool) -> List[str]:
    """
    Apply pending migrations/*.sql in name order. Returns the versions applied.
    """
    async with pool.acquire() as conn:
        await conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_versions ("
            "  version text PRIMARY KEY,"
            "  applied_at timestamptz NOT NULL DEFAULT now()"
            ")"
        )
        rows = await conn.fetch("SELECT version FROM schema_versions")
        applied = {row["version"] for row in rows}

        newly_applied = []
        for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
            if path.stem in applied:
                continue
            async with conn.transaction():
                await conn.execute(path.read_text(encoding="utf-8"))
                await conn.execute(
                    "INSERT INTO schema_versions (version) VALUES ($1)", path.stem
                )
            logger.info("Applied migration %s", path.stem)
            newly_applied.append(path.stem)
    return newly_applied
