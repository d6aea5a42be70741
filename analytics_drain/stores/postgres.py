"""Postgres event store backed by an asyncpg pool."""

import asyncio
import logging
import re
from datetime import datetime
from typing import Sequence

import asyncpg

from analytics_drain.config import settings
from analytics_drain.ingest.models import EVENT_COLUMNS, CanonicalEvent
from .base import AnalyticsSummary, EventStore, StoreError

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

# Driver, network and deadline failures all surface as StoreError
_STORE_FAILURES = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    event_id     TEXT PRIMARY KEY,
    occurred_at  TIMESTAMPTZ NOT NULL,
    session_id   TEXT,
    visit_id     TEXT,
    url          TEXT,
    path         TEXT,
    country      TEXT,
    city         TEXT,
    region       TEXT,
    referrer     TEXT,
    user_agent   TEXT,
    client_ip    TEXT,
    ingested_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS {index} ON {table} (occurred_at DESC);
"""

_SUMMARY_SQL = """
SELECT
    count(*) AS page_views,
    count(DISTINCT coalesce(visit_id, session_id, event_id)) AS visitors,
    max(occurred_at) AS last_event_at
FROM {table}
WHERE occurred_at >= $1
"""


def build_upsert_sql(table: str) -> str:
    """INSERT ... ON CONFLICT (event_id) overwriting every non-key column."""
    placeholders = ", ".join(f"${i}" for i in range(1, len(EVENT_COLUMNS) + 1))
    updates = ",\n    ".join(
        f"{column} = EXCLUDED.{column}" for column in EVENT_COLUMNS if column != "event_id"
    )
    return (
        f"INSERT INTO {table} ({', '.join(EVENT_COLUMNS)})\n"
        f"VALUES ({placeholders})\n"
        f"ON CONFLICT (event_id) DO UPDATE SET\n"
        f"    {updates},\n"
        f"    ingested_at = NOW()"
    )


class PostgresEventStore(EventStore):
    """Event store writing to a Postgres table through asyncpg."""

    def __init__(self, dsn: str | None = None, table: str | None = None):
        self.dsn = dsn if dsn is not None else settings.database_url
        self.table = table or settings.analytics_table
        if not _IDENTIFIER.match(self.table):
            raise ValueError(f"Invalid analytics table name: {self.table!r}")
        self._upsert_sql = build_upsert_sql(self.table)
        self._pool: asyncpg.Pool | None = None
        self._pool_lock = asyncio.Lock()

    @property
    def store_name(self) -> str:
        return "postgres"

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is not None:
            return self._pool
        async with self._pool_lock:
            if self._pool is None:
                if not self.dsn:
                    raise StoreError("Database not configured (DATABASE_URL)")
                dsn = self.dsn.replace("postgresql+asyncpg://", "postgresql://")
                pool = await asyncpg.create_pool(
                    dsn=dsn,
                    min_size=settings.db_pool_min_size,
                    max_size=settings.db_pool_max_size,
                )
                try:
                    async with pool.acquire() as conn:
                        await conn.execute(
                            _SCHEMA_SQL.format(
                                table=self.table,
                                index=f"{self.table.replace('.', '_')}_occurred_at_idx",
                            )
                        )
                except BaseException:
                    await pool.close()
                    raise
                self._pool = pool
                logger.info(f"Analytics DB pool ready ({self.table})")
        return self._pool

    async def _write(self, rows: list[tuple]) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(self._upsert_sql, rows)

    async def upsert_events(self, events: Sequence[CanonicalEvent]) -> int:
        if not events:
            return 0
        rows = [event.as_row() for event in events]
        try:
            await asyncio.wait_for(self._write(rows), timeout=settings.store_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise StoreError(
                f"Store write timed out after {settings.store_timeout_seconds:g}s"
            ) from e
        except _STORE_FAILURES as e:
            raise StoreError(str(e) or type(e).__name__) from e
        return len(rows)

    async def summarize(self, since: datetime) -> AnalyticsSummary:
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                rec = await conn.fetchrow(
                    _SUMMARY_SQL.format(table=self.table),
                    since,
                    timeout=settings.store_timeout_seconds,
                )
        except _STORE_FAILURES as e:
            raise StoreError(str(e) or type(e).__name__) from e

        return AnalyticsSummary(
            visitors=rec["visitors"],
            page_views=rec["page_views"],
            last_event_at=rec["last_event_at"],
        )

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
