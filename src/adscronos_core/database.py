"""PostgreSQL connection handle for adscronos repositories."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import asyncpg
from asyncpg import Pool

logger = logging.getLogger("adscronos.database")


class Database:
    """Owns one asyncpg pool. Created per application and passed explicitly."""

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10) -> None:
        # Heroku/Railway style DSNs
        if dsn.startswith("postgres://"):
            dsn = dsn.replace("postgres://", "postgresql://", 1)
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._pool: Optional[Pool] = None

    async def get_pool(self) -> Pool:
        """Get or create the connection pool."""
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                self._dsn,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=60,
            )
        return self._pool

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[asyncpg.Connection, None]:
        pool = await self.get_pool()
        async with pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[asyncpg.Connection, None]:
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def execute(self, query: str, *args) -> str:
        async with self.connection() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args) -> list:
        async with self.connection() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args):
        async with self.connection() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args):
        async with self.connection() as conn:
            return await conn.fetchval(query, *args)

    async def init_schema(self) -> None:
        """Create tables if they do not exist (dev/sandbox convenience)."""
        async with self.connection() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("Database schema ensured")


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS publishers (
    id TEXT PRIMARY KEY,
    app_id TEXT UNIQUE NOT NULL,
    name TEXT NOT NULL DEFAULT '',
    webhook_url TEXT,
    webhook_secret TEXT
);

CREATE TABLE IF NOT EXISTS ad_units (
    id TEXT PRIMARY KEY,
    publisher_id TEXT NOT NULL REFERENCES publishers(id),
    name TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS ad_events (
    id TEXT PRIMARY KEY,
    event_type TEXT NOT NULL,
    publisher_id TEXT NOT NULL REFERENCES publishers(id),
    ad_unit_id TEXT NOT NULL REFERENCES ad_units(id),
    signature TEXT,
    ts TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS webhook_deliveries (
    id TEXT PRIMARY KEY,
    publisher_id TEXT NOT NULL REFERENCES publishers(id),
    event_id TEXT NOT NULL,
    target_url TEXT NOT NULL,
    payload JSONB NOT NULL,
    signature TEXT,
    status TEXT NOT NULL DEFAULT 'PENDING',
    attempt INTEGER NOT NULL DEFAULT 0,
    next_attempt_at TIMESTAMPTZ,
    response_status INTEGER,
    error TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS premium_resources (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    category TEXT NOT NULL DEFAULT '',
    tags TEXT[] NOT NULL DEFAULT '{}',
    is_public BOOLEAN NOT NULL DEFAULT FALSE,
    ad_requirement JSONB,
    price TEXT,
    content TEXT NOT NULL DEFAULT '',
    preview_content TEXT NOT NULL DEFAULT '',
    format TEXT NOT NULL DEFAULT 'markdown',
    estimated_read_time INTEGER NOT NULL DEFAULT 0,
    published BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS ad_sessions (
    id TEXT PRIMARY KEY,
    resource_id TEXT NOT NULL REFERENCES premium_resources(id),
    ad_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    required_view_duration INTEGER NOT NULL,
    expires_at TIMESTAMPTZ NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS ad_completions (
    session_id TEXT PRIMARY KEY REFERENCES ad_sessions(id),
    completed BOOLEAN NOT NULL DEFAULT TRUE,
    view_duration INTEGER NOT NULL DEFAULT 0,
    payment_processed BOOLEAN NOT NULL DEFAULT FALSE,
    billing_amount NUMERIC(18, 6) NOT NULL DEFAULT 0,
    transaction_id TEXT NOT NULL DEFAULT '',
    interaction_data JSONB NOT NULL DEFAULT '{}',
    completed_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS resource_access (
    id TEXT PRIMARY KEY,
    resource_id TEXT NOT NULL REFERENCES premium_resources(id),
    user_id TEXT NOT NULL,
    access_method TEXT NOT NULL,
    session_id TEXT,
    expires_at TIMESTAMPTZ NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS x402_settlements (
    nonce TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    payer TEXT NOT NULL,
    amount TEXT NOT NULL,
    network TEXT NOT NULL,
    tx_hash TEXT,
    block_number BIGINT,
    error TEXT,
    settled_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

ALTER TABLE x402_settlements ADD COLUMN IF NOT EXISTS from_address TEXT;
ALTER TABLE x402_settlements ADD COLUMN IF NOT EXISTS to_address TEXT;
ALTER TABLE x402_settlements ADD COLUMN IF NOT EXISTS value TEXT;
ALTER TABLE x402_settlements ADD COLUMN IF NOT EXISTS chain_timestamp TEXT;
"""
