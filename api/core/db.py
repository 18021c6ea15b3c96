"""
Async database access (raw SQL) using asyncpg.

This module owns the connection pool. FastAPI initializes it on startup and
closes it on shutdown (see `api/main.py`).

Apart from advisory locks nothing here issues queries: every request
acquires a connection through `connection()` and passes it explicitly to
the Store, so tests can hand in a fake connection instead.

SQL parameter style:
- asyncpg uses positional placeholders: $1, $2, $3, ...
"""

from __future__ import annotations

import json
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import asyncpg

_pool: asyncpg.Pool | None = None


def _sanitize_database_url(url: str) -> str:
    parts = urlsplit(url)
    if not parts.query:
        return url

    params = [(k, v) for (k, v) in parse_qsl(parts.query, keep_blank_values=True) if k != "sslmode"]
    query = urlencode(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def database_url() -> str:
    url = os.environ.get("DATABASE_URL", "").strip()
    if not url:
        raise RuntimeError("DATABASE_URL is not set.")
    return _sanitize_database_url(url)


async def _init_connection(conn: asyncpg.Connection) -> None:
    # asyncpg returns json/jsonb as text by default; decode to Python objects.
    for type_name in ("json", "jsonb"):
        await conn.set_type_codec(
            type_name,
            encoder=lambda value: json.dumps(value, ensure_ascii=True),
            decoder=json.loads,
            schema="pg_catalog",
        )


async def init_pool() -> None:
    global _pool
    if _pool is not None:
        return None
    _pool = await asyncpg.create_pool(
        dsn=database_url(),
        min_size=1,
        max_size=10,
        command_timeout=30,
        init=_init_connection,
    )


async def close_pool() -> None:
    global _pool
    if _pool is None:
        return None
    await _pool.close()
    _pool = None


def pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("DB pool is not initialized. Call init_pool() on startup.")
    return _pool


async def connection() -> AsyncIterator[asyncpg.Connection]:
    """
    FastAPI dependency: one pooled connection per request.
    """
    async with pool().acquire() as conn:
        yield conn


@asynccontextmanager
async def advisory_lock(conn: asyncpg.Connection, key: int) -> AsyncIterator[bool]:
    """
    Hold the session-level advisory lock `key` on `conn` for the block.

    Yields False without waiting when another session holds it. The lock is
    tied to the connection, so it is released if the process dies mid-block.
    """
    row = await conn.fetchrow("SELECT pg_try_advisory_lock($1) AS locked", key)
    locked = bool(row and row["locked"])
    try:
        yield locked
    finally:
        if locked:
            await conn.fetchrow("SELECT pg_advisory_unlock($1) AS unlocked", key)
