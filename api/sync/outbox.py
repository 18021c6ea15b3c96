"""
Search-index outbox.

Relational writes that must be mirrored into the search index insert a row in
`search_outbox` inside their own transaction. After commit, `drain()` applies
pending rows to Elasticsearch and deletes each row once the index
acknowledged it. Index writes are idempotent by document id, so replaying a
row after a crash between the index write and the delete is harmless.

Drains are serialized by a PostgreSQL advisory lock. Two drains applying the
same rows could otherwise finish out of order and leave an older document
in the index after both rows were deleted.

Rows for the same document are applied in creation order: once one fails,
later rows for that document wait for the next drain.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any

import asyncpg

from core import db, errors, search
from resources import catalog, store
from resources.entities import SearchOutboxEntry, Stub

ARTICLES_INDEX = "articles"
PUBLISHERS_INDEX = "publishers"

ACTION_PUT = "put"
ACTION_DELETE = "delete"

DEFAULT_BATCH_SIZE = 100
DEFAULT_MAX_ATTEMPTS = 20
DEFAULT_INTERVAL_S = 30

# pg_try_advisory_lock key shared by every drain.
DRAIN_LOCK_KEY = 7_300_101

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def batch_size() -> int:
    value = _env_int("SEARCH_OUTBOX_BATCH_SIZE", DEFAULT_BATCH_SIZE)
    return value if value > 0 else DEFAULT_BATCH_SIZE


def max_attempts() -> int:
    value = _env_int("SEARCH_OUTBOX_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)
    return value if value > 0 else DEFAULT_MAX_ATTEMPTS


def drain_interval_s() -> int:
    """
    Seconds between periodic drains; 0 disables the periodic loop.
    """
    return max(0, _env_int("SEARCH_OUTBOX_INTERVAL_S", DEFAULT_INTERVAL_S))


@dataclass(frozen=True)
class DrainStats:
    applied: int
    failed: int
    deferred: int
    busy: bool = False


async def enqueue_put(conn: asyncpg.Connection, index: str, document_id: str, document: dict[str, Any]) -> Stub:
    return await store.create(
        conn,
        catalog.SEARCH_OUTBOX,
        {
            "index": index,
            "document_id": document_id,
            "action": ACTION_PUT,
            "document": document,
            "attempts": 0,
        },
    )


async def enqueue_delete(conn: asyncpg.Connection, index: str, document_id: str) -> Stub:
    return await store.create(
        conn,
        catalog.SEARCH_OUTBOX,
        {
            "index": index,
            "document_id": document_id,
            "action": ACTION_DELETE,
            "document": None,
            "attempts": 0,
        },
    )


async def _apply(entry: SearchOutboxEntry) -> None:
    if entry.action == ACTION_PUT:
        await search.put_document(entry.index, entry.document_id, entry.document or {})
    elif entry.action == ACTION_DELETE:
        await search.delete_document(entry.index, entry.document_id)
    else:
        raise errors.ImplementationError(f"Unknown outbox action '{entry.action}'.")


async def _record_failure(conn: asyncpg.Connection, entry: SearchOutboxEntry, exc: Exception) -> None:
    await store.update(
        conn,
        catalog.SEARCH_OUTBOX,
        {"id": entry.id},
        {"attempts": entry.attempts + 1, "last_error": str(exc)[:500]},
    )


async def drain(
    conn: asyncpg.Connection,
    *,
    limit: int | None = None,
    attempts_limit: int | None = None,
) -> DrainStats:
    """
    Apply pending entries, oldest first, until no untried entry is left.

    Only one drain runs at a time: the advisory lock is held on `conn` for the
    whole drain, and a drain that finds it taken returns at once with
    `busy=True`. `limit` is the number of new rows read per query. Entries that
    already failed `attempts_limit` times are never read, so they stay in
    the table for inspection without holding back newer ones.
    """
    limit = limit or batch_size()
    attempts_limit = attempts_limit or max_attempts()

    async with db.advisory_lock(conn, DRAIN_LOCK_KEY) as locked:
        if not locked:
            logger.info("outbox_drain_busy")
            return DrainStats(applied=0, failed=0, deferred=0, busy=True)

        seen: set[str] = set()
        blocked: set[tuple[str, str]] = set()
        applied = failed = deferred = 0

        while True:
            entries = await store.list_below(
                conn,
                catalog.SEARCH_OUTBOX,
                "attempts",
                attempts_limit,
                limit=limit + len(seen),
            )
            # Rows that failed or were deferred in this drain come back first;
            # reading past them keeps a failing head from hiding later rows.
            fresh = [entry for entry in entries if entry.id not in seen]
            if not fresh:
                break

            for entry in fresh:
                seen.add(entry.id)
                document_key = (entry.index, entry.document_id)
                if document_key in blocked:
                    deferred += 1
                    continue

                try:
                    await _apply(entry)
                except errors.ExternalSystemFailure as exc:
                    blocked.add(document_key)
                    failed += 1
                    logger.warning(
                        "outbox_failed entry_id=%s index=%s document_id=%s action=%s attempts=%s error=%s",
                        entry.id,
                        entry.index,
                        entry.document_id,
                        entry.action,
                        entry.attempts + 1,
                        exc,
                    )
                    await _record_failure(conn, entry, exc)
                    continue

                await store.delete(conn, catalog.SEARCH_OUTBOX, {"id": entry.id})
                applied += 1
                logger.info(
                    "outbox_applied entry_id=%s index=%s document_id=%s action=%s",
                    entry.id,
                    entry.index,
                    entry.document_id,
                    entry.action,
                )

    return DrainStats(applied=applied, failed=failed, deferred=deferred)


async def drain_background() -> None:
    """
    BackgroundTasks entrypoint.

    This should never raise to the request path; we just log failures. Rows
    left behind are picked up by the next drain.
    """
    try:
        async with db.pool().acquire() as conn:
            stats = await drain(conn)
        if stats.applied or stats.failed:
            logger.info(
                "outbox_drained applied=%s failed=%s deferred=%s",
                stats.applied,
                stats.failed,
                stats.deferred,
            )
    except Exception:
        logger.exception("outbox_drain_failed")


async def drain_periodically(interval_s: int) -> None:
    """
    Lifespan task: keep retrying pending entries until the process stops.
    """
    while True:
        await asyncio.sleep(interval_s)
        await drain_background()
