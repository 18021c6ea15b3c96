"""
Internal endpoints for the search outbox.
"""

from __future__ import annotations

import asyncpg
from fastapi import APIRouter, Depends, Query

from auth import dependencies as auth_dependencies
from core import db
from resources import catalog, store
from resources.entities import User

from . import outbox

router = APIRouter()


@router.get("/internal/search-outbox")
async def list_pending(
    limit: int = Query(100, ge=1, le=1000),
    conn: asyncpg.Connection = Depends(db.connection),
    _: User = Depends(auth_dependencies.require_admin),
) -> dict:
    entries = await store.list_all(conn, catalog.SEARCH_OUTBOX, limit=limit)
    return {
        "entries": [
            {
                "id": entry.id,
                "index": entry.index,
                "document_id": entry.document_id,
                "action": entry.action,
                "attempts": entry.attempts,
                "last_error": entry.last_error,
                "created_at": entry.created_at,
            }
            for entry in entries
        ],
        "count": len(entries),
    }


@router.post("/internal/search-outbox/drain")
async def drain(
    limit: int | None = Query(default=None, ge=1, le=1000),
    conn: asyncpg.Connection = Depends(db.connection),
    _: User = Depends(auth_dependencies.require_admin),
) -> dict:
    stats = await outbox.drain(conn, limit=limit)
    return {
        "applied": stats.applied,
        "failed": stats.failed,
        "deferred": stats.deferred,
        "busy": stats.busy,
    }
