"""
Article draft API endpoints.
"""

from __future__ import annotations

import asyncpg
from fastapi import APIRouter, BackgroundTasks, Depends, Query

from auth import dependencies as auth_dependencies
from core import db
from resources import serializers
from resources.entities import User
from resources.expansion import parse_expand
from sync import outbox, publish

from . import schemas, service

router = APIRouter()


@router.post("/articles/drafts")
async def create_draft(
    request: schemas.CreateDraftRequest,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    draft = await service.create_draft(
        conn,
        viewer,
        author_id=request.author,
        title=request.title,
        content=request.content,
        sources=request.sources,
        expand=parse_expand(expand),
    )
    return serializers.serialize(draft, viewer)


@router.post("/articles/{article_id}/drafts")
async def create_draft_from_article(
    article_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    draft = await service.create_draft_from_article(conn, viewer, article_id, expand=parse_expand(expand))
    return serializers.serialize(draft, viewer)


# Registered before /articles/drafts/{draft_id} so "submitted" is not taken as an id.
@router.get("/articles/drafts/submitted")
async def list_submitted_drafts(
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.require_admin),
) -> dict:
    drafts = await service.list_submitted(conn, expand=parse_expand(expand))
    return {"drafts": serializers.serialize_many(drafts, viewer), "count": len(drafts)}


@router.get("/articles/drafts/{draft_id}")
async def get_draft(
    draft_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    draft = await service.retrieve_draft(conn, viewer, draft_id, expand=parse_expand(expand))
    return serializers.serialize(draft, viewer)


@router.get("/articles/drafts/{draft_id}/sources")
async def list_draft_sources(
    draft_id: str,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    sources = await service.list_draft_sources(conn, viewer, draft_id)
    return {"sources": serializers.serialize_many(sources, viewer), "count": len(sources)}


@router.get("/authors/{author_id}/drafts")
async def list_author_drafts(
    author_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    drafts = await service.list_author_drafts(conn, viewer, author_id, expand=parse_expand(expand))
    return {"drafts": serializers.serialize_many(drafts, viewer), "count": len(drafts)}


@router.patch("/articles/drafts/{draft_id}")
async def update_draft(
    draft_id: str,
    request: schemas.UpdateDraftRequest,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    draft = await service.update_draft(
        conn,
        viewer,
        draft_id,
        title=request.title,
        content=request.content,
        sources=request.sources,
        expand=parse_expand(expand),
    )
    return serializers.serialize(draft, viewer)


@router.delete("/articles/drafts/{draft_id}")
async def delete_draft(
    draft_id: str,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.delete_draft(conn, viewer, draft_id)
    return {"ok": True}


@router.post("/articles/drafts/{draft_id}/verify")
async def submit_draft_for_verification(
    draft_id: str,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    draft = await service.submit_for_verification(conn, viewer, draft_id)
    return serializers.serialize(draft, viewer)


@router.post("/articles/drafts/{draft_id}/publish")
async def publish_draft(
    draft_id: str,
    background_tasks: BackgroundTasks,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.require_admin),
) -> dict:
    article = await publish.publish_draft(conn, draft_id)

    # Index the article after we return the HTTP response.
    background_tasks.add_task(outbox.drain_background)
    return serializers.serialize(article, viewer)
