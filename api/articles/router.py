"""
Article API endpoints.
"""

from __future__ import annotations

import asyncpg
from fastapi import APIRouter, BackgroundTasks, Depends, Query

from auth import dependencies as auth_dependencies
from core import db
from resources import serializers
from resources.entities import User
from resources.expansion import parse_expand
from sync import outbox

from . import service

router = APIRouter()


@router.get("/articles/search")
async def search_articles(
    q: str = Query(..., min_length=1, max_length=500),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User | None = Depends(auth_dependencies.get_optional_user),
) -> dict:
    articles = await service.search_articles(conn, q, limit=limit, offset=offset, expand=parse_expand(expand))
    return {
        "articles": serializers.serialize_many(articles, viewer),
        "limit": limit,
        "offset": offset,
        "count": len(articles),
    }


@router.get("/articles/{article_id}")
async def get_article(
    article_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User | None = Depends(auth_dependencies.get_optional_user),
) -> dict:
    article = await service.retrieve_article(conn, article_id, expand=parse_expand(expand))
    return serializers.serialize(article, viewer)


@router.get("/articles/{article_id}/sources")
async def list_article_sources(
    article_id: str,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User | None = Depends(auth_dependencies.get_optional_user),
) -> dict:
    sources = await service.list_sources(conn, article_id)
    return {"sources": serializers.serialize_many(sources, viewer), "count": len(sources)}


@router.get("/authors/{author_id}/articles")
async def list_author_articles(
    author_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User | None = Depends(auth_dependencies.get_optional_user),
) -> dict:
    articles = await service.list_author_articles(conn, author_id, expand=parse_expand(expand))
    return {"articles": serializers.serialize_many(articles, viewer), "count": len(articles)}


@router.delete("/articles/{article_id}")
async def delete_article(
    article_id: str,
    background_tasks: BackgroundTasks,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.delete_article(conn, viewer, article_id)
    background_tasks.add_task(outbox.drain_background)
    return {"ok": True}
