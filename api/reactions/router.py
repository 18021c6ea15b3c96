"""
Like and bookmark API endpoints.
"""

from __future__ import annotations

import asyncpg
from fastapi import APIRouter, Depends, Query

from auth import dependencies as auth_dependencies
from core import db
from resources import serializers
from resources.entities import User
from resources.expansion import parse_expand

from . import schemas, service

router = APIRouter()


@router.get("/users/{user_id}/likes")
async def list_likes(
    user_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    likes = await service.list_likes(conn, viewer, user_id, expand=parse_expand(expand))
    return {"likes": serializers.serialize_many(likes, viewer), "count": len(likes)}


@router.post("/users/{user_id}/likes")
async def like_article(
    user_id: str,
    request: schemas.ReactionRequest,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    like = await service.like_article(conn, viewer, user_id, request.article)
    return serializers.serialize(like, viewer)


@router.delete("/users/{user_id}/likes/{article_id}")
async def unlike_article(
    user_id: str,
    article_id: str,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.unlike_article(conn, viewer, user_id, article_id)
    return {"ok": True}


@router.get("/users/{user_id}/bookmarks")
async def list_bookmarks(
    user_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    bookmarks = await service.list_bookmarks(conn, viewer, user_id, expand=parse_expand(expand))
    return {"bookmarks": serializers.serialize_many(bookmarks, viewer), "count": len(bookmarks)}


@router.post("/users/{user_id}/bookmarks")
async def bookmark_article(
    user_id: str,
    request: schemas.ReactionRequest,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    bookmark = await service.bookmark_article(conn, viewer, user_id, request.article)
    return serializers.serialize(bookmark, viewer)


@router.delete("/users/{user_id}/bookmarks/{article_id}")
async def remove_bookmark(
    user_id: str,
    article_id: str,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.remove_bookmark(conn, viewer, user_id, article_id)
    return {"ok": True}
