"""
Comment API endpoints.
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


@router.get("/comments/{comment_id}")
async def get_comment(
    comment_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User | None = Depends(auth_dependencies.get_optional_user),
) -> dict:
    comment = await service.retrieve_comment(conn, comment_id, expand=parse_expand(expand))
    return serializers.serialize(comment, viewer)


@router.get("/articles/{article_id}/comments")
async def list_article_comments(
    article_id: str,
    parent: str | None = None,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User | None = Depends(auth_dependencies.get_optional_user),
) -> dict:
    comments = await service.list_article_comments(conn, article_id, parent=parent, expand=parse_expand(expand))
    return {"comments": serializers.serialize_many(comments, viewer), "count": len(comments)}


@router.post("/articles/{article_id}/comments")
async def create_comment(
    article_id: str,
    request: schemas.CreateCommentRequest,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    comment = await service.create_comment(conn, viewer, article_id, content=request.content, parent=request.parent)
    return serializers.serialize(comment, viewer)


@router.patch("/comments/{comment_id}")
async def update_comment(
    comment_id: str,
    request: schemas.UpdateCommentRequest,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    comment = await service.update_comment(conn, viewer, comment_id, content=request.content)
    return serializers.serialize(comment, viewer)


@router.delete("/comments/{comment_id}")
async def delete_comment(
    comment_id: str,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.delete_comment(conn, viewer, comment_id)
    return {"ok": True}
