"""
Author invite API endpoints.
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


@router.post("/publishers/{publisher_id}/authors/invites")
async def create_invite(
    publisher_id: str,
    request: schemas.CreateInviteRequest,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    invite = await service.create_invite(conn, viewer, publisher_id, request.email, expand=parse_expand(expand))
    return serializers.serialize(invite, viewer)


@router.get("/publishers/{publisher_id}/authors/invites")
async def list_publisher_invites(
    publisher_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    invites = await service.list_publisher_invites(conn, viewer, publisher_id, expand=parse_expand(expand))
    return {"invites": serializers.serialize_many(invites, viewer), "count": len(invites)}


@router.get("/users/{user_id}/authors/invites")
async def list_user_invites(
    user_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    invites = await service.list_user_invites(conn, viewer, user_id, expand=parse_expand(expand))
    return {"invites": serializers.serialize_many(invites, viewer), "count": len(invites)}


@router.post("/authors/invites/{invite_id}/accept")
async def accept_invite(
    invite_id: str,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    author = await service.accept_invite(conn, viewer, invite_id)
    return serializers.serialize(author, viewer)


@router.delete("/authors/invites/{invite_id}")
async def delete_invite(
    invite_id: str,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.delete_invite(conn, viewer, invite_id)
    return {"ok": True}
