"""
User API endpoints.
"""

from __future__ import annotations

import asyncpg
from fastapi import APIRouter, Depends, Query

from auth import dependencies as auth_dependencies
from core import db
from organizations import service as organizations_service
from resources import serializers
from resources.entities import User
from resources.expansion import parse_expand

from . import schemas, service

router = APIRouter()


@router.get("/users/{user_id}")
async def get_user(
    user_id: str,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User | None = Depends(auth_dependencies.get_optional_user),
) -> dict:
    user = await service.retrieve_user(conn, user_id)
    return serializers.serialize(user, viewer)


@router.get("/users/{user_id}/authors")
async def list_user_authors(
    user_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User | None = Depends(auth_dependencies.get_optional_user),
) -> dict:
    authors = await service.list_authors(conn, user_id, expand=parse_expand(expand))
    return {"authors": serializers.serialize_many(authors, viewer), "count": len(authors)}


@router.get("/users/{user_id}/organizations")
async def list_user_organizations(
    user_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    organizations = await organizations_service.list_user_organizations(
        conn,
        viewer,
        user_id,
        expand=parse_expand(expand),
    )
    return {"organizations": serializers.serialize_many(organizations, viewer), "count": len(organizations)}


@router.get("/users/{user_id}/payment-methods")
async def list_payment_methods(
    user_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    methods = await service.list_payment_methods(conn, viewer, user_id, expand=parse_expand(expand))
    default = await service.default_payment_method(conn, viewer, user_id)
    return {
        "payment_methods": serializers.serialize_many(methods, viewer),
        "default": default.id if default is not None else None,
        "count": len(methods),
    }


@router.get("/users/{user_id}/subscriptions")
async def list_subscriptions(
    user_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    subscriptions = await service.list_subscriptions(conn, viewer, user_id, expand=parse_expand(expand))
    return {"subscriptions": serializers.serialize_many(subscriptions, viewer), "count": len(subscriptions)}


@router.patch("/users/{user_id}")
async def update_user(
    user_id: str,
    request: schemas.UpdateUserRequest,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    user = await service.update_user(conn, viewer, user_id, full_name=request.full_name, email=request.email)
    return serializers.serialize(user, viewer)


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.delete_user(conn, viewer, user_id)
    return {"ok": True}
