"""
Auth API endpoints.
"""

from __future__ import annotations

import asyncpg
from fastapi import APIRouter, Depends

from core import db
from resources import serializers
from resources.entities import Session, User, resolved

from . import dependencies, service

router = APIRouter()


@router.get("/auth/me")
async def me(session: Session = Depends(dependencies.get_current_session)) -> dict:
    viewer = resolved(session.user)
    return {
        "user": serializers.serialize(viewer, viewer),
        "session": serializers.serialize(session, viewer),
    }


@router.get("/auth/sessions")
async def list_sessions(
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(dependencies.get_current_user),
) -> dict:
    sessions = await service.list_sessions(conn, viewer.id)
    return {"sessions": serializers.serialize_many(sessions, viewer), "count": len(sessions)}


@router.post("/auth/logout")
async def logout(
    conn: asyncpg.Connection = Depends(db.connection),
    session: Session = Depends(dependencies.get_current_session),
) -> dict:
    await service.logout(conn, session.id)
    return {"ok": True}
