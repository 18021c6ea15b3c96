"""
Article report API endpoints.
"""

from __future__ import annotations

import asyncpg
from fastapi import APIRouter, Depends, Query

from auth import dependencies as auth_dependencies
from core import db
from resources import serializers
from resources.entities import User

from . import schemas, service

router = APIRouter()


@router.get("/articles/reports")
async def list_reports(
    limit: int = Query(100, ge=1, le=1000),
    conn: asyncpg.Connection = Depends(db.connection),
    admin: User = Depends(auth_dependencies.require_admin),
) -> dict:
    reports = await service.list_reports(conn, limit=limit)
    return {"reports": serializers.serialize_many(reports, admin), "count": len(reports)}


@router.post("/articles/{article_id}/reports")
async def create_report(
    article_id: str,
    request: schemas.CreateReportRequest,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    report = await service.create_report(conn, viewer, article_id, reason=request.reason)
    return {"id": report.id}
