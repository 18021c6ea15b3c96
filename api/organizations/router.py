"""
Organization and publisher API endpoints.
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

from . import schemas, service

router = APIRouter()


@router.get("/organizations/{organization_id}")
async def get_organization(
    organization_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User | None = Depends(auth_dependencies.get_optional_user),
) -> dict:
    organization = await service.retrieve_organization(conn, organization_id, expand=parse_expand(expand))
    return serializers.serialize(organization, viewer)


@router.post("/organizations")
async def create_organization(
    request: schemas.CreateOrganizationRequest,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    organization = await service.create_organization(conn, viewer, name=request.name)
    return serializers.serialize(organization, viewer)


@router.patch("/organizations/{organization_id}")
async def update_organization(
    organization_id: str,
    request: schemas.UpdateOrganizationRequest,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    organization = await service.update_organization(conn, viewer, organization_id, name=request.name)
    return serializers.serialize(organization, viewer)


@router.delete("/organizations/{organization_id}")
async def delete_organization(
    organization_id: str,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.delete_organization(conn, viewer, organization_id)
    return {"ok": True}


@router.get("/organizations/{organization_id}/publishers")
async def list_organization_publishers(
    organization_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User | None = Depends(auth_dependencies.get_optional_user),
) -> dict:
    publishers = await service.list_organization_publishers(conn, organization_id, expand=parse_expand(expand))
    return {"publishers": serializers.serialize_many(publishers, viewer), "count": len(publishers)}


@router.post("/organizations/{organization_id}/publishers")
async def create_publisher(
    organization_id: str,
    request: schemas.CreatePublisherRequest,
    background_tasks: BackgroundTasks,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    publisher = await service.create_publisher(conn, viewer, organization_id, name=request.name, url=request.url)
    background_tasks.add_task(outbox.drain_background)

    data = serializers.serialize(publisher, viewer)
    # Only the owner ever sees the TXT record they must publish.
    data["dns_txt_value"] = publisher.dns_txt_value
    return data


@router.get("/publishers/{publisher_id}")
async def get_publisher(
    publisher_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User | None = Depends(auth_dependencies.get_optional_user),
) -> dict:
    publisher = await service.retrieve_publisher(conn, publisher_id, expand=parse_expand(expand))
    return serializers.serialize(publisher, viewer)


@router.get("/publishers/{publisher_id}/authors")
async def list_publisher_authors(
    publisher_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User | None = Depends(auth_dependencies.get_optional_user),
) -> dict:
    authors = await service.list_publisher_authors(conn, publisher_id, expand=parse_expand(expand))
    return {"authors": serializers.serialize_many(authors, viewer), "count": len(authors)}


@router.patch("/publishers/{publisher_id}")
async def update_publisher(
    publisher_id: str,
    request: schemas.UpdatePublisherRequest,
    background_tasks: BackgroundTasks,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    publisher = await service.update_publisher(conn, viewer, publisher_id, name=request.name, url=request.url)
    background_tasks.add_task(outbox.drain_background)
    return serializers.serialize(publisher, viewer)


@router.delete("/publishers/{publisher_id}")
async def delete_publisher(
    publisher_id: str,
    background_tasks: BackgroundTasks,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.delete_publisher(conn, viewer, publisher_id)
    background_tasks.add_task(outbox.drain_background)
    return {"ok": True}
