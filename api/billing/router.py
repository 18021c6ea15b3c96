"""
Bundle, price and subscription API endpoints.
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


@router.get("/bundles/{bundle_id}")
async def get_bundle(
    bundle_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User | None = Depends(auth_dependencies.get_optional_user),
) -> dict:
    bundle = await service.retrieve_bundle(conn, bundle_id, expand=parse_expand(expand))
    return serializers.serialize(bundle, viewer)


@router.get("/organizations/{organization_id}/bundles")
async def list_organization_bundles(
    organization_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    bundles = await service.list_organization_bundles(conn, viewer, organization_id, expand=parse_expand(expand))
    return {"bundles": serializers.serialize_many(bundles, viewer), "count": len(bundles)}


@router.post("/organizations/{organization_id}/bundles")
async def create_bundle(
    organization_id: str,
    request: schemas.CreateBundleRequest,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    bundle = await service.create_bundle(conn, viewer, organization_id, name=request.name)
    return serializers.serialize(bundle, viewer)


@router.patch("/bundles/{bundle_id}")
async def update_bundle(
    bundle_id: str,
    request: schemas.UpdateBundleRequest,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    bundle = await service.update_bundle(conn, viewer, bundle_id, name=request.name)
    return serializers.serialize(bundle, viewer)


@router.delete("/bundles/{bundle_id}")
async def deactivate_bundle(
    bundle_id: str,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    bundle = await service.deactivate_bundle(conn, viewer, bundle_id)
    return serializers.serialize(bundle, viewer)


@router.get("/publishers/{publisher_id}/bundles")
async def list_publisher_bundles(
    publisher_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User | None = Depends(auth_dependencies.get_optional_user),
) -> dict:
    bundles = await service.list_publisher_bundles(conn, publisher_id, expand=parse_expand(expand))
    return {"bundles": serializers.serialize_many(bundles, viewer), "count": len(bundles)}


@router.get("/bundles/{bundle_id}/publishers")
async def list_bundle_publishers(
    bundle_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User | None = Depends(auth_dependencies.get_optional_user),
) -> dict:
    publishers = await service.list_bundle_publishers(conn, bundle_id, expand=parse_expand(expand))
    return {"publishers": serializers.serialize_many(publishers, viewer), "count": len(publishers)}


@router.post("/bundles/{bundle_id}/publishers/{publisher_id}")
async def link_publisher(
    bundle_id: str,
    publisher_id: str,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.link_publisher(conn, viewer, bundle_id, publisher_id)
    return {"ok": True}


@router.delete("/bundles/{bundle_id}/publishers/{publisher_id}")
async def unlink_publisher(
    bundle_id: str,
    publisher_id: str,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.unlink_publisher(conn, viewer, bundle_id, publisher_id)
    return {"ok": True}


@router.get("/bundles/{bundle_id}/prices")
async def list_bundle_prices(
    bundle_id: str,
    active: bool | None = None,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User | None = Depends(auth_dependencies.get_optional_user),
) -> dict:
    prices = await service.list_bundle_prices(conn, bundle_id, active=active, expand=parse_expand(expand))
    return {"prices": serializers.serialize_many(prices, viewer), "count": len(prices)}


@router.post("/bundles/{bundle_id}/prices")
async def create_price(
    bundle_id: str,
    request: schemas.CreatePriceRequest,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    price = await service.create_price(conn, viewer, bundle_id, amount=request.amount, currency=request.currency)
    return serializers.serialize(price, viewer)


@router.get("/prices/{price_id}")
async def get_price(
    price_id: str,
    expand: list[str] = Query(default=[]),
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User | None = Depends(auth_dependencies.get_optional_user),
) -> dict:
    price = await service.retrieve_price(conn, price_id, expand=parse_expand(expand))
    return serializers.serialize(price, viewer)


@router.patch("/prices/{price_id}")
async def update_price(
    price_id: str,
    request: schemas.UpdatePriceRequest,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    price = await service.update_price(conn, viewer, price_id, active=request.active)
    return serializers.serialize(price, viewer)


@router.get("/prices/{price_id}/checkout")
async def create_checkout(
    price_id: str,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    url = await service.create_checkout(conn, viewer, price_id)
    return {"url": url}


@router.post("/users/{user_id}/subscriptions")
async def create_subscription(
    user_id: str,
    request: schemas.CreateSubscriptionRequest,
    conn: asyncpg.Connection = Depends(db.connection),
    viewer: User = Depends(auth_dependencies.get_current_user),
) -> dict:
    return await service.create_subscription(conn, viewer, user_id, request.price)
