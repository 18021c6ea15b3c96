"""
Organization and publisher business logic.

An organization is owned by one user; that user (or an admin) manages its
publishers. Publisher writes go through `sync.publish` so the publishers
search index follows them.
"""

from __future__ import annotations

import logging
import secrets

import asyncpg

from core import errors, stripe
from resources import catalog, store
from resources.entities import Author, Organization, Publisher, User, reference_id, resolved
from resources.expansion import ExpandQuery
from sync import publish

logger = logging.getLogger(__name__)

DNS_TXT_PREFIX = "nuntium-verification="


def _with(expand: ExpandQuery, *paths: str) -> ExpandQuery:
    return tuple(dict.fromkeys((*expand, *paths)))


def _validate_url(url: str) -> str:
    url = (url or "").strip().rstrip("/")
    if not url.startswith(("http://", "https://")):
        raise errors.ValidationError(
            "Invalid publisher.",
            errors=[errors.field_error("url", "Must be an http(s) URL")],
        )
    return url


def is_owner(viewer: User | None, organization: Organization) -> bool:
    if viewer is None:
        return False
    return viewer.is_admin or reference_id(organization.user) == viewer.id


async def retrieve_organization(
    conn: asyncpg.Connection,
    organization_id: str,
    *,
    expand: ExpandQuery = (),
) -> Organization:
    return await store.retrieve(conn, catalog.ORGANIZATION, {"id": organization_id}, expand)


async def list_user_organizations(
    conn: asyncpg.Connection,
    viewer: User,
    user_id: str,
    *,
    expand: ExpandQuery = (),
) -> list[Organization]:
    if not viewer.is_admin and viewer.id != user_id:
        raise errors.Forbidden("You can only list your own organizations.")
    return await store.list_by_foreign_key(conn, catalog.ORGANIZATION, "user", user_id, expand)


async def owned_organization(conn: asyncpg.Connection, viewer: User, organization_id: str) -> Organization:
    organization = await retrieve_organization(conn, organization_id)
    if not is_owner(viewer, organization):
        raise errors.Forbidden("You do not own this organization.")
    return organization


async def _ensure_unique_name(conn: asyncpg.Connection, name: str) -> None:
    if await store.exists(conn, catalog.ORGANIZATION, {"name": name}):
        raise errors.Conflict(
            "Organization name already used.",
            errors=[errors.field_error("name", f"An organization named '{name}' already exists")],
        )


async def create_organization(conn: asyncpg.Connection, viewer: User, *, name: str) -> Organization:
    """
    Create an organization owned by the viewer, with its Stripe Connect
    account. `stripe_account_enabled` stays false until the
    `account.updated` webhook reports that charges are enabled.
    """
    name = name.strip()
    await _ensure_unique_name(conn, name)

    async with conn.transaction():
        created = await store.create(conn, catalog.ORGANIZATION, {"name": name, "user": viewer.id})
        account = await stripe.create_connected_account(viewer.email, metadata={"organization_id": created.id})
        organization = await store.update(
            conn,
            catalog.ORGANIZATION,
            {"id": created.id},
            {"stripe_account_id": account["id"]},
        )

    logger.info("organization_created organization_id=%s user_id=%s", organization.id, viewer.id)
    return organization


async def update_organization(
    conn: asyncpg.Connection,
    viewer: User,
    organization_id: str,
    *,
    name: str | None = None,
) -> Organization:
    organization = await owned_organization(conn, viewer, organization_id)
    if name is None or name.strip() == organization.name:
        return organization
    name = name.strip()
    await _ensure_unique_name(conn, name)
    return await store.update(conn, catalog.ORGANIZATION, {"id": organization.id}, {"name": name})


async def delete_organization(conn: asyncpg.Connection, viewer: User, organization_id: str) -> None:
    organization = await owned_organization(conn, viewer, organization_id)
    if await store.list_by_foreign_key(conn, catalog.PUBLISHER, "organization", organization.id):
        raise errors.Conflict(
            "Organization still has publishers.",
            errors=[errors.field_error("organization", "Delete its publishers first")],
        )
    # Bundles are never deleted, so an organization that sold one stays.
    if await store.list_by_foreign_key(conn, catalog.BUNDLE, "organization", organization.id):
        raise errors.Conflict(
            "Organization still has bundles.",
            errors=[errors.field_error("organization", "Organizations with bundles cannot be deleted")],
        )
    await store.delete(conn, catalog.ORGANIZATION, {"id": organization.id})
    logger.info("organization_deleted organization_id=%s by=%s", organization.id, viewer.id)


async def retrieve_publisher(conn: asyncpg.Connection, publisher_id: str, *, expand: ExpandQuery = ()) -> Publisher:
    return await store.retrieve(conn, catalog.PUBLISHER, {"id": publisher_id}, expand)


async def owned_publisher(
    conn: asyncpg.Connection,
    viewer: User,
    publisher_id: str,
    *,
    expand: ExpandQuery = (),
) -> Publisher:
    """
    Retrieve a publisher the viewer manages. `publisher.organization` is
    always resolved on the returned entity.
    """
    publisher = await retrieve_publisher(conn, publisher_id, expand=_with(expand, "organization"))
    if not is_owner(viewer, resolved(publisher.organization)):
        raise errors.Forbidden("You do not own this publisher.")
    return publisher


async def list_organization_publishers(
    conn: asyncpg.Connection,
    organization_id: str,
    *,
    expand: ExpandQuery = (),
) -> list[Publisher]:
    if not await store.exists(conn, catalog.ORGANIZATION, {"id": organization_id}):
        raise errors.NotFound("organization not found.")
    return await store.list_by_foreign_key(conn, catalog.PUBLISHER, "organization", organization_id, expand)


async def list_publisher_authors(
    conn: asyncpg.Connection,
    publisher_id: str,
    *,
    expand: ExpandQuery = (),
) -> list[Author]:
    if not await store.exists(conn, catalog.PUBLISHER, {"id": publisher_id}):
        raise errors.NotFound("publisher not found.")
    return await store.list_by_foreign_key(conn, catalog.AUTHOR, "publisher", publisher_id, expand)


async def create_publisher(
    conn: asyncpg.Connection,
    viewer: User,
    organization_id: str,
    *,
    name: str,
    url: str,
) -> Publisher:
    organization = await owned_organization(conn, viewer, organization_id)
    return await publish.create_publisher(
        conn,
        {
            "name": name.strip(),
            "url": _validate_url(url),
            "organization": organization.id,
            "verified": False,
            "dns_txt_value": f"{DNS_TXT_PREFIX}{secrets.token_hex(16)}",
        },
    )


async def update_publisher(
    conn: asyncpg.Connection,
    viewer: User,
    publisher_id: str,
    *,
    name: str | None = None,
    url: str | None = None,
) -> Publisher:
    publisher = await owned_publisher(conn, viewer, publisher_id)

    fields: dict[str, object] = {}
    if name is not None:
        fields["name"] = name.strip()
    if url is not None:
        new_url = _validate_url(url)
        if new_url != publisher.url:
            # A new domain has to be verified again.
            fields["url"] = new_url
            fields["verified"] = False
    if not fields:
        return publisher

    return await publish.update_publisher(conn, publisher.id, fields)


async def delete_publisher(conn: asyncpg.Connection, viewer: User, publisher_id: str) -> None:
    publisher = await owned_publisher(conn, viewer, publisher_id)
    await publish.delete_publisher(conn, publisher.id)
