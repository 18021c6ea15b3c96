"""
User accounts: profiles, billing state and authorships.

Profile writes mirror the name and email onto the Stripe customer in the
same transaction, so a failed Stripe call leaves the row unchanged.
"""

from __future__ import annotations

import logging

import asyncpg

from core import errors, stripe
from resources import catalog, store
from resources.entities import Author, PaymentMethod, Subscription, User
from resources.expansion import ExpandQuery

logger = logging.getLogger(__name__)


def _require_self(viewer: User, user_id: str) -> None:
    if not viewer.is_admin and viewer.id != user_id:
        raise errors.Forbidden("You can only access your own account.")


async def retrieve_user(conn: asyncpg.Connection, user_id: str) -> User:
    return await store.retrieve(conn, catalog.USER, {"id": user_id})


async def list_payment_methods(
    conn: asyncpg.Connection,
    viewer: User,
    user_id: str,
    *,
    expand: ExpandQuery = (),
) -> list[PaymentMethod]:
    _require_self(viewer, user_id)
    methods = await store.list_by_foreign_key(conn, catalog.PAYMENT_METHOD, "user", user_id, expand)
    return [method for method in methods if not method.detached]


async def default_payment_method(
    conn: asyncpg.Connection,
    viewer: User,
    user_id: str,
) -> PaymentMethod | None:
    _require_self(viewer, user_id)
    try:
        default = await store.retrieve(conn, catalog.DEFAULT_PAYMENT_METHOD, {"user": user_id}, ("payment_method",))
    except errors.NotFound:
        return None
    method = default.payment_method.entity
    return None if method.detached else method


async def list_subscriptions(
    conn: asyncpg.Connection,
    viewer: User,
    user_id: str,
    *,
    expand: ExpandQuery = (),
) -> list[Subscription]:
    _require_self(viewer, user_id)
    return await store.list_by_foreign_key(conn, catalog.SUBSCRIPTION, "user", user_id, expand)


async def list_authors(conn: asyncpg.Connection, user_id: str, *, expand: ExpandQuery = ()) -> list[Author]:
    if not await store.exists(conn, catalog.USER, {"id": user_id}):
        raise errors.NotFound("user not found.")
    return await store.list_by_foreign_key(conn, catalog.AUTHOR, "user", user_id, expand)


async def update_user(
    conn: asyncpg.Connection,
    viewer: User,
    user_id: str,
    *,
    full_name: str | None = None,
    email: str | None = None,
) -> User:
    _require_self(viewer, user_id)
    user = await retrieve_user(conn, user_id)

    fields: dict[str, object] = {}
    if full_name is not None and full_name.strip() != user.full_name:
        fields["full_name"] = full_name.strip()
    if email is not None and email.strip().lower() != user.email:
        email = email.strip().lower()
        if await store.exists(conn, catalog.USER, {"email": email}):
            raise errors.Conflict(
                "Email already used.",
                errors=[errors.field_error("email", f"The email '{email}' is already in use")],
            )
        fields["email"] = email
    if not fields:
        return user

    async with conn.transaction():
        updated = await store.update(conn, catalog.USER, {"id": user.id}, fields)
        if updated.stripe_customer_id:
            await stripe.update_customer(updated.stripe_customer_id, name=updated.full_name, email=updated.email)
    return updated


async def delete_user(conn: asyncpg.Connection, viewer: User, user_id: str) -> None:
    """
    Delete an account. Authors and organization owners have to leave their
    publishers and hand over or delete their organizations first.
    """
    _require_self(viewer, user_id)
    user = await retrieve_user(conn, user_id)

    authorships = await store.list_by_foreign_key(conn, catalog.AUTHOR, "user", user.id)
    organizations = await store.list_by_foreign_key(conn, catalog.ORGANIZATION, "user", user.id)
    if authorships or organizations:
        raise errors.Forbidden(
            "User cannot be deleted.",
            errors=[errors.field_error("user", f"Cannot delete user '{user.id}'")],
        )

    async with conn.transaction():
        await store.delete(conn, catalog.USER, {"id": user.id})
        if user.stripe_customer_id:
            await stripe.delete_customer(user.stripe_customer_id)

    logger.info("user_deleted user_id=%s by=%s", user.id, viewer.id)
