"""
Author invite business logic.

A publisher's owner invites an email address; the user signed in with that
email accepts and becomes an author of the publisher. Accepting consumes the
invite: the `DELETE ... RETURNING` that removes it is the claim, so two
concurrent accepts produce one author and the loser gets NotFound.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone

import asyncpg

from core import errors
from organizations import service as organizations_service
from resources import catalog, expansion, store
from resources.entities import Author, AuthorInvite, User, reference_id
from resources.expansion import ExpandQuery

DEFAULT_INVITE_DURATION_S = 60 * 60 * 24 * 7

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def invite_duration_s() -> int:
    value = _env_int("AUTHOR_INVITE_DURATION_S", DEFAULT_INVITE_DURATION_S)
    return value if value > 0 else DEFAULT_INVITE_DURATION_S


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _with(expand: ExpandQuery, *paths: str) -> ExpandQuery:
    return tuple(dict.fromkeys((*expand, *paths)))


async def create_invite(
    conn: asyncpg.Connection,
    viewer: User,
    publisher_id: str,
    email: str,
    *,
    expand: ExpandQuery = (),
) -> AuthorInvite:
    publisher = await organizations_service.owned_publisher(conn, viewer, publisher_id)

    user_email = normalize_email(email)
    if "@" not in user_email:
        raise errors.ValidationError(
            "Invalid invite.",
            errors=[errors.field_error("email", "Must be an email address")],
        )

    try:
        invited = await store.retrieve(conn, catalog.USER, {"email": user_email})
    except errors.NotFound:
        invited = None
    if invited is not None and await store.exists(
        conn,
        catalog.AUTHOR,
        {"user": invited.id, "publisher": publisher.id},
    ):
        raise errors.Conflict("This user is already an author of the publisher.")

    created = await store.create(
        conn,
        catalog.AUTHOR_INVITE,
        {
            "publisher": publisher.id,
            "user_email": user_email,
            "expires_at": _utc_now() + timedelta(seconds=invite_duration_s()),
        },
    )

    logger.info("invite_created invite_id=%s publisher_id=%s", created.id, publisher.id)
    return await store.retrieve(
        conn,
        catalog.AUTHOR_INVITE,
        {"id": created.id},
        _with(expand, "publisher.organization"),
    )


async def list_publisher_invites(
    conn: asyncpg.Connection,
    viewer: User,
    publisher_id: str,
    *,
    expand: ExpandQuery = (),
) -> list[AuthorInvite]:
    publisher = await organizations_service.owned_publisher(conn, viewer, publisher_id)
    # The organization is resolved so the owner is shown invited emails.
    return await store.list_by_foreign_key(
        conn,
        catalog.AUTHOR_INVITE,
        "publisher",
        publisher.id,
        _with(expand, "publisher.organization"),
    )


async def list_user_invites(
    conn: asyncpg.Connection,
    viewer: User,
    user_id: str,
    *,
    expand: ExpandQuery = (),
) -> list[AuthorInvite]:
    if viewer.id != user_id:
        raise errors.Forbidden("You can only list your own invites.")
    return await store.list_by_field(conn, catalog.AUTHOR_INVITE, "user_email", normalize_email(viewer.email), expand)


async def delete_invite(conn: asyncpg.Connection, viewer: User, invite_id: str) -> None:
    invite = await store.retrieve(conn, catalog.AUTHOR_INVITE, {"id": invite_id})
    await organizations_service.owned_publisher(conn, viewer, reference_id(invite.publisher))
    await store.delete(conn, catalog.AUTHOR_INVITE, {"id": invite.id})
    logger.info("invite_deleted invite_id=%s", invite.id)


async def accept_invite(conn: asyncpg.Connection, viewer: User, invite_id: str) -> Author:
    invite = await store.retrieve(conn, catalog.AUTHOR_INVITE, {"id": invite_id})
    if normalize_email(viewer.email) != invite.user_email:
        raise errors.Forbidden("This invite was sent to another email address.")
    if not (viewer.full_name or "").strip():
        raise errors.Forbidden(
            "A full name is required to become an author.",
            errors=[errors.field_error("author", "You must have a full name set in order to accept this invite")],
        )

    author_id: str | None = None
    async with conn.transaction():
        record = await store.delete(conn, catalog.AUTHOR_INVITE, {"id": invite.id})
        if record is None:
            raise errors.NotFound("The invite was already used.")

        claimed: AuthorInvite = await expansion.materialize(conn, catalog.AUTHOR_INVITE, record)
        expired = claimed.has_expired(_utc_now())
        if not expired:
            created = await store.create(
                conn,
                catalog.AUTHOR,
                {"user": viewer.id, "publisher": reference_id(claimed.publisher)},
            )
            author_id = created.id

    if author_id is None:
        # Consumed anyway: an expired invite is gone for good.
        logger.info("invite_expired invite_id=%s", invite.id)
        raise errors.Conflict("The invite has expired.")

    logger.info("invite_accepted invite_id=%s author_id=%s user_id=%s", invite.id, author_id, viewer.id)
    return await store.retrieve(conn, catalog.AUTHOR, {"id": author_id})
