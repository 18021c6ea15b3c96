"""
Likes and bookmarks: per-user marks on articles, keyed by (user, article).

Both are private to their user. Liking is open to anyone signed in;
bookmarking is a subscriber feature of the article's publisher.
"""

from __future__ import annotations

import asyncpg

from billing import service as billing
from core import errors
from resources import catalog, store
from resources.catalog import ResourceDescriptor
from resources.entities import Bookmark, Like, User
from resources.expansion import ExpandQuery


def _require_self(viewer: User, user_id: str) -> None:
    if viewer.id != user_id:
        raise errors.Forbidden("You can only manage your own likes and bookmarks.")


async def _list(
    conn: asyncpg.Connection,
    descriptor: ResourceDescriptor,
    viewer: User,
    user_id: str,
    expand: ExpandQuery,
) -> list:
    _require_self(viewer, user_id)
    return await store.list_by_foreign_key(conn, descriptor, "user", user_id, expand)


async def _add(conn: asyncpg.Connection, descriptor: ResourceDescriptor, user_id: str, article_id: str):
    key = {"user": user_id, "article": article_id}
    # Marking twice is a no-op.
    if not await store.exists(conn, descriptor, key):
        await store.insert(conn, descriptor, key)
    return await store.retrieve(conn, descriptor, key)


async def _remove(conn: asyncpg.Connection, descriptor: ResourceDescriptor, user_id: str, article_id: str) -> None:
    if await store.delete(conn, descriptor, {"user": user_id, "article": article_id}) is None:
        raise errors.NotFound(f"{descriptor.kind.value} not found.")


async def list_likes(conn: asyncpg.Connection, viewer: User, user_id: str, *, expand: ExpandQuery = ()) -> list[Like]:
    return await _list(conn, catalog.LIKE, viewer, user_id, expand)


async def like_article(conn: asyncpg.Connection, viewer: User, user_id: str, article_id: str) -> Like:
    _require_self(viewer, user_id)
    if not await store.exists(conn, catalog.ARTICLE, {"id": article_id}):
        raise errors.NotFound("article not found.")
    return await _add(conn, catalog.LIKE, viewer.id, article_id)


async def unlike_article(conn: asyncpg.Connection, viewer: User, user_id: str, article_id: str) -> None:
    _require_self(viewer, user_id)
    await _remove(conn, catalog.LIKE, viewer.id, article_id)


async def list_bookmarks(
    conn: asyncpg.Connection,
    viewer: User,
    user_id: str,
    *,
    expand: ExpandQuery = (),
) -> list[Bookmark]:
    return await _list(conn, catalog.BOOKMARK, viewer, user_id, expand)


async def bookmark_article(conn: asyncpg.Connection, viewer: User, user_id: str, article_id: str) -> Bookmark:
    _require_self(viewer, user_id)
    article = await billing.require_subscription(conn, viewer, article_id)
    return await _add(conn, catalog.BOOKMARK, viewer.id, article.id)


async def remove_bookmark(conn: asyncpg.Connection, viewer: User, user_id: str, article_id: str) -> None:
    _require_self(viewer, user_id)
    await _remove(conn, catalog.BOOKMARK, viewer.id, article_id)
