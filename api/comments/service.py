"""
Article comments. Comments form one level of threads per article: listing
without a parent returns the top-level comments, listing with one returns
its replies.
"""

from __future__ import annotations

import logging

import asyncpg

from core import errors
from resources import catalog, store
from resources.entities import Comment, User, reference_id
from resources.expansion import ExpandQuery

logger = logging.getLogger(__name__)


async def retrieve_comment(conn: asyncpg.Connection, comment_id: str, *, expand: ExpandQuery = ()) -> Comment:
    return await store.retrieve(conn, catalog.COMMENT, {"id": comment_id}, expand)


async def list_article_comments(
    conn: asyncpg.Connection,
    article_id: str,
    *,
    parent: str | None = None,
    expand: ExpandQuery = (),
) -> list[Comment]:
    if not await store.exists(conn, catalog.ARTICLE, {"id": article_id}):
        raise errors.NotFound("article not found.")
    if parent is None:
        comments = await store.list_by_foreign_key(conn, catalog.COMMENT, "article", article_id, expand)
        return [comment for comment in comments if comment.parent is None]
    replies = await store.list_by_foreign_key(conn, catalog.COMMENT, "parent", parent, expand)
    return [reply for reply in replies if reference_id(reply.article) == article_id]


async def create_comment(
    conn: asyncpg.Connection,
    viewer: User,
    article_id: str,
    *,
    content: str,
    parent: str | None = None,
) -> Comment:
    if not await store.exists(conn, catalog.ARTICLE, {"id": article_id}):
        raise errors.NotFound("article not found.")
    if parent is not None:
        parent_comment = await retrieve_comment(conn, parent)
        if reference_id(parent_comment.article) != article_id:
            raise errors.ValidationError(
                "Invalid comment.",
                errors=[errors.field_error("parent", "Must be a comment of the same article")],
            )

    created = await store.create(
        conn,
        catalog.COMMENT,
        {"content": content.strip(), "user": viewer.id, "article": article_id, "parent": parent},
    )
    logger.info("comment_created comment_id=%s article_id=%s user_id=%s", created.id, article_id, viewer.id)
    return await retrieve_comment(conn, created.id)


async def _own_comment(conn: asyncpg.Connection, viewer: User, comment_id: str, *, allow_admin: bool) -> Comment:
    comment = await retrieve_comment(conn, comment_id)
    if reference_id(comment.user) != viewer.id and not (allow_admin and viewer.is_admin):
        raise errors.Forbidden("You can only change your own comments.")
    return comment


async def update_comment(conn: asyncpg.Connection, viewer: User, comment_id: str, *, content: str) -> Comment:
    comment = await _own_comment(conn, viewer, comment_id, allow_admin=False)
    return await store.update(conn, catalog.COMMENT, {"id": comment.id}, {"content": content.strip()})


async def delete_comment(conn: asyncpg.Connection, viewer: User, comment_id: str) -> None:
    # Replies go with their parent (ON DELETE CASCADE).
    comment = await _own_comment(conn, viewer, comment_id, allow_admin=True)
    await store.delete(conn, catalog.COMMENT, {"id": comment.id})
    logger.info("comment_deleted comment_id=%s by=%s", comment.id, viewer.id)
