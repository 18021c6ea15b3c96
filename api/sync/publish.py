"""
Draft publishing and the article/publisher writes mirrored to the search index.

Each function commits its relational changes and the matching outbox rows in
one transaction. The search index is never called from inside a transaction;
callers schedule `outbox.drain_background` after the response.
"""

from __future__ import annotations

import logging
from typing import Any

import asyncpg

from articles import text
from core import errors
from resources import catalog, store
from resources.entities import Article, Publisher, reference_id

from . import outbox

STATUS_EDITABLE = "editable"
STATUS_PENDING = "pending-verification"
STATUS_PUBLISHED = "published"

logger = logging.getLogger(__name__)


def article_document(article: Article) -> dict[str, Any]:
    return {
        "title": article.title,
        "content": text.extract_text(article.content),
        "author": reference_id(article.author),
        "reading_time": article.reading_time,
        "created_at": article.created_at.isoformat() if article.created_at else None,
        "updated_at": article.updated_at.isoformat() if article.updated_at else None,
    }


def publisher_document(publisher: Publisher) -> dict[str, Any]:
    return {
        "name": publisher.name,
        "url": publisher.url,
        "organization": reference_id(publisher.organization),
        "verified": publisher.verified,
    }


async def publish_draft(conn: asyncpg.Connection, draft_id: str) -> Article:
    """
    Turn a draft awaiting verification into a published article.

    Inserts a new article, or updates the one the draft was created from;
    replaces the article's sources with the draft's; deletes the draft and
    its sources; queues the article's search document.
    """
    async with conn.transaction():
        # Claim the draft first so two concurrent publishes cannot both win.
        draft = await store.update(
            conn,
            catalog.ARTICLE_DRAFT,
            {"id": draft_id},
            {"status": STATUS_PUBLISHED},
            expect={"status": STATUS_PENDING},
        )
        if draft is None:
            raise errors.Forbidden("Only drafts pending verification can be published.")

        fields = {
            "title": draft.title,
            "content": draft.content,
            "reading_time": text.reading_time_minutes(draft.content),
            "is_published": True,
        }
        if draft.article is None:
            created = await store.create(
                conn,
                catalog.ARTICLE,
                {**fields, "author": reference_id(draft.author)},
            )
            article_id = created.id
        else:
            article_id = reference_id(draft.article)
            await store.update(conn, catalog.ARTICLE, {"id": article_id}, fields)

        draft_sources = await store.list_by_foreign_key(conn, catalog.DRAFT_SOURCE, "draft", draft.id)
        await store.delete_by_foreign_key(conn, catalog.SOURCE, "article", article_id)
        for source in draft_sources:
            await store.create(conn, catalog.SOURCE, {"url": source.url, "article": article_id})

        await store.delete_by_foreign_key(conn, catalog.DRAFT_SOURCE, "draft", draft.id)
        await store.delete(conn, catalog.ARTICLE_DRAFT, {"id": draft.id})

        article = await store.retrieve(conn, catalog.ARTICLE, {"id": article_id})
        await outbox.enqueue_put(conn, outbox.ARTICLES_INDEX, article.id, article_document(article))

    logger.info(
        "draft_published draft_id=%s article_id=%s new_article=%s sources=%s",
        draft_id,
        article.id,
        draft.article is None,
        len(draft_sources),
    )
    return article


async def delete_article(conn: asyncpg.Connection, article_id: str) -> None:
    async with conn.transaction():
        await store.delete_by_foreign_key(conn, catalog.SOURCE, "article", article_id)
        deleted = await store.delete(conn, catalog.ARTICLE, {"id": article_id})
        if deleted is None:
            raise errors.NotFound("article not found.")
        await outbox.enqueue_delete(conn, outbox.ARTICLES_INDEX, article_id)

    logger.info("article_deleted article_id=%s", article_id)


async def create_publisher(conn: asyncpg.Connection, fields: dict[str, Any]) -> Publisher:
    async with conn.transaction():
        created = await store.create(conn, catalog.PUBLISHER, fields)
        publisher = await store.retrieve(conn, catalog.PUBLISHER, {"id": created.id})
        await outbox.enqueue_put(conn, outbox.PUBLISHERS_INDEX, publisher.id, publisher_document(publisher))
    return publisher


async def update_publisher(conn: asyncpg.Connection, publisher_id: str, fields: dict[str, Any]) -> Publisher:
    async with conn.transaction():
        publisher = await store.update(conn, catalog.PUBLISHER, {"id": publisher_id}, fields)
        await outbox.enqueue_put(conn, outbox.PUBLISHERS_INDEX, publisher.id, publisher_document(publisher))
    return publisher


async def delete_publisher(conn: asyncpg.Connection, publisher_id: str) -> None:
    async with conn.transaction():
        await store.delete_by_foreign_key(conn, catalog.AUTHOR_INVITE, "publisher", publisher_id)
        deleted = await store.delete(conn, catalog.PUBLISHER, {"id": publisher_id})
        if deleted is None:
            raise errors.NotFound("publisher not found.")
        await outbox.enqueue_delete(conn, outbox.PUBLISHERS_INDEX, publisher_id)

    logger.info("publisher_deleted publisher_id=%s", publisher_id)
