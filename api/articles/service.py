"""
Article business logic: reads, author-initiated deletion and search.
"""

from __future__ import annotations

import asyncpg

from core import errors, search
from resources import catalog, store
from resources.entities import Article, Source, User, reference_id
from resources.expansion import ExpandQuery
from sync import outbox, publish

SEARCH_FIELDS = ["title^2", "content"]


async def retrieve_article(conn: asyncpg.Connection, article_id: str, *, expand: ExpandQuery = ()) -> Article:
    return await store.retrieve(conn, catalog.ARTICLE, {"id": article_id}, expand)


async def list_sources(conn: asyncpg.Connection, article_id: str) -> list[Source]:
    if not await store.exists(conn, catalog.ARTICLE, {"id": article_id}):
        raise errors.NotFound("article not found.")
    return await store.list_by_foreign_key(conn, catalog.SOURCE, "article", article_id)


async def list_author_articles(
    conn: asyncpg.Connection,
    author_id: str,
    *,
    expand: ExpandQuery = (),
) -> list[Article]:
    if not await store.exists(conn, catalog.AUTHOR, {"id": author_id}):
        raise errors.NotFound("author not found.")
    return await store.list_by_foreign_key(conn, catalog.ARTICLE, "author", author_id, expand)


async def delete_article(conn: asyncpg.Connection, viewer: User, article_id: str) -> None:
    article = await store.retrieve(conn, catalog.ARTICLE, {"id": article_id}, ("author",))
    author = article.author.entity
    if not viewer.is_admin and reference_id(author.user) != viewer.id:
        raise errors.Forbidden("You are not this article's author.")
    await publish.delete_article(conn, article.id)


async def search_articles(
    conn: asyncpg.Connection,
    query: str,
    *,
    limit: int = 20,
    offset: int = 0,
    expand: ExpandQuery = (),
) -> list[Article]:
    """
    Rank by the search index, then load the rows in one query.

    Hits whose row is gone (deleted, index not yet caught up) are dropped.
    """
    ids = await search.search_ids(
        outbox.ARTICLES_INDEX,
        query,
        fields=SEARCH_FIELDS,
        limit=limit,
        offset=offset,
    )
    return await store.retrieve_many(conn, catalog.ARTICLE, ids, expand)
