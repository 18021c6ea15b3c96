"""
Article draft business logic.

State machine: editable -> pending-verification -> (published | deleted).
Content edits and the editable -> pending-verification transition are
compare-and-swap updates on `status`, so an edit racing a submission cannot
slip in after the draft was submitted. Publishing lives in `sync.publish`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

import asyncpg

from core import errors
from resources import catalog, store
from resources.entities import ArticleDraft, Author, DraftSource, User, reference_id
from resources.expansion import ExpandQuery
from sync.publish import STATUS_EDITABLE, STATUS_PENDING

logger = logging.getLogger(__name__)

MAX_URL_LENGTH = 2000


def _validate_sources(sources: Iterable[str]) -> list[str]:
    urls: list[str] = []
    problems: list[dict[str, str]] = []
    for position, raw in enumerate(sources):
        url = (raw or "").strip()
        if not url.startswith(("http://", "https://")) or len(url) > MAX_URL_LENGTH:
            problems.append(errors.field_error(f"sources.{position}", "Must be an http(s) URL"))
            continue
        urls.append(url)
    if problems:
        raise errors.ValidationError("Invalid sources.", errors=problems)
    return urls


async def _authorized_author(conn: asyncpg.Connection, viewer: User, author_id: str, *, allow_admin: bool) -> Author:
    author = await store.retrieve(conn, catalog.AUTHOR, {"id": author_id})
    if reference_id(author.user) == viewer.id:
        return author
    if allow_admin and viewer.is_admin:
        return author
    raise errors.Forbidden("You are not this draft's author.")


async def _insert_sources(conn: asyncpg.Connection, draft_id: str, urls: list[str]) -> None:
    for url in urls:
        await store.create(conn, catalog.DRAFT_SOURCE, {"url": url, "draft": draft_id})


async def create_draft(
    conn: asyncpg.Connection,
    viewer: User,
    *,
    author_id: str,
    title: str,
    content: Any,
    sources: Iterable[str] = (),
    expand: ExpandQuery = (),
) -> ArticleDraft:
    urls = _validate_sources(sources)
    await _authorized_author(conn, viewer, author_id, allow_admin=False)

    async with conn.transaction():
        draft = await store.create(
            conn,
            catalog.ARTICLE_DRAFT,
            {
                "title": title,
                "content": content,
                "author": author_id,
                "article": None,
                "status": STATUS_EDITABLE,
            },
        )
        await _insert_sources(conn, draft.id, urls)

    logger.info("draft_created draft_id=%s author_id=%s sources=%s", draft.id, author_id, len(urls))
    return await store.retrieve(conn, catalog.ARTICLE_DRAFT, {"id": draft.id}, expand)


async def create_draft_from_article(
    conn: asyncpg.Connection,
    viewer: User,
    article_id: str,
    *,
    expand: ExpandQuery = (),
) -> ArticleDraft:
    """
    Start editing a published article: copy it (and its sources) into a new
    draft linked to it. Publishing that draft updates the article in place.
    """
    article = await store.retrieve(conn, catalog.ARTICLE, {"id": article_id})
    author_id = reference_id(article.author)
    await _authorized_author(conn, viewer, author_id, allow_admin=False)

    async with conn.transaction():
        sources = await store.list_by_foreign_key(conn, catalog.SOURCE, "article", article.id)
        draft = await store.create(
            conn,
            catalog.ARTICLE_DRAFT,
            {
                "title": article.title,
                "content": article.content,
                "author": author_id,
                "article": article.id,
                "status": STATUS_EDITABLE,
            },
        )
        await _insert_sources(conn, draft.id, [source.url for source in sources])

    logger.info("draft_created draft_id=%s author_id=%s article_id=%s", draft.id, author_id, article.id)
    return await store.retrieve(conn, catalog.ARTICLE_DRAFT, {"id": draft.id}, expand)


async def retrieve_draft(
    conn: asyncpg.Connection,
    viewer: User,
    draft_id: str,
    *,
    expand: ExpandQuery = (),
) -> ArticleDraft:
    draft = await store.retrieve(conn, catalog.ARTICLE_DRAFT, {"id": draft_id}, expand)
    await _authorized_author(conn, viewer, reference_id(draft.author), allow_admin=True)
    return draft


async def list_draft_sources(conn: asyncpg.Connection, viewer: User, draft_id: str) -> list[DraftSource]:
    draft = await retrieve_draft(conn, viewer, draft_id)
    return await store.list_by_foreign_key(conn, catalog.DRAFT_SOURCE, "draft", draft.id)


async def list_author_drafts(
    conn: asyncpg.Connection,
    viewer: User,
    author_id: str,
    *,
    expand: ExpandQuery = (),
) -> list[ArticleDraft]:
    await _authorized_author(conn, viewer, author_id, allow_admin=True)
    return await store.list_by_foreign_key(conn, catalog.ARTICLE_DRAFT, "author", author_id, expand)


async def list_submitted(conn: asyncpg.Connection, *, expand: ExpandQuery = ()) -> list[ArticleDraft]:
    return await store.list_by_field(conn, catalog.ARTICLE_DRAFT, "status", STATUS_PENDING, expand)


async def update_draft(
    conn: asyncpg.Connection,
    viewer: User,
    draft_id: str,
    *,
    title: str | None = None,
    content: Any = None,
    sources: Iterable[str] | None = None,
    expand: ExpandQuery = (),
) -> ArticleDraft:
    urls = _validate_sources(sources) if sources is not None else None

    async with conn.transaction():
        draft = await store.retrieve(conn, catalog.ARTICLE_DRAFT, {"id": draft_id})
        await _authorized_author(conn, viewer, reference_id(draft.author), allow_admin=False)

        updated = await store.update(
            conn,
            catalog.ARTICLE_DRAFT,
            {"id": draft.id},
            {
                "title": title if title is not None else draft.title,
                "content": content if content is not None else draft.content,
            },
            expect={"status": STATUS_EDITABLE},
        )
        if updated is None:
            raise errors.Forbidden("Only editable drafts can be changed.")

        if urls is not None:
            await store.delete_by_foreign_key(conn, catalog.DRAFT_SOURCE, "draft", draft.id)
            await _insert_sources(conn, draft.id, urls)

    return await store.retrieve(conn, catalog.ARTICLE_DRAFT, {"id": draft_id}, expand)


async def delete_draft(conn: asyncpg.Connection, viewer: User, draft_id: str) -> None:
    async with conn.transaction():
        draft = await store.retrieve(conn, catalog.ARTICLE_DRAFT, {"id": draft_id})
        await _authorized_author(conn, viewer, reference_id(draft.author), allow_admin=True)
        await store.delete_by_foreign_key(conn, catalog.DRAFT_SOURCE, "draft", draft.id)
        await store.delete(conn, catalog.ARTICLE_DRAFT, {"id": draft.id})

    logger.info("draft_deleted draft_id=%s status=%s", draft_id, draft.status)


async def submit_for_verification(conn: asyncpg.Connection, viewer: User, draft_id: str) -> ArticleDraft:
    draft = await store.retrieve(conn, catalog.ARTICLE_DRAFT, {"id": draft_id})
    await _authorized_author(conn, viewer, reference_id(draft.author), allow_admin=False)

    submitted = await store.update(
        conn,
        catalog.ARTICLE_DRAFT,
        {"id": draft.id},
        {"status": STATUS_PENDING},
        expect={"status": STATUS_EDITABLE},
    )
    if submitted is None:
        raise errors.Forbidden("The draft is not editable; it was already submitted.")

    logger.info("draft_submitted draft_id=%s", draft_id)
    return submitted
