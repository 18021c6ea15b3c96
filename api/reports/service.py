"""
Article reports filed by subscribers for moderators.
"""

from __future__ import annotations

import logging

import asyncpg

from billing import service as billing
from resources import catalog, store
from resources.entities import ArticleReport, Stub, User

logger = logging.getLogger(__name__)


async def create_report(conn: asyncpg.Connection, viewer: User, article_id: str, *, reason: str) -> Stub:
    article = await billing.require_subscription(conn, viewer, article_id)
    report = await store.create(
        conn,
        catalog.ARTICLE_REPORT,
        {"user": viewer.id, "article": article.id, "reason": reason.strip()},
    )
    logger.info("article_reported report_id=%s article_id=%s user_id=%s", report.id, article.id, viewer.id)
    return report


async def list_reports(conn: asyncpg.Connection, *, limit: int = 100) -> list[ArticleReport]:
    return await store.list_all(conn, catalog.ARTICLE_REPORT, limit=limit)
