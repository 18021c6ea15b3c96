"""
Auth business logic: sessions and the viewer behind an access token.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import asyncpg
from fastapi import HTTPException, status

from core import errors
from resources import catalog, store
from resources.entities import Session, User, reference_id, resolved

from . import security

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def create_session(conn: asyncpg.Connection, user_id: str) -> tuple[Session, str]:
    """
    Open a session for `user_id` and return it with its access token.
    """
    expires_at = _utc_now() + timedelta(days=security.session_expire_days())
    created = await store.create(conn, catalog.SESSION, {"user": user_id, "expires_at": expires_at})
    session = await store.retrieve(conn, catalog.SESSION, {"id": created.id})

    token = security.build_access_token(session_id=session.id, user_id=user_id, expires_at=expires_at)
    logger.info("session_created session_id=%s user_id=%s", session.id, user_id)
    return session, token


async def session_from_access_token(conn: asyncpg.Connection, access_token: str) -> Session:
    """
    Resolve a token to its live session, with `session.user` expanded.
    """
    try:
        payload = security.decode_access_token(access_token)
    except security.AuthSecurityError as exc:
        raise _unauthorized(str(exc)) from exc

    try:
        session = await store.retrieve(conn, catalog.SESSION, {"id": str(payload["sid"])}, ("user",))
    except errors.NotFound as exc:
        raise _unauthorized("Session not found.") from exc

    if reference_id(session.user) != str(payload["sub"]):
        raise _unauthorized("Invalid access token subject.")

    if session.expires_at <= _utc_now():
        # Expired sessions are cleaned up lazily.
        await store.delete(conn, catalog.SESSION, {"id": session.id})
        raise _unauthorized("Session is expired.")
    return session


async def viewer_from_access_token(conn: asyncpg.Connection, access_token: str) -> User:
    session = await session_from_access_token(conn, access_token)
    user = resolved(session.user)
    if user is None:
        raise errors.ImplementationError("Session user was not expanded.")
    return user


async def logout(conn: asyncpg.Connection, session_id: str) -> None:
    await store.delete(conn, catalog.SESSION, {"id": session_id})
    logger.info("session_deleted session_id=%s", session_id)


async def list_sessions(conn: asyncpg.Connection, user_id: str) -> list[Session]:
    return await store.list_by_foreign_key(conn, catalog.SESSION, "user", user_id)
