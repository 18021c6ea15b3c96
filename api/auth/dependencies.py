"""
Auth dependencies for protected FastAPI routes.
"""

from __future__ import annotations

import asyncpg
from fastapi import Depends, Header, HTTPException, status

from core import db
from resources.entities import Session, User, resolved

from . import service


def _extract_bearer_token(authorization: str | None) -> str:
    raw = (authorization or "").strip()
    if not raw:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header.",
        )

    parts = raw.split(" ", 1)
    if len(parts) != 2:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header format.",
        )

    scheme, token = parts[0].strip().lower(), parts[1].strip()
    if scheme != "bearer" or not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization must be: Bearer <token>.",
        )
    return token


async def get_bearer_token(authorization: str | None = Header(default=None)) -> str:
    return _extract_bearer_token(authorization)


async def get_current_session(
    conn: asyncpg.Connection = Depends(db.connection),
    access_token: str = Depends(get_bearer_token),
) -> Session:
    return await service.session_from_access_token(conn, access_token)


async def get_current_user(session: Session = Depends(get_current_session)) -> User:
    return resolved(session.user)


async def get_optional_user(
    conn: asyncpg.Connection = Depends(db.connection),
    authorization: str | None = Header(default=None),
) -> User | None:
    """
    Viewer for public routes: None when no Authorization header is sent.
    A header that is present but invalid is still rejected.
    """
    if not (authorization or "").strip():
        return None
    return await service.viewer_from_access_token(conn, _extract_bearer_token(authorization))


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required.",
        )
    return user
