"""
Auth security helpers.

Access tokens are JWTs naming a row of `sessions` (`sid`) and its user
(`sub`). Deleting the session row revokes the token before it expires.
"""

from __future__ import annotations

import os
import time
from datetime import datetime
from typing import Any

import jwt


class AuthSecurityError(RuntimeError):
    pass


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def jwt_secret() -> str:
    # Local default keeps development simple.
    # In production, set JWT_SECRET in environment.
    return os.environ.get("JWT_SECRET", "dev-change-this-secret").strip() or "dev-change-this-secret"


def jwt_algorithm() -> str:
    return os.environ.get("JWT_ALG", "HS256").strip() or "HS256"


def session_expire_days() -> int:
    return _env_int("SESSION_EXPIRE_DAYS", 30)


def now_epoch_s() -> int:
    return int(time.time())


def build_access_token(*, session_id: str, user_id: str, expires_at: datetime) -> str:
    payload = {
        "sub": user_id,
        "sid": session_id,
        "type": "access",
        "iat": now_epoch_s(),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(payload, jwt_secret(), algorithm=jwt_algorithm())


def decode_access_token(token: str) -> dict[str, Any]:
    raw = (token or "").strip()
    if not raw:
        raise AuthSecurityError("Access token is empty.")

    try:
        payload = jwt.decode(raw, jwt_secret(), algorithms=[jwt_algorithm()])
    except jwt.InvalidTokenError as exc:
        raise AuthSecurityError("Invalid access token.") from exc

    token_type = str(payload.get("type") or "").strip().lower()
    if token_type != "access":
        raise AuthSecurityError("Token is not an access token.")

    if not str(payload.get("sid") or "").strip() or not str(payload.get("sub") or "").strip():
        raise AuthSecurityError("Access token has no session.")

    return payload
