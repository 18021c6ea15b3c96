"""
Stripe webhook endpoint.
"""

from __future__ import annotations

import asyncpg
from fastapi import APIRouter, Depends, Header, Request

from core import db
from sync import reconcile

from . import events, signature

router = APIRouter()


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None),
    conn: asyncpg.Connection = Depends(db.connection),
) -> dict:
    """
    Verify, then reconcile one Stripe event.

    Any error response makes Stripe redeliver the event later; handlers are
    idempotent, so redelivery is safe.
    """
    body = await request.body()
    signature.verify(body, stripe_signature)

    event = events.parse_event(body)
    handled = await reconcile.reconcile(conn, event)
    return {"received": True, "handled": handled}
