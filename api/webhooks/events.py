"""
Stripe event envelope.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from core import errors


@dataclass(frozen=True)
class WebhookEvent:
    external_id: str
    type: str
    # The event's `data.object`.
    payload: dict[str, Any]
    # When Stripe created the event; orders writes to the same record.
    provider_timestamp: datetime


def _invalid(error: str) -> errors.ValidationError:
    return errors.ValidationError("Malformed webhook event.", errors=[errors.field_error("event", error)])


def parse_event(body: bytes) -> WebhookEvent:
    try:
        data = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise _invalid("Body is not JSON") from exc

    if not isinstance(data, dict):
        raise _invalid("Body is not an object")

    event_id = data.get("id")
    event_type = data.get("type")
    created = data.get("created")
    envelope = data.get("data")
    obj = envelope.get("object") if isinstance(envelope, dict) else None

    if not isinstance(event_id, str) or not event_id:
        raise _invalid("Missing id")
    if not isinstance(event_type, str) or not event_type:
        raise _invalid("Missing type")
    if not isinstance(created, int):
        raise _invalid("Missing created")
    if not isinstance(obj, dict):
        raise _invalid("Missing data.object")

    return WebhookEvent(
        external_id=event_id,
        type=event_type,
        payload=obj,
        provider_timestamp=datetime.fromtimestamp(created, tz=timezone.utc),
    )
