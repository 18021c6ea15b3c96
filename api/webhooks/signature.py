"""
Stripe webhook signature verification.

Header format: `Stripe-Signature: t=<unix ts>,v1=<hex hmac>[,v1=...]`.
The signed payload is `"{t}.{raw body}"`, HMAC-SHA256 keyed with the
endpoint secret. Several `v1` entries appear while a secret is being rolled.
"""

from __future__ import annotations

import hashlib
import hmac
import os
import time

from core import errors

DEFAULT_TOLERANCE_S = 300


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def webhook_secret() -> str:
    secret = os.environ.get("STRIPE_WEBHOOK_SECRET", "").strip()
    if not secret:
        raise errors.ImplementationError("STRIPE_WEBHOOK_SECRET is not set.")
    return secret


def tolerance_s() -> int:
    return _env_int("STRIPE_WEBHOOK_TOLERANCE_S", DEFAULT_TOLERANCE_S)


def compute_signature(payload: bytes, timestamp: int, secret: str) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def _parse_header(header: str) -> tuple[int, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as exc:
                raise errors.SignatureInvalid("Malformed signature timestamp.") from exc
        elif key == "v1" and value:
            signatures.append(value)

    if timestamp is None or not signatures:
        raise errors.SignatureInvalid("Malformed Stripe-Signature header.")
    return timestamp, signatures


def verify(
    payload: bytes,
    header: str | None,
    *,
    secret: str | None = None,
    tolerance: int | None = None,
    now: int | None = None,
) -> int:
    """
    Check `header` against the raw request body. Returns the signed timestamp.

    Raises SignatureInvalid on any mismatch; nothing may be mutated before
    this returns.
    """
    if not (header or "").strip():
        raise errors.SignatureInvalid("Missing Stripe-Signature header.")

    timestamp, signatures = _parse_header(header)
    expected = compute_signature(payload, timestamp, secret or webhook_secret())
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise errors.SignatureInvalid()

    tolerance = tolerance if tolerance is not None else tolerance_s()
    current = now if now is not None else int(time.time())
    if tolerance > 0 and abs(current - timestamp) > tolerance:
        raise errors.SignatureInvalid("Webhook timestamp is outside the tolerance window.")
    return timestamp
