"""
Stripe REST client helpers.

Used endpoints:
- GET    /v1/subscriptions/{id}       -> subscription object
- POST   /v1/subscriptions            -> create a subscription
- POST   /v1/accounts                 -> Connect express account per organization
- POST   /v1/products[/{id}]          -> one product per bundle
- POST   /v1/prices[/{id}]            -> monthly prices of a bundle
- POST   /v1/customers/{id}           -> keep name/email in sync
- DELETE /v1/customers/{id}
- POST   /v1/checkout/sessions        -> hosted checkout for a price

Stripe pushes state changes back to us through webhooks (see `webhooks/`);
callers here only write what they own and read when an event is incomplete.
Request bodies are form encoded, nested keys as `a[b][c]`.
"""

from __future__ import annotations

import os
from typing import Any

import httpx

from . import errors

DEFAULT_CONNECT_FEE_PERCENT = 10.0


class StripeError(errors.ExternalSystemFailure):
    default_detail = "The payment provider is unavailable."


def stripe_base_url() -> str:
    return os.environ.get("STRIPE_BASE_URL", "https://api.stripe.com").strip() or "https://api.stripe.com"


def stripe_api_key() -> str:
    key = os.environ.get("STRIPE_API_KEY", "").strip()
    if not key:
        raise StripeError("STRIPE_API_KEY is not set.")
    return key


def client_url() -> str:
    return os.environ.get("CLIENT_URL", "http://localhost:5173").strip().rstrip("/")


def connect_fee_percent() -> float:
    raw = os.environ.get("STRIPE_CONNECT_FEE_PERCENT", "").strip()
    if not raw:
        return DEFAULT_CONNECT_FEE_PERCENT
    try:
        return float(raw)
    except ValueError:
        return DEFAULT_CONNECT_FEE_PERCENT


def _form(params: dict[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            pairs.extend(_form(value, name))
        elif isinstance(value, (list, tuple)):
            for position, item in enumerate(value):
                item_name = f"{name}[{position}]"
                if isinstance(item, dict):
                    pairs.extend(_form(item, item_name))
                else:
                    pairs.append((item_name, str(item)))
        elif isinstance(value, bool):
            pairs.append((name, "true" if value else "false"))
        else:
            pairs.append((name, str(value)))
    return pairs


async def _request(
    method: str,
    path: str,
    *,
    params: dict[str, Any] | None = None,
    expected_object: str | None = None,
    timeout_s: float = 10.0,
) -> dict[str, Any]:
    headers = {"Authorization": f"Bearer {stripe_api_key()}"}
    body = dict(_form(params)) if params else None
    try:
        async with httpx.AsyncClient(base_url=stripe_base_url().rstrip("/"), timeout=timeout_s) as client:
            resp = await client.request(method, path, headers=headers, data=body)
    except httpx.HTTPError as exc:
        raise StripeError(f"Stripe {method} {path} failed: {exc}") from exc

    if resp.status_code != 200:
        raise StripeError(f"Stripe {method} {path} failed: {resp.status_code} {resp.text[:500]}")

    data: dict[str, Any] = resp.json()
    if expected_object is not None and data.get("object") != expected_object:
        raise StripeError("Stripe returned an unexpected object.")
    return data


async def retrieve_subscription(subscription_id: str, *, timeout_s: float = 10.0) -> dict[str, Any]:
    subscription_id = (subscription_id or "").strip()
    if not subscription_id:
        raise StripeError("Subscription id is empty.")
    return await _request(
        "GET",
        f"/v1/subscriptions/{subscription_id}",
        expected_object="subscription",
        timeout_s=timeout_s,
    )


async def create_subscription(
    *,
    customer_id: str,
    price_id: str,
    destination_account_id: str,
    metadata: dict[str, str],
) -> dict[str, Any]:
    return await _request(
        "POST",
        "/v1/subscriptions",
        params={
            "customer": customer_id,
            "items": [{"price": price_id, "quantity": 1}],
            "application_fee_percent": connect_fee_percent(),
            "transfer_data": {"destination": destination_account_id},
            "metadata": metadata,
        },
        expected_object="subscription",
    )


async def create_connected_account(email: str, *, metadata: dict[str, str]) -> dict[str, Any]:
    return await _request(
        "POST",
        "/v1/accounts",
        params={"type": "express", "email": email, "metadata": metadata},
        expected_object="account",
    )


async def create_product(name: str, *, metadata: dict[str, str]) -> dict[str, Any]:
    return await _request(
        "POST",
        "/v1/products",
        params={"name": name, "metadata": metadata},
        expected_object="product",
    )


async def update_product(product_id: str, *, name: str | None = None, active: bool | None = None) -> dict[str, Any]:
    return await _request(
        "POST",
        f"/v1/products/{product_id}",
        params={"name": name, "active": active},
        expected_object="product",
    )


async def create_price(
    product_id: str,
    *,
    amount: int,
    currency: str,
    metadata: dict[str, str],
) -> dict[str, Any]:
    return await _request(
        "POST",
        "/v1/prices",
        params={
            "product": product_id,
            "unit_amount": amount,
            "currency": currency,
            "recurring": {"interval": "month"},
            "metadata": metadata,
        },
        expected_object="price",
    )


async def update_price(price_id: str, *, active: bool) -> dict[str, Any]:
    return await _request(
        "POST",
        f"/v1/prices/{price_id}",
        params={"active": active},
        expected_object="price",
    )


async def update_customer(customer_id: str, *, name: str | None, email: str) -> dict[str, Any]:
    return await _request(
        "POST",
        f"/v1/customers/{customer_id}",
        params={"name": name, "email": email},
        expected_object="customer",
    )


async def delete_customer(customer_id: str) -> None:
    await _request("DELETE", f"/v1/customers/{customer_id}")


async def create_checkout_session(
    *,
    customer_id: str,
    price_id: str,
    destination_account_id: str,
    metadata: dict[str, str],
    cancel_path: str,
) -> str:
    """
    Create a hosted checkout session for one monthly price; returns its URL.
    """
    session = await _request(
        "POST",
        "/v1/checkout/sessions",
        params={
            "mode": "subscription",
            "customer": customer_id,
            "success_url": client_url(),
            "cancel_url": f"{client_url()}{cancel_path}",
            "line_items": [{"price": price_id, "quantity": 1}],
            "subscription_data": {
                "application_fee_percent": connect_fee_percent(),
                "transfer_data": {"destination": destination_account_id},
                "metadata": metadata,
            },
            "metadata": metadata,
        },
        expected_object="checkout.session",
    )
    url = session.get("url")
    if not url:
        raise StripeError("Stripe checkout session has no URL.")
    return str(url)
