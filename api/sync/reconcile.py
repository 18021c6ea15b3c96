"""
Stripe webhook reconciliation.

Stripe delivers events at least once and in no particular order. Every
handler is written so that:
- re-delivery converges (upserts keyed by Stripe ids, guards accept equal
  timestamps);
- an older event never overwrites state written by a newer one
  (`stripe_event_at` version guard);
- billing periods never move backwards (`current_period_end` is GREATEST'd);
- tombstones stick (`deleted`, `detached` are GREATEST'd booleans).

A handler that needs a row another event has not created yet raises
NotFound; the non-2xx response makes Stripe retry later. Remote reads
(Stripe API) happen before the handler's transaction is opened.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import asyncpg

from core import errors, stripe
from resources import catalog, store
from resources.store import VersionGuard
from webhooks.events import WebhookEvent

logger = logging.getLogger(__name__)

Handler = Callable[[asyncpg.Connection, WebhookEvent], Awaitable[None]]


def _timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _metadata(obj: dict[str, Any], key: str) -> str | None:
    value = (obj.get("metadata") or {}).get(key)
    return str(value) if value else None


def _expandable_id(value: Any) -> str | None:
    # Stripe fields such as `customer` are an id, or the object when expanded.
    if isinstance(value, dict):
        value = value.get("id")
    return str(value) if value else None


def _required(obj: dict[str, Any], key: str) -> Any:
    value = obj.get(key)
    if value is None or value == "":
        raise errors.ValidationError(
            "Malformed webhook event.",
            errors=[errors.field_error(key, "Missing in event object")],
        )
    return value


def _guard(event: WebhookEvent) -> VersionGuard:
    return VersionGuard(field="stripe_event_at", value=event.provider_timestamp)


def _skipped(event: WebhookEvent, reason: str) -> None:
    logger.info(
        "webhook_skipped event_id=%s type=%s reason=%s",
        event.external_id,
        event.type,
        reason,
    )


async def _user_for_customer(conn: asyncpg.Connection, customer_id: str) -> Any:
    return await store.retrieve(conn, catalog.USER, {"stripe_customer_id": customer_id})


# ----------------------------------------------------------------------------
# Accounts and customers
# ----------------------------------------------------------------------------


async def account_updated(conn: asyncpg.Connection, event: WebhookEvent) -> None:
    account = event.payload
    account_id = str(_required(account, "id"))
    enabled = bool(account.get("charges_enabled"))

    organization_id = _metadata(account, "organization_id")
    if organization_id is not None:
        filter = {"id": organization_id}
        fields = {"stripe_account_id": account_id, "stripe_account_enabled": enabled}
    else:
        filter = {"stripe_account_id": account_id}
        fields = {"stripe_account_enabled": enabled}

    if await store.update(conn, catalog.ORGANIZATION, filter, fields, version=_guard(event)) is None:
        _skipped(event, "stale")


async def customer_created(conn: asyncpg.Connection, event: WebhookEvent) -> None:
    customer = event.payload
    user_id = _metadata(customer, "user_id")
    if user_id is None:
        _skipped(event, "no_user_id")
        return

    updated = await store.update(
        conn,
        catalog.USER,
        {"id": user_id},
        {"stripe_customer_id": str(_required(customer, "id"))},
        version=_guard(event),
    )
    if updated is None:
        _skipped(event, "stale")


async def customer_updated(conn: asyncpg.Connection, event: WebhookEvent) -> None:
    customer = event.payload
    customer_id = str(_required(customer, "id"))
    default_method = _expandable_id((customer.get("invoice_settings") or {}).get("default_payment_method"))

    async with conn.transaction():
        user = await _user_for_customer(conn, customer_id)

        # With no email the update still records the event time.
        fields: dict[str, Any] = {}
        if customer.get("email"):
            fields["email"] = str(customer["email"]).strip().lower()
        updated = await store.update(conn, catalog.USER, {"id": user.id}, fields, version=_guard(event))
        if updated is None:
            _skipped(event, "stale")
            return

        if default_method is None:
            await store.delete(conn, catalog.DEFAULT_PAYMENT_METHOD, {"user": user.id})
            return

        method = await store.retrieve(conn, catalog.PAYMENT_METHOD, {"stripe_id": default_method})
        await store.upsert(
            conn,
            catalog.DEFAULT_PAYMENT_METHOD,
            ("user",),
            {"user": user.id, "payment_method": method.id},
        )


# ----------------------------------------------------------------------------
# Subscriptions and invoices
# ----------------------------------------------------------------------------


async def _subscription_owner(conn: asyncpg.Connection, subscription: dict[str, Any]) -> tuple[str, str]:
    """
    Local (user id, price id) for a Stripe subscription: from the metadata we
    set at checkout, else from the customer and the first item's price.
    """
    user_id = _metadata(subscription, "user_id")
    if user_id is None:
        user = await _user_for_customer(conn, str(_expandable_id(_required(subscription, "customer"))))
        user_id = user.id

    price_id = _metadata(subscription, "price_id")
    if price_id is None:
        items = (subscription.get("items") or {}).get("data") or []
        stripe_price_id = _expandable_id(items[0].get("price")) if items else None
        if stripe_price_id is None:
            raise errors.ValidationError(
                "Malformed webhook event.",
                errors=[errors.field_error("items", "Subscription has no price")],
            )
        price = await store.retrieve(conn, catalog.PRICE, {"stripe_price_id": stripe_price_id})
        price_id = price.id

    return user_id, price_id


async def subscription_changed(conn: asyncpg.Connection, event: WebhookEvent) -> None:
    subscription = event.payload
    deleted = event.type == "customer.subscription.deleted"

    async with conn.transaction():
        user_id, price_id = await _subscription_owner(conn, subscription)
        saved = await store.upsert(
            conn,
            catalog.SUBSCRIPTION,
            ("stripe_subscription_id",),
            {
                "stripe_subscription_id": str(_required(subscription, "id")),
                "status": str(_required(subscription, "status")),
                "user": user_id,
                "price": price_id,
                "current_period_end": _timestamp(_required(subscription, "current_period_end")),
                "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
                "deleted": deleted,
            },
            version=_guard(event),
            monotonic=("current_period_end", "deleted"),
        )
    if saved is None:
        _skipped(event, "stale")


def _invoice_period_end(invoice: dict[str, Any], subscription_id: str) -> datetime | None:
    ends = []
    for line in (invoice.get("lines") or {}).get("data") or []:
        if _expandable_id(line.get("subscription")) not in (None, subscription_id):
            continue
        end = (line.get("period") or {}).get("end")
        if end is not None:
            ends.append(int(end))
    return _timestamp(max(ends)) if ends else None


async def invoice_paid(conn: asyncpg.Connection, event: WebhookEvent) -> None:
    invoice = event.payload
    subscription_id = _expandable_id(invoice.get("subscription"))
    if subscription_id is None:
        _skipped(event, "no_subscription")
        return

    fields: dict[str, Any] = {}
    period_end = _invoice_period_end(invoice, subscription_id)
    if period_end is None:
        remote = await stripe.retrieve_subscription(subscription_id)
        period_end = _timestamp(remote.get("current_period_end"))
        fields["cancel_at_period_end"] = bool(remote.get("cancel_at_period_end"))
    if period_end is None:
        raise errors.ValidationError(
            "Malformed webhook event.",
            errors=[errors.field_error("lines", "No billing period")],
        )
    fields["current_period_end"] = period_end

    # No version guard: the period only ever moves forward.
    await store.update(
        conn,
        catalog.SUBSCRIPTION,
        {"stripe_subscription_id": subscription_id},
        fields,
        monotonic=("current_period_end",),
    )


async def invoice_payment_failed(conn: asyncpg.Connection, event: WebhookEvent) -> None:
    invoice = event.payload
    subscription_id = _expandable_id(invoice.get("subscription"))
    if subscription_id is None:
        _skipped(event, "no_subscription")
        return

    remote = await stripe.retrieve_subscription(subscription_id)
    updated = await store.update(
        conn,
        catalog.SUBSCRIPTION,
        {"stripe_subscription_id": subscription_id},
        {"status": str(_required(remote, "status"))},
        version=_guard(event),
    )
    if updated is None:
        _skipped(event, "stale")


# ----------------------------------------------------------------------------
# Payment methods
# ----------------------------------------------------------------------------


def _payment_method_data(method: dict[str, Any]) -> Any:
    # Stripe nests the type-specific details under the type's name.
    return method.get(str(method.get("type")))


async def payment_method_attached(conn: asyncpg.Connection, event: WebhookEvent) -> None:
    method = event.payload
    customer_id = _expandable_id(_required(method, "customer"))

    async with conn.transaction():
        user = await _user_for_customer(conn, str(customer_id))
        saved = await store.upsert(
            conn,
            catalog.PAYMENT_METHOD,
            ("stripe_id",),
            {
                "stripe_id": str(_required(method, "id")),
                "type": str(_required(method, "type")),
                "data": _payment_method_data(method),
                "user": user.id,
                "detached": False,
            },
            version=_guard(event),
            monotonic=("detached",),
        )
    if saved is None:
        _skipped(event, "stale")


async def payment_method_updated(conn: asyncpg.Connection, event: WebhookEvent) -> None:
    method = event.payload
    updated = await store.update(
        conn,
        catalog.PAYMENT_METHOD,
        {"stripe_id": str(_required(method, "id"))},
        {"data": _payment_method_data(method)},
        version=_guard(event),
    )
    if updated is None:
        _skipped(event, "stale")


async def payment_method_detached(conn: asyncpg.Connection, event: WebhookEvent) -> None:
    method = event.payload
    updated = await store.update(
        conn,
        catalog.PAYMENT_METHOD,
        {"stripe_id": str(_required(method, "id"))},
        {"detached": True},
        version=_guard(event),
        monotonic=("detached",),
    )
    if updated is None:
        _skipped(event, "stale")


# ----------------------------------------------------------------------------
# Catalog backfill
# ----------------------------------------------------------------------------


async def price_created(conn: asyncpg.Connection, event: WebhookEvent) -> None:
    price = event.payload
    price_id = _metadata(price, "price_id")
    if price_id is None:
        _skipped(event, "no_price_id")
        return
    await store.update(conn, catalog.PRICE, {"id": price_id}, {"stripe_price_id": str(_required(price, "id"))})


async def product_created(conn: asyncpg.Connection, event: WebhookEvent) -> None:
    product = event.payload
    bundle_id = _metadata(product, "bundle_id")
    if bundle_id is None:
        _skipped(event, "no_bundle_id")
        return
    await store.update(conn, catalog.BUNDLE, {"id": bundle_id}, {"stripe_product_id": str(_required(product, "id"))})


HANDLERS: dict[str, Handler] = {
    "account.updated": account_updated,
    "customer.created": customer_created,
    "customer.updated": customer_updated,
    "customer.subscription.created": subscription_changed,
    "customer.subscription.updated": subscription_changed,
    "customer.subscription.deleted": subscription_changed,
    "invoice.paid": invoice_paid,
    "invoice.payment_failed": invoice_payment_failed,
    "payment_method.attached": payment_method_attached,
    "payment_method.updated": payment_method_updated,
    "payment_method.automatically_updated": payment_method_updated,
    "payment_method.detached": payment_method_detached,
    "price.created": price_created,
    "product.created": product_created,
}


async def reconcile(conn: asyncpg.Connection, event: WebhookEvent) -> bool:
    """
    Apply one verified event. Returns False for event types we do not track.
    """
    handler = HANDLERS.get(event.type)
    if handler is None:
        _skipped(event, "unhandled_type")
        return False

    await handler(conn, event)
    logger.info("webhook_applied event_id=%s type=%s", event.external_id, event.type)
    return True
