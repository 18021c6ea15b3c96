"""
Bundles, prices and subscriptions.

A bundle belongs to an organization and lists the publishers its
subscribers may read. Local writes with a Stripe counterpart run in the same
transaction as the Stripe call, so a failed call rolls the row back; the
Stripe ids stored here are the ones the `product.created` / `price.created`
webhooks would backfill. Subscription rows themselves are only ever written
by webhook reconciliation.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import asyncpg

from core import errors, stripe
from organizations import service as organizations
from resources import catalog, store
from resources.entities import Article, Bundle, Price, Publisher, User, reference_id, resolved
from resources.expansion import ExpandQuery

logger = logging.getLogger(__name__)

# Stripe's minimum charge per currency, in the smallest unit.
CURRENCY_MINIMUMS = {"usd": 50, "eur": 50, "gbp": 30}

ACTIVE_STATUSES = frozenset({"active", "trialing"})


# ----------------------------------------------------------------------------
# Bundles
# ----------------------------------------------------------------------------


async def retrieve_bundle(conn: asyncpg.Connection, bundle_id: str, *, expand: ExpandQuery = ()) -> Bundle:
    return await store.retrieve(conn, catalog.BUNDLE, {"id": bundle_id}, expand)


async def owned_bundle(conn: asyncpg.Connection, viewer: User, bundle_id: str) -> Bundle:
    """
    Retrieve a bundle of an organization the viewer manages, with
    `bundle.organization` resolved.
    """
    bundle = await retrieve_bundle(conn, bundle_id, expand=("organization",))
    if not organizations.is_owner(viewer, resolved(bundle.organization)):
        raise errors.Forbidden("You do not own this bundle.")
    return bundle


async def list_organization_bundles(
    conn: asyncpg.Connection,
    viewer: User,
    organization_id: str,
    *,
    expand: ExpandQuery = (),
) -> list[Bundle]:
    organization = await organizations.owned_organization(conn, viewer, organization_id)
    return await store.list_by_foreign_key(conn, catalog.BUNDLE, "organization", organization.id, expand)


async def list_publisher_bundles(
    conn: asyncpg.Connection,
    publisher_id: str,
    *,
    expand: ExpandQuery = (),
) -> list[Bundle]:
    if not await store.exists(conn, catalog.PUBLISHER, {"id": publisher_id}):
        raise errors.NotFound("publisher not found.")
    links = await store.list_by_foreign_key(conn, catalog.BUNDLE_PUBLISHER, "publisher", publisher_id)
    return await store.retrieve_many(conn, catalog.BUNDLE, [reference_id(link.bundle) for link in links], expand)


async def list_bundle_publishers(
    conn: asyncpg.Connection,
    bundle_id: str,
    *,
    expand: ExpandQuery = (),
) -> list[Publisher]:
    if not await store.exists(conn, catalog.BUNDLE, {"id": bundle_id}):
        raise errors.NotFound("bundle not found.")
    links = await store.list_by_foreign_key(conn, catalog.BUNDLE_PUBLISHER, "bundle", bundle_id)
    return await store.retrieve_many(conn, catalog.PUBLISHER, [reference_id(link.publisher) for link in links], expand)


async def _ensure_unique_name(conn: asyncpg.Connection, name: str, organization_id: str) -> None:
    if await store.exists(conn, catalog.BUNDLE, {"name": name, "organization": organization_id}):
        raise errors.Conflict(
            "Bundle name already used.",
            errors=[errors.field_error("name", f"A bundle named '{name}' already exists for this organization")],
        )


async def create_bundle(conn: asyncpg.Connection, viewer: User, organization_id: str, *, name: str) -> Bundle:
    organization = await organizations.owned_organization(conn, viewer, organization_id)
    name = name.strip()
    await _ensure_unique_name(conn, name, organization.id)

    async with conn.transaction():
        created = await store.create(
            conn,
            catalog.BUNDLE,
            {"name": name, "organization": organization.id, "active": True},
        )
        product = await stripe.create_product(name, metadata={"bundle_id": created.id})
        bundle = await store.update(conn, catalog.BUNDLE, {"id": created.id}, {"stripe_product_id": product["id"]})

    logger.info("bundle_created bundle_id=%s organization_id=%s", bundle.id, organization.id)
    return bundle


def _stripe_product_id(bundle: Bundle) -> str:
    if not bundle.stripe_product_id:
        raise errors.ImplementationError(f"Bundle {bundle.id} has no Stripe product.")
    return bundle.stripe_product_id


async def update_bundle(conn: asyncpg.Connection, viewer: User, bundle_id: str, *, name: str | None = None) -> Bundle:
    bundle = await owned_bundle(conn, viewer, bundle_id)
    if name is None or name.strip() == bundle.name:
        return bundle
    name = name.strip()
    await _ensure_unique_name(conn, name, reference_id(bundle.organization))
    product_id = _stripe_product_id(bundle)

    async with conn.transaction():
        updated = await store.update(conn, catalog.BUNDLE, {"id": bundle.id}, {"name": name})
        await stripe.update_product(product_id, name=name)
    return updated


async def deactivate_bundle(conn: asyncpg.Connection, viewer: User, bundle_id: str) -> Bundle:
    """
    Bundles are never deleted: existing subscriptions still point at their
    prices. Deactivating stops new subscriptions.
    """
    bundle = await owned_bundle(conn, viewer, bundle_id)
    product_id = _stripe_product_id(bundle)

    async with conn.transaction():
        updated = await store.update(conn, catalog.BUNDLE, {"id": bundle.id}, {"active": False})
        await stripe.update_product(product_id, active=False)

    logger.info("bundle_deactivated bundle_id=%s", bundle.id)
    return updated


async def link_publisher(conn: asyncpg.Connection, viewer: User, bundle_id: str, publisher_id: str) -> None:
    bundle = await owned_bundle(conn, viewer, bundle_id)
    publisher = await organizations.owned_publisher(conn, viewer, publisher_id)
    key = {"bundle": bundle.id, "publisher": publisher.id}
    if await store.exists(conn, catalog.BUNDLE_PUBLISHER, key):
        return
    await store.insert(conn, catalog.BUNDLE_PUBLISHER, key)


async def unlink_publisher(conn: asyncpg.Connection, viewer: User, bundle_id: str, publisher_id: str) -> None:
    bundle = await owned_bundle(conn, viewer, bundle_id)
    publisher = await organizations.owned_publisher(conn, viewer, publisher_id)
    await store.delete(conn, catalog.BUNDLE_PUBLISHER, {"bundle": bundle.id, "publisher": publisher.id})


# ----------------------------------------------------------------------------
# Prices
# ----------------------------------------------------------------------------


async def retrieve_price(conn: asyncpg.Connection, price_id: str, *, expand: ExpandQuery = ()) -> Price:
    return await store.retrieve(conn, catalog.PRICE, {"id": price_id}, expand)


async def list_bundle_prices(
    conn: asyncpg.Connection,
    bundle_id: str,
    *,
    active: bool | None = None,
    expand: ExpandQuery = (),
) -> list[Price]:
    if not await store.exists(conn, catalog.BUNDLE, {"id": bundle_id}):
        raise errors.NotFound("bundle not found.")
    prices = await store.list_by_foreign_key(conn, catalog.PRICE, "bundle", bundle_id, expand)
    if active is None:
        return prices
    return [price for price in prices if price.active is active]


def _validate_amount(amount: int, currency: str) -> str:
    currency = currency.strip().lower()
    minimum = CURRENCY_MINIMUMS.get(currency)
    if minimum is None:
        raise errors.ValidationError(
            "Invalid price.",
            errors=[errors.field_error("currency", f"Currency '{currency}' is not supported")],
        )
    if amount < minimum:
        raise errors.ValidationError(
            "Invalid price.",
            errors=[errors.field_error("amount", f"Must be at least {minimum} {currency}")],
        )
    return currency


async def create_price(
    conn: asyncpg.Connection,
    viewer: User,
    bundle_id: str,
    *,
    amount: int,
    currency: str,
) -> Price:
    bundle = await owned_bundle(conn, viewer, bundle_id)
    product_id = _stripe_product_id(bundle)
    currency = _validate_amount(amount, currency)

    async with conn.transaction():
        created = await store.create(
            conn,
            catalog.PRICE,
            {"amount": amount, "currency": currency, "bundle": bundle.id, "active": True},
        )
        remote = await stripe.create_price(
            product_id,
            amount=amount,
            currency=currency,
            metadata={"price_id": created.id},
        )
        price = await store.update(conn, catalog.PRICE, {"id": created.id}, {"stripe_price_id": remote["id"]})

    logger.info("price_created price_id=%s bundle_id=%s amount=%s currency=%s", price.id, bundle.id, amount, currency)
    return price


async def update_price(conn: asyncpg.Connection, viewer: User, price_id: str, *, active: bool | None = None) -> Price:
    price = await retrieve_price(conn, price_id, expand=("bundle", "bundle.organization"))
    bundle = resolved(price.bundle)
    if not organizations.is_owner(viewer, resolved(bundle.organization)):
        raise errors.Forbidden("You do not own this price.")
    if active is None or active is price.active:
        return price
    if not price.stripe_price_id:
        raise errors.ImplementationError(f"Price {price.id} has no Stripe price.")

    async with conn.transaction():
        updated = await store.update(conn, catalog.PRICE, {"id": price.id}, {"active": active})
        await stripe.update_price(price.stripe_price_id, active=active)
    return updated


# ----------------------------------------------------------------------------
# Subscriptions
# ----------------------------------------------------------------------------


async def _subscribed_bundle_ids(conn: asyncpg.Connection, user_id: str, *, active_only: bool) -> set[str]:
    subscriptions = await store.list_by_foreign_key(conn, catalog.SUBSCRIPTION, "user", user_id)
    now = datetime.now(timezone.utc)
    price_ids = [
        reference_id(subscription.price)
        for subscription in subscriptions
        if not subscription.deleted
        and (
            not active_only
            or (subscription.status in ACTIVE_STATUSES and subscription.current_period_end > now)
        )
    ]
    prices = await store.retrieve_many(conn, catalog.PRICE, price_ids)
    return {reference_id(price.bundle) for price in prices}


async def can_subscribe_to_bundle(conn: asyncpg.Connection, user_id: str, bundle_id: str) -> bool:
    return bundle_id not in await _subscribed_bundle_ids(conn, user_id, active_only=False)


async def is_subscribed_to_publisher(conn: asyncpg.Connection, viewer: User, publisher: Publisher) -> bool:
    """
    The publisher's owner counts as subscribed. Anyone else needs a live
    subscription to a bundle that includes the publisher.
    """
    organization = await store.retrieve(conn, catalog.ORGANIZATION, {"id": reference_id(publisher.organization)})
    if reference_id(organization.user) == viewer.id:
        return True
    for bundle_id in await _subscribed_bundle_ids(conn, viewer.id, active_only=True):
        if await store.exists(conn, catalog.BUNDLE_PUBLISHER, {"bundle": bundle_id, "publisher": publisher.id}):
            return True
    return False


async def require_subscription(conn: asyncpg.Connection, viewer: User, article_id: str) -> Article:
    """
    Retrieve an article, raising PaymentRequired unless the viewer may read
    its publisher's paid features.
    """
    article = await store.retrieve(conn, catalog.ARTICLE, {"id": article_id}, ("author", "author.publisher"))
    publisher = resolved(resolved(article.author).publisher)
    if not await is_subscribed_to_publisher(conn, viewer, publisher):
        raise errors.PaymentRequired(f"A subscription to {publisher.name} is required.")
    return article


def _subscription_error(error: str) -> list[dict[str, str]]:
    return [errors.field_error("subscription", error)]


async def _subscribable_price(conn: asyncpg.Connection, viewer: User, price_id: str) -> Price:
    if not viewer.stripe_customer_id:
        raise errors.ImplementationError(f"User {viewer.id} has no Stripe customer.")

    price = await retrieve_price(conn, price_id, expand=("bundle", "bundle.organization"))
    bundle = resolved(price.bundle)
    organization = resolved(bundle.organization)
    if not price.stripe_price_id:
        raise errors.ImplementationError(f"Price {price.id} has no Stripe price.")

    if not organization.stripe_account_enabled or not organization.stripe_account_id:
        raise errors.ValidationError(
            "Payments are not enabled.",
            errors=_subscription_error(f"The organization that owns the bundle '{bundle.id}' hasn't enabled payments"),
        )
    if not await can_subscribe_to_bundle(conn, viewer.id, bundle.id):
        raise errors.Conflict(
            "Already subscribed.",
            errors=_subscription_error(f"The user '{viewer.id}' is already subscribed to the bundle '{bundle.id}'"),
        )
    if not price.active:
        raise errors.Forbidden("Price is not active.", errors=_subscription_error(f"The price '{price.id}' is not active"))
    if not bundle.active:
        raise errors.Forbidden(
            "Bundle is not active.",
            errors=_subscription_error(f"The bundle '{bundle.id}' is not active"),
        )
    return price


async def create_checkout(conn: asyncpg.Connection, viewer: User, price_id: str) -> str:
    price = await _subscribable_price(conn, viewer, price_id)
    bundle = resolved(price.bundle)
    return await stripe.create_checkout_session(
        customer_id=viewer.stripe_customer_id,
        price_id=price.stripe_price_id,
        destination_account_id=resolved(bundle.organization).stripe_account_id,
        metadata={"user_id": viewer.id, "price_id": price.id},
        cancel_path=f"/bundle/{bundle.id}/subscribe",
    )


async def create_subscription(conn: asyncpg.Connection, viewer: User, user_id: str, price_id: str) -> dict:
    """
    Start a subscription on Stripe. The local row is created when the
    `customer.subscription.created` webhook arrives.
    """
    if viewer.id != user_id:
        raise errors.Forbidden("You can only subscribe yourself.")
    price = await _subscribable_price(conn, viewer, price_id)
    bundle = resolved(price.bundle)

    remote = await stripe.create_subscription(
        customer_id=viewer.stripe_customer_id,
        price_id=price.stripe_price_id,
        destination_account_id=resolved(bundle.organization).stripe_account_id,
        metadata={"user_id": viewer.id, "price_id": price.id},
    )
    logger.info("subscription_requested user_id=%s price_id=%s stripe_id=%s", viewer.id, price.id, remote.get("id"))
    return {"stripe_subscription_id": remote.get("id"), "status": remote.get("status")}
