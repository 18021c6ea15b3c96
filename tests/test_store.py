"""Store: key-set validation, constraint mapping and guarded writes."""

from __future__ import annotations

import re
from datetime import datetime, timezone

import pytest

from core import errors
from resources import catalog, store
from resources.entities import Organization, PaymentMethod, Stub
from resources.store import VersionGuard


@pytest.mark.asyncio
async def test_retrieve_rejects_filter_that_is_not_a_key_set(conn, fake_db, world) -> None:
    fake_db.queries.clear()

    with pytest.raises(errors.ImplementationError):
        await store.retrieve(conn, catalog.ARTICLE, {"title": "Hello"})
    with pytest.raises(errors.ImplementationError):
        await store.exists(conn, catalog.USER, {"id": "usr_owner", "email": "owner@example.com"})
    with pytest.raises(errors.ImplementationError):
        await store.delete(conn, catalog.AUTHOR, {"user": "usr_writer"})

    assert fake_db.queries == []


@pytest.mark.asyncio
async def test_list_by_foreign_key_requires_declared_foreign_key(conn, fake_db) -> None:
    with pytest.raises(errors.ImplementationError):
        await store.list_by_foreign_key(conn, catalog.ARTICLE, "title", "Hello")
    # Listable columns are only accepted by list_by_field.
    with pytest.raises(errors.ImplementationError):
        await store.list_by_foreign_key(conn, catalog.ARTICLE_DRAFT, "status", "editable")
    assert fake_db.queries == []


@pytest.mark.asyncio
async def test_composite_key_set_is_accepted(conn, world) -> None:
    author = await store.retrieve(conn, catalog.AUTHOR, {"user": "usr_writer", "publisher": "pub_planet"})

    assert author.id == "aut_wren"
    assert author.user == Stub(id="usr_writer")
    assert await store.exists(conn, catalog.AUTHOR, {"publisher": "pub_planet", "user": "usr_writer"})
    assert not await store.exists(conn, catalog.AUTHOR, {"publisher": "pub_planet", "user": "usr_owner"})


@pytest.mark.asyncio
async def test_create_then_retrieve_round_trip(conn, world) -> None:
    created = await store.create(
        conn,
        catalog.ACCOUNT,
        {"user": "usr_owner", "type": "google", "external_id": "g-123"},
    )

    assert re.fullmatch(r"acc_[0-9a-f]{32}", created.id)
    account = await store.retrieve(conn, catalog.ACCOUNT, {"type": "google", "external_id": "g-123"})
    assert account.id == created.id
    assert account.user == Stub(id="usr_owner")


@pytest.mark.asyncio
async def test_create_duplicate_unique_key_is_conflict(conn, world) -> None:
    with pytest.raises(errors.Conflict):
        await store.create(conn, catalog.USER, {"type": "user", "full_name": "Copy", "email": "owner@example.com"})


@pytest.mark.asyncio
async def test_retrieve_missing_row_is_not_found(conn) -> None:
    with pytest.raises(errors.NotFound):
        await store.retrieve(conn, catalog.USER, {"id": "usr_nobody"})


@pytest.mark.asyncio
async def test_write_of_undeclared_column_is_implementation_error(conn, fake_db, world) -> None:
    fake_db.queries.clear()
    with pytest.raises(errors.ImplementationError):
        await store.update(conn, catalog.USER, {"id": "usr_owner"}, {"password": "x"})
    with pytest.raises(errors.ImplementationError):
        await store.create(conn, catalog.AUTHOR, {"user": "usr_owner", "publisher": "pub_planet", "created_at": None})
    assert fake_db.queries == []


@pytest.mark.asyncio
async def test_update_with_expect_returns_none_when_state_differs(conn, fake_db, world) -> None:
    fake_db.seed("article_drafts", id="dft_1", title="T", content={}, author="aut_wren", status="pending-verification")

    result = await store.update(
        conn,
        catalog.ARTICLE_DRAFT,
        {"id": "dft_1"},
        {"title": "Changed"},
        expect={"status": "editable"},
    )

    assert result is None
    assert fake_db.rows("article_drafts")[0]["title"] == "T"

    with pytest.raises(errors.NotFound):
        await store.update(conn, catalog.ARTICLE_DRAFT, {"id": "dft_missing"}, {"title": "x"}, expect={"status": "editable"})


@pytest.mark.asyncio
async def test_update_version_guard_rejects_older_and_accepts_equal(conn, world) -> None:
    newer = datetime(2026, 3, 1, tzinfo=timezone.utc)
    older = datetime(2026, 2, 1, tzinfo=timezone.utc)

    first = await store.update(
        conn,
        catalog.ORGANIZATION,
        {"id": "org_planet"},
        {"stripe_account_enabled": True},
        version=VersionGuard("stripe_event_at", newer),
    )
    assert first.stripe_account_enabled is True
    assert first.stripe_event_at == newer

    stale = await store.update(
        conn,
        catalog.ORGANIZATION,
        {"id": "org_planet"},
        {"stripe_account_enabled": False},
        version=VersionGuard("stripe_event_at", older),
    )
    assert stale is None

    replay = await store.update(
        conn,
        catalog.ORGANIZATION,
        {"id": "org_planet"},
        {"stripe_account_enabled": True},
        version=VersionGuard("stripe_event_at", newer),
    )
    assert replay is not None
    assert replay.stripe_account_enabled is True


@pytest.mark.asyncio
async def test_upsert_monotonic_column_never_regresses(conn, fake_db, world) -> None:
    fake_db.seed("bundles", id="bdl_1", name="All access", organization="org_planet")
    fake_db.seed("prices", id="prc_1", amount=500, currency="usd", bundle="bdl_1")
    late = datetime(2026, 6, 1, tzinfo=timezone.utc)
    early = datetime(2026, 5, 1, tzinfo=timezone.utc)

    fields = {
        "stripe_subscription_id": "sub_s1",
        "status": "active",
        "user": "usr_writer",
        "price": "prc_1",
        "cancel_at_period_end": False,
        "deleted": False,
    }
    await store.upsert(conn, catalog.SUBSCRIPTION, ("stripe_subscription_id",), {**fields, "current_period_end": late}, monotonic=("current_period_end",))
    saved = await store.upsert(
        conn,
        catalog.SUBSCRIPTION,
        ("stripe_subscription_id",),
        {**fields, "status": "past_due", "current_period_end": early},
        monotonic=("current_period_end",),
    )

    assert saved.status == "past_due"
    assert saved.current_period_end == late
    assert len(fake_db.rows("subscriptions")) == 1


@pytest.mark.asyncio
async def test_upsert_requires_declared_conflict_keys(conn) -> None:
    with pytest.raises(errors.ImplementationError):
        await store.upsert(conn, catalog.SUBSCRIPTION, ("status",), {"status": "active"})


@pytest.mark.asyncio
async def test_delete_returns_row_once(conn, world) -> None:
    first = await store.delete(conn, catalog.AUTHOR, {"id": "aut_wren"})
    second = await store.delete(conn, catalog.AUTHOR, {"id": "aut_wren"})

    assert first["id"] == "aut_wren"
    assert second is None


@pytest.mark.asyncio
async def test_retrieve_many_keeps_order_and_skips_missing(conn, world) -> None:
    users = await store.retrieve_many(conn, catalog.USER, ["usr_writer", "usr_missing", "usr_owner", "usr_writer"])

    assert [user.id for user in users] == ["usr_writer", "usr_owner"]


@pytest.mark.asyncio
async def test_list_by_foreign_key_uses_descriptor_order(conn, fake_db, world) -> None:
    fake_db.seed("article_drafts", id="dft_old", title="Old", content={}, author="aut_wren")
    fake_db.seed("article_drafts", id="dft_new", title="New", content={}, author="aut_wren")

    drafts = await store.list_by_foreign_key(conn, catalog.ARTICLE_DRAFT, "author", "aut_wren")

    assert [draft.id for draft in drafts] == ["dft_new", "dft_old"]


@pytest.mark.asyncio
async def test_update_and_upsert_return_entities(conn, world) -> None:
    renamed = await store.update(conn, catalog.ORGANIZATION, {"id": "org_planet"}, {"name": "Planet Group"})
    saved = await store.upsert(
        conn,
        catalog.PAYMENT_METHOD,
        ("stripe_id",),
        {"stripe_id": "pm_1", "type": "card", "data": {}, "user": "usr_writer", "detached": False},
    )

    assert isinstance(renamed, Organization)
    assert renamed.name == "Planet Group"
    assert isinstance(saved, PaymentMethod)
    assert saved.id.startswith("pmt_")


@pytest.mark.asyncio
async def test_list_below_skips_rows_at_or_above_the_bound(conn, fake_db) -> None:
    for position, attempts in enumerate([5, 0, 7, 2]):
        fake_db.seed("search_outbox", id=f"obx_{position}", index="articles", document_id="art_1", action="put", attempts=attempts)

    entries = await store.list_below(conn, catalog.SEARCH_OUTBOX, "attempts", 5, limit=10)

    assert [entry.id for entry in entries] == ["obx_1", "obx_3"]
    with pytest.raises(errors.ImplementationError):
        await store.list_below(conn, catalog.SEARCH_OUTBOX, "index", "articles", limit=10)
