"""Shared fixtures: an in-memory database seeded with a small publishing world."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from resources import catalog
from tests.fakes.fake_db import FakeDatabase
from tests.fakes.fake_search import FakeSearchIndex


def as_user(row: dict):
    return catalog.USER.factory(row, {})


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def conn(fake_db: FakeDatabase):
    return fake_db.connection()


@pytest.fixture
def search_index(monkeypatch) -> FakeSearchIndex:
    index = FakeSearchIndex()
    index.install(monkeypatch)
    return index


@pytest.fixture
def world(fake_db: FakeDatabase) -> SimpleNamespace:
    """Owner of an organization with one publisher, and a writer who is its author."""
    owner = fake_db.seed("users", id="usr_owner", full_name="Olive Owner", email="owner@example.com")
    writer = fake_db.seed(
        "users",
        id="usr_writer",
        full_name="Wren Writer",
        email="writer@example.com",
        stripe_customer_id="cus_writer",
    )
    admin = fake_db.seed("users", id="usr_admin", type="admin", full_name="Ada Admin", email="admin@example.com")
    stranger = fake_db.seed("users", id="usr_stranger", full_name=None, email="stranger@example.com")

    fake_db.seed("organizations", id="org_planet", name="Daily Planet Media", user="usr_owner")
    fake_db.seed(
        "publishers",
        id="pub_planet",
        name="Daily Planet",
        url="https://dailyplanet.example",
        organization="org_planet",
        dns_txt_value="nuntium-verification=abc",
    )
    fake_db.seed("authors", id="aut_wren", user="usr_writer", publisher="pub_planet")

    return SimpleNamespace(
        owner=as_user(owner),
        writer=as_user(writer),
        admin=as_user(admin),
        stranger=as_user(stranger),
        organization_id="org_planet",
        publisher_id="pub_planet",
        author_id="aut_wren",
    )
