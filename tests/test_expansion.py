from __future__ import annotations

import pytest

from core import errors
from resources import catalog, store
from resources.entities import Resolved, Stub
from resources.expansion import MAX_EXPAND_PATHS, parse_expand


def test_parse_expand_splits_commas_and_drops_duplicates() -> None:
    query = parse_expand(["author,author.publisher", " author ", "", "article"])

    assert query == ("author", "author.publisher", "article")


@pytest.mark.parametrize("raw", ["author..publisher", "Author", "author;drop", "1author"])
def test_parse_expand_rejects_malformed_paths(raw: str) -> None:
    with pytest.raises(errors.ValidationError) as exc_info:
        parse_expand([raw])

    assert exc_info.value.errors[0]["field"] == "expand"


def test_parse_expand_limits_number_of_paths() -> None:
    too_many = [f"relation_{i}" for i in range(MAX_EXPAND_PATHS + 1)]

    with pytest.raises(errors.ValidationError):
        parse_expand(too_many)
    assert len(parse_expand(too_many[:MAX_EXPAND_PATHS])) == MAX_EXPAND_PATHS


@pytest.mark.asyncio
async def test_unrequested_relations_stay_stubs(conn, world) -> None:
    author = await store.retrieve(conn, catalog.AUTHOR, {"id": "aut_wren"})

    assert author.user == Stub(id="usr_writer")
    assert author.publisher == Stub(id="pub_planet")


@pytest.mark.asyncio
async def test_nested_path_resolves_each_level(conn, world) -> None:
    author = await store.retrieve(conn, catalog.AUTHOR, {"id": "aut_wren"}, ["publisher.organization"])

    assert isinstance(author.publisher, Resolved)
    publisher = author.publisher.entity
    assert isinstance(publisher.organization, Resolved)
    assert publisher.organization.entity.name == "Daily Planet Media"
    # Only the requested prefix is resolved at the nested level.
    assert publisher.organization.entity.user == Stub(id="usr_owner")
    assert author.user == Stub(id="usr_writer")


@pytest.mark.asyncio
async def test_null_foreign_key_resolves_to_none(conn, fake_db, world) -> None:
    fake_db.seed("article_drafts", id="dft_1", title="T", content={}, author="aut_wren", article=None)

    draft = await store.retrieve(conn, catalog.ARTICLE_DRAFT, {"id": "dft_1"}, ["article", "author"])

    assert draft.article is None
    assert isinstance(draft.author, Resolved)


@pytest.mark.asyncio
async def test_list_expansion_issues_one_query_per_relation(conn, fake_db, world) -> None:
    fake_db.seed("users", id="usr_second", full_name="Second", email="second@example.com")
    fake_db.seed("authors", id="aut_second", user="usr_second", publisher="pub_planet")
    fake_db.queries.clear()

    authors = await store.list_by_foreign_key(conn, catalog.AUTHOR, "publisher", "pub_planet", ["user", "publisher"])

    assert [author.user.entity.id for author in authors] == ["usr_writer", "usr_second"]
    assert all(author.publisher.entity.name == "Daily Planet" for author in authors)
    bulk = [query for query in fake_db.queries if "= ANY($1)" in query]
    assert len(fake_db.queries) == 3
    assert len(bulk) == 2


@pytest.mark.asyncio
async def test_dangling_reference_is_not_found(conn, fake_db, world) -> None:
    fake_db.seed("authors", id="aut_ghost", user="usr_gone", publisher="pub_planet")

    with pytest.raises(errors.NotFound):
        await store.retrieve(conn, catalog.AUTHOR, {"id": "aut_ghost"}, ["user"])
