from __future__ import annotations

import asyncio

import pytest

from core import errors
from drafts import service as drafts
from sync import outbox, publish

CONTENT = {
    "type": "doc",
    "content": [{"type": "paragraph", "content": [{"type": "text", "text": " ".join(["word"] * 300)}]}],
}


async def _pending_draft(conn, world, *, sources=("https://cited.example/1", "https://cited.example/2")):
    draft = await drafts.create_draft(
        conn,
        world.writer,
        author_id=world.author_id,
        title="Storm over Metropolis",
        content=CONTENT,
        sources=list(sources),
    )
    await drafts.submit_for_verification(conn, world.writer, draft.id)
    return draft


@pytest.mark.asyncio
async def test_publish_creates_article_and_indexes_after_drain(conn, fake_db, world, search_index) -> None:
    draft = await _pending_draft(conn, world)

    article = await publish.publish_draft(conn, draft.id)

    assert article.title == "Storm over Metropolis"
    assert article.reading_time == 2
    assert fake_db.rows("article_drafts") == []
    assert fake_db.rows("draft_sources") == []
    assert sorted(row["url"] for row in fake_db.rows("sources")) == [
        "https://cited.example/1",
        "https://cited.example/2",
    ]
    # Nothing reaches the index before the outbox is drained.
    assert search_index.calls == []
    assert len(fake_db.rows("search_outbox")) == 1

    stats = await outbox.drain(conn)

    assert stats.applied == 1
    assert fake_db.rows("search_outbox") == []
    document = search_index.document(outbox.ARTICLES_INDEX, article.id)
    assert document["title"] == "Storm over Metropolis"
    assert document["author"] == world.author_id
    assert document["content"].startswith("word word")


@pytest.mark.asyncio
async def test_index_outage_keeps_entry_until_a_later_drain(conn, fake_db, world, search_index) -> None:
    draft = await _pending_draft(conn, world)
    article = await publish.publish_draft(conn, draft.id)
    search_index.failing = True

    stats = await outbox.drain(conn)

    assert stats.failed == 1
    (entry,) = fake_db.rows("search_outbox")
    assert entry["attempts"] == 1
    assert "503" in entry["last_error"]
    # The relational write committed regardless.
    assert [row["id"] for row in fake_db.rows("articles")] == [article.id]

    search_index.failing = False
    stats = await outbox.drain(conn)

    assert stats.applied == 1
    assert fake_db.rows("search_outbox") == []
    assert search_index.document(outbox.ARTICLES_INDEX, article.id) is not None


@pytest.mark.asyncio
async def test_exhausted_entries_are_left_for_inspection(conn, fake_db, world, search_index) -> None:
    fake_db.seed(
        "search_outbox",
        id="obx_stuck",
        index=outbox.ARTICLES_INDEX,
        document_id="art_x",
        action=outbox.ACTION_PUT,
        document={"title": "x"},
        attempts=3,
    )

    stats = await outbox.drain(conn, attempts_limit=3)

    assert (stats.applied, stats.failed, stats.deferred) == (0, 0, 0)
    assert search_index.calls == []
    assert len(fake_db.rows("search_outbox")) == 1


@pytest.mark.asyncio
async def test_exhausted_entries_do_not_hold_back_newer_ones(conn, fake_db, search_index) -> None:
    for n in range(3):
        fake_db.seed(
            "search_outbox",
            id=f"obx_dead_{n}",
            index=outbox.ARTICLES_INDEX,
            document_id=f"art_dead_{n}",
            action=outbox.ACTION_PUT,
            document={"title": "dead"},
            attempts=5,
        )
    await outbox.enqueue_put(conn, outbox.ARTICLES_INDEX, "art_live", {"title": "live"})

    stats = await outbox.drain(conn, limit=3, attempts_limit=5)

    assert stats.applied == 1
    assert search_index.document(outbox.ARTICLES_INDEX, "art_live") == {"title": "live"}
    assert sorted(row["id"] for row in fake_db.rows("search_outbox")) == ["obx_dead_0", "obx_dead_1", "obx_dead_2"]


@pytest.mark.asyncio
async def test_small_batches_are_read_until_the_outbox_is_empty(conn, fake_db, search_index) -> None:
    for n in range(5):
        await outbox.enqueue_put(conn, outbox.ARTICLES_INDEX, f"art_{n}", {"title": str(n)})

    stats = await outbox.drain(conn, limit=2)

    assert stats.applied == 5
    assert fake_db.rows("search_outbox") == []


@pytest.mark.asyncio
async def test_failing_head_does_not_hide_later_entries(conn, fake_db, search_index, monkeypatch) -> None:
    await outbox.enqueue_put(conn, outbox.ARTICLES_INDEX, "art_a", {"title": "a"})
    await outbox.enqueue_put(conn, outbox.ARTICLES_INDEX, "art_b", {"title": "b"})
    real_put = search_index.put_document

    async def flaky_put(index, document_id, document, **kwargs):
        if document_id == "art_a":
            raise outbox.search.SearchIndexError("Elasticsearch put request failed: 500")
        await real_put(index, document_id, document, **kwargs)

    monkeypatch.setattr(outbox.search, "put_document", flaky_put)

    stats = await outbox.drain(conn, limit=1)

    assert (stats.applied, stats.failed) == (1, 1)
    assert search_index.document(outbox.ARTICLES_INDEX, "art_b") == {"title": "b"}
    assert [row["document_id"] for row in fake_db.rows("search_outbox")] == ["art_a"]


@pytest.mark.asyncio
async def test_overlapping_drains_leave_the_newest_document(fake_db, search_index, monkeypatch) -> None:
    first, second = fake_db.connection(), fake_db.connection()
    await outbox.enqueue_put(first, outbox.ARTICLES_INDEX, "art_1", {"title": "v1"})

    entered = asyncio.Event()
    release = asyncio.Event()
    real_put = search_index.put_document

    async def slow_put(index, document_id, document, **kwargs):
        if document["title"] == "v1":
            entered.set()
            await release.wait()
        await real_put(index, document_id, document, **kwargs)

    monkeypatch.setattr(outbox.search, "put_document", slow_put)

    running = asyncio.create_task(outbox.drain(first))
    await entered.wait()
    # A republish lands while the first drain is still writing v1.
    await outbox.enqueue_put(second, outbox.ARTICLES_INDEX, "art_1", {"title": "v2"})
    overlapping = await outbox.drain(second)
    release.set()
    stats = await running

    assert overlapping.busy is True
    assert overlapping.applied == 0
    assert stats.applied == 2
    assert search_index.document(outbox.ARTICLES_INDEX, "art_1") == {"title": "v2"}
    assert fake_db.rows("search_outbox") == []
    assert fake_db.advisory_locks == {}


@pytest.mark.asyncio
async def test_failure_defers_later_entries_for_same_document(conn, fake_db, world, search_index, monkeypatch) -> None:
    for entry_id, document_id, action in (
        ("obx_1", "art_a", outbox.ACTION_PUT),
        ("obx_2", "art_b", outbox.ACTION_PUT),
        ("obx_3", "art_a", outbox.ACTION_DELETE),
    ):
        fake_db.seed(
            "search_outbox",
            id=entry_id,
            index=outbox.ARTICLES_INDEX,
            document_id=document_id,
            action=action,
            document={"title": document_id} if action == outbox.ACTION_PUT else None,
        )

    real_put = search_index.put_document

    async def flaky_put(index, document_id, document, **kwargs):
        if document_id == "art_a":
            raise outbox.search.SearchIndexError("Elasticsearch put request failed: 500")
        await real_put(index, document_id, document, **kwargs)

    monkeypatch.setattr(outbox.search, "put_document", flaky_put)

    stats = await outbox.drain(conn)

    assert (stats.applied, stats.failed, stats.deferred) == (1, 1, 1)
    # The delete must not overtake the failed put of the same document.
    assert ("delete", outbox.ARTICLES_INDEX, "art_a") not in search_index.calls
    assert [row["id"] for row in fake_db.rows("search_outbox")] == ["obx_1", "obx_3"]


@pytest.mark.asyncio
async def test_publish_rolls_back_when_a_statement_fails(conn, fake_db, world, search_index) -> None:
    draft = await _pending_draft(conn, world)
    fake_db.fail_when('INSERT INTO "sources"')

    with pytest.raises(RuntimeError):
        await publish.publish_draft(conn, draft.id)

    assert fake_db.rows("articles") == []
    assert fake_db.rows("search_outbox") == []
    (row,) = fake_db.rows("article_drafts")
    assert row["status"] == publish.STATUS_PENDING
    assert len(fake_db.rows("draft_sources")) == 2


@pytest.mark.asyncio
async def test_editable_draft_cannot_be_published(conn, fake_db, world) -> None:
    draft = await drafts.create_draft(conn, world.writer, author_id=world.author_id, title="WIP", content=CONTENT)

    with pytest.raises(errors.Forbidden):
        await publish.publish_draft(conn, draft.id)
    assert fake_db.rows("articles") == []
    with pytest.raises(errors.NotFound):
        await publish.publish_draft(conn, "dft_missing")


@pytest.mark.asyncio
async def test_publishing_an_edit_updates_the_article_in_place(conn, fake_db, world, search_index) -> None:
    first = await publish.publish_draft(conn, (await _pending_draft(conn, world)).id)
    edit = await drafts.create_draft_from_article(conn, world.writer, first.id)
    await drafts.update_draft(conn, world.writer, edit.id, title="Storm update", sources=["https://cited.example/3"])
    await drafts.submit_for_verification(conn, world.writer, edit.id)

    second = await publish.publish_draft(conn, edit.id)

    assert second.id == first.id
    assert second.title == "Storm update"
    assert [row["id"] for row in fake_db.rows("articles")] == [first.id]
    assert [row["url"] for row in fake_db.rows("sources")] == ["https://cited.example/3"]

    await outbox.drain(conn)
    assert search_index.document(outbox.ARTICLES_INDEX, first.id)["title"] == "Storm update"


@pytest.mark.asyncio
async def test_delete_article_queues_index_removal(conn, fake_db, world, search_index) -> None:
    article = await publish.publish_draft(conn, (await _pending_draft(conn, world)).id)
    await outbox.drain(conn)

    await publish.delete_article(conn, article.id)

    assert fake_db.rows("articles") == []
    assert fake_db.rows("sources") == []
    await outbox.drain(conn)
    assert search_index.document(outbox.ARTICLES_INDEX, article.id) is None
    with pytest.raises(errors.NotFound):
        await publish.delete_article(conn, article.id)
