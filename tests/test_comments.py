from __future__ import annotations

import pytest

from comments import service
from core import errors


@pytest.fixture
def article(fake_db, world) -> str:
    fake_db.seed("articles", id="art_1", title="Storm", content={}, author=world.author_id)
    fake_db.seed("articles", id="art_2", title="Sun", content={}, author=world.author_id)
    return "art_1"


@pytest.mark.asyncio
async def test_top_level_comments_and_replies_are_listed_apart(conn, world, article) -> None:
    first = await service.create_comment(conn, world.stranger, article, content=" First! ")
    reply = await service.create_comment(conn, world.owner, article, content="Welcome", parent=first.id)
    second = await service.create_comment(conn, world.owner, article, content="Second")

    assert first.content == "First!"
    assert reply.parent.id == first.id

    top_level = await service.list_article_comments(conn, article)
    assert [comment.id for comment in top_level] == [first.id, second.id]
    replies = await service.list_article_comments(conn, article, parent=first.id)
    assert [comment.id for comment in replies] == [reply.id]


@pytest.mark.asyncio
async def test_reply_must_stay_on_the_same_article(conn, fake_db, world, article) -> None:
    other = await service.create_comment(conn, world.owner, "art_2", content="Elsewhere")

    with pytest.raises(errors.ValidationError) as exc_info:
        await service.create_comment(conn, world.owner, article, content="Reply", parent=other.id)

    assert exc_info.value.errors[0]["field"] == "parent"
    assert len(fake_db.rows("comments")) == 1


@pytest.mark.asyncio
async def test_comment_on_missing_article_is_not_found(conn, world) -> None:
    with pytest.raises(errors.NotFound):
        await service.create_comment(conn, world.owner, "art_missing", content="Hello")
    with pytest.raises(errors.NotFound):
        await service.list_article_comments(conn, "art_missing")


@pytest.mark.asyncio
async def test_only_the_author_edits_and_admins_may_delete(conn, fake_db, world, article) -> None:
    comment = await service.create_comment(conn, world.stranger, article, content="Typo")

    with pytest.raises(errors.Forbidden):
        await service.update_comment(conn, world.admin, comment.id, content="Moderated")
    edited = await service.update_comment(conn, world.stranger, comment.id, content="Fixed")
    assert edited.content == "Fixed"
    assert edited.updated_at > edited.created_at

    with pytest.raises(errors.Forbidden):
        await service.delete_comment(conn, world.owner, comment.id)
    await service.delete_comment(conn, world.admin, comment.id)
    assert fake_db.rows("comments") == []
