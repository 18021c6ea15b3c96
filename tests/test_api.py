from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from auth import security
from core import db
from sync import outbox

CONTENT = {"type": "doc", "content": [{"type": "text", "text": "Extra extra"}]}


@pytest.fixture
def client(fake_db, world, monkeypatch):
    from main import app

    drained = []

    async def fake_connection():
        yield fake_db.connection()

    async def record_drain() -> None:
        drained.append(True)

    monkeypatch.setattr(outbox, "drain_background", record_drain)
    app.dependency_overrides[db.connection] = fake_connection
    test_client = TestClient(app)
    test_client.drained = drained
    yield test_client
    app.dependency_overrides.clear()


def _login(fake_db, user_id: str) -> dict[str, str]:
    expires_at = datetime.now(timezone.utc) + timedelta(days=1)
    session_id = f"ses_{user_id}"
    fake_db.seed("sessions", id=session_id, user=user_id, expires_at=expires_at)
    token = security.build_access_token(session_id=session_id, user_id=user_id, expires_at=expires_at)
    return {"Authorization": f"Bearer {token}"}


def test_draft_lifecycle_over_http(client, fake_db) -> None:
    writer = _login(fake_db, "usr_writer")
    admin = _login(fake_db, "usr_admin")

    created = client.post(
        "/articles/drafts",
        json={"author": "aut_wren", "title": "Extra", "content": CONTENT, "sources": ["https://a.example"]},
        headers=writer,
    )
    assert created.status_code == 200
    draft_id = created.json()["id"]

    assert client.post(f"/articles/drafts/{draft_id}/verify", headers=writer).json()["status"] == "pending-verification"

    submitted = client.get("/articles/drafts/submitted", headers=admin)
    assert submitted.status_code == 200
    assert [draft["id"] for draft in submitted.json()["drafts"]] == [draft_id]

    assert client.post(f"/articles/drafts/{draft_id}/publish", headers=writer).status_code == 403

    published = client.post(f"/articles/drafts/{draft_id}/publish", headers=admin)
    assert published.status_code == 200
    article = published.json()
    assert article["title"] == "Extra"
    assert client.drained == [True]

    public = client.get(f"/articles/{article['id']}", params={"expand": "author"})
    assert public.status_code == 200
    assert public.json()["author"]["id"] == "aut_wren"
    assert public.json()["author"]["publisher"] == {"id": "pub_planet"}


def test_errors_use_detail_and_field_errors(client, fake_db) -> None:
    writer = _login(fake_db, "usr_writer")

    missing = client.get("/articles/art_missing")
    assert missing.status_code == 404
    assert missing.json() == {"detail": "article not found.", "errors": []}

    invalid = client.post(
        "/articles/drafts",
        json={"author": "aut_wren", "title": "Extra", "content": CONTENT, "sources": ["gopher://x"]},
        headers=writer,
    )
    assert invalid.status_code == 422
    assert invalid.json()["errors"] == [{"field": "sources.0", "error": "Must be an http(s) URL"}]

    bad_expand = client.get("/articles/art_missing", params={"expand": "author..user"})
    assert bad_expand.status_code == 422


def test_protected_routes_require_a_session(client, fake_db) -> None:
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer nonsense"}).status_code == 401

    writer = _login(fake_db, "usr_writer")
    me = client.get("/auth/me", headers=writer).json()
    assert me["user"]["email"] == "writer@example.com"
    assert client.post("/auth/logout", headers=writer).json() == {"ok": True}
    assert client.get("/auth/me", headers=writer).status_code == 401


def test_outbox_endpoints_are_admin_only(client, fake_db) -> None:
    writer = _login(fake_db, "usr_writer")
    admin = _login(fake_db, "usr_admin")

    assert client.get("/internal/search-outbox", headers=writer).status_code == 403
    listed = client.get("/internal/search-outbox", headers=admin)
    assert listed.status_code == 200
    assert listed.json() == {"entries": [], "count": 0}


def test_reports_route_is_not_taken_for_an_article(client, fake_db) -> None:
    fake_db.seed("articles", id="art_1", title="Storm", content={}, author="aut_wren")
    stranger = _login(fake_db, "usr_stranger")
    admin = _login(fake_db, "usr_admin")

    paid = client.post("/articles/art_1/reports", json={"reason": "Misleading"}, headers=stranger)
    assert paid.status_code == 402
    assert paid.json()["errors"] == []

    assert client.get("/articles/reports", headers=stranger).status_code == 403
    listed = client.get("/articles/reports", headers=admin)
    assert listed.status_code == 200
    assert listed.json() == {"reports": [], "count": 0}


def test_comment_and_like_over_http(client, fake_db) -> None:
    fake_db.seed("articles", id="art_1", title="Storm", content={}, author="aut_wren")
    stranger = _login(fake_db, "usr_stranger")

    created = client.post("/articles/art_1/comments", json={"content": "Great read"}, headers=stranger)
    assert created.status_code == 200
    comments = client.get("/articles/art_1/comments").json()
    assert [comment["id"] for comment in comments["comments"]] == [created.json()["id"]]

    assert client.post("/users/usr_stranger/likes", json={"article": "art_1"}, headers=stranger).status_code == 200
    likes = client.get("/users/usr_stranger/likes", headers=stranger).json()
    assert likes["likes"][0]["article"] == {"id": "art_1"}
    assert client.delete("/users/usr_stranger/likes/art_1", headers=stranger).json() == {"ok": True}
    assert client.delete("/users/usr_stranger/likes/art_1", headers=stranger).status_code == 404


def test_bundle_prices_are_public(client, fake_db) -> None:
    fake_db.seed("bundles", id="bdl_gold", name="Gold", organization="org_planet")
    fake_db.seed("prices", id="prc_gold", amount=900, currency="usd", bundle="bdl_gold")
    fake_db.seed("prices", id="prc_old", amount=500, currency="usd", bundle="bdl_gold", active=False)

    active = client.get("/bundles/bdl_gold/prices", params={"active": "true"})
    assert active.status_code == 200
    assert [price["id"] for price in active.json()["prices"]] == ["prc_gold"]
    assert client.get("/bundles/bdl_gold/prices").json()["count"] == 2
