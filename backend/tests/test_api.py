"""
HTTP surface tests: routing, status-code mapping of domain errors and
moderator authentication. Services run against the SQLite/fakeredis
fixtures through dependency overrides.
"""
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from wikihub.api import deps
from wikihub.core.db import get_db
from wikihub.core.sources import Source
from wikihub.main import app
from wikihub.services import content, moderation, sync
from wikihub.services.rate_limit import SlidingWindowLimiter


@pytest.fixture
def client(db, cache, limiter, redis_client):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[deps.article_cache] = lambda: cache
    app.dependency_overrides[deps.search_limiter] = lambda: limiter
    app.dependency_overrides[deps.embedder] = lambda: None
    app.dependency_overrides[deps.redis_client] = lambda: redis_client
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setattr(deps.settings, "API_AUTH_KEY", "secret")
    return {"X-API-Key": "secret"}


class TestArticleRoutes:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_get_article(self, client, make_article):
        make_article(html="<p>Whip.</p>")

        resp = client.get("/api/articles/osrs/Abyssal_whip")

        assert resp.status_code == 200
        body = resp.json()
        assert body["html"] == "<p>Whip.</p>"
        assert body["source"] == "osrs"
        assert body["upstream_url"].endswith("/w/Abyssal_whip")

    def test_archive_slug_via_path_alias(self, client, make_article):
        make_article(Source.VINTAGE_MACHINERY, "pubs__manual_12", title="Manual 12")

        resp = client.get("/api/articles/machines/pubs__manual_12")

        assert resp.status_code == 200
        assert resp.json()["upstream_url"] == "https://vintagemachinery.org/pubs/manual_12"

    def test_missing_article_is_404_with_detail(self, client):
        resp = client.get("/api/articles/osrs/Nope")

        assert resp.status_code == 404
        assert resp.json()["code"] == "not_found"

    def test_unknown_source_is_404(self, client):
        assert client.get("/api/articles/runescape3/Whip").status_code == 404

    def test_list_articles(self, client, make_article):
        make_article(Source.OSRS, "Abyssal_whip")
        make_article(Source.NLAB, "functor")

        body = client.get("/api/articles", params={"source": "nlab"}).json()

        assert body["total_count"] == 1
        assert body["items"][0]["slug"] == "functor"

    def test_revisions_and_related(self, client, make_article):
        make_article()

        revisions = client.get("/api/articles/osrs/Abyssal_whip/revisions").json()
        related = client.get("/api/articles/osrs/Abyssal_whip/related").json()

        assert len(revisions) == 1
        assert related == []

    def test_sources(self, client):
        sources = {s["source"] for s in client.get("/api/sources").json()}
        assert sources == {s.value for s in Source}


class TestEditSubmission:

    def test_submit_creates_pending_edit(self, client, make_article):
        make_article()

        resp = client.post(
            "/api/articles/osrs/Abyssal_whip/edits",
            json={"suggested_content": "<p>Better.</p>", "reason": "typo"},
        )

        assert resp.status_code == 201
        assert resp.json()["status"] == "pending"

    def test_empty_content_is_422(self, client, make_article):
        make_article()

        resp = client.post("/api/articles/osrs/Abyssal_whip/edits", json={"suggested_content": " "})

        assert resp.status_code == 422
        assert resp.json()["code"] == "invalid_edit"

    def test_sixth_pending_edit_is_429(self, client, make_article):
        make_article()
        headers = {"X-Forwarded-For": "203.0.113.9"}
        for _ in range(5):
            client.post(
                "/api/articles/osrs/Abyssal_whip/edits",
                json={"suggested_content": "<p>x</p>"},
                headers=headers,
            )

        resp = client.post(
            "/api/articles/osrs/Abyssal_whip/edits",
            json={"suggested_content": "<p>x</p>"},
            headers=headers,
        )

        assert resp.status_code == 429


class TestSearchRoutes:

    def test_keyword_search(self, client, make_article):
        make_article(html="<p>A melee weapon.</p>")

        body = client.get("/api/search", params={"q": "melee", "mode": "keyword"}).json()

        assert body["total_count"] == 1
        assert body["results"][0]["slug"] == "Abyssal_whip"

    def test_hybrid_without_embedder_uses_keyword(self, client, make_article):
        make_article(html="<p>A melee weapon.</p>")

        body = client.post("/api/search", json={"query": "melee"}).json()

        assert [r["slug"] for r in body["results"]] == ["Abyssal_whip"]

    def test_rate_limited_search_is_429_with_retry_after(self, client, redis_client):
        app.dependency_overrides[deps.search_limiter] = lambda: SlidingWindowLimiter(
            redis_client, "search", limit=1, window_seconds=60
        )

        client.get("/api/search", params={"q": "whip"})
        resp = client.get("/api/search", params={"q": "whip"})

        assert resp.status_code == 429
        assert int(resp.headers["Retry-After"]) >= 1

    def test_suggest(self, client, make_article):
        make_article()
        body = client.get("/api/suggest", params={"q": "abys"}).json()
        assert body[0]["slug"] == "Abyssal_whip"

    def test_rate_limited_suggest_is_429(self, client, make_article, redis_client):
        make_article()
        app.dependency_overrides[deps.search_limiter] = lambda: SlidingWindowLimiter(
            redis_client, "search", limit=1, window_seconds=60
        )

        assert client.get("/api/suggest", params={"q": "abys"}).status_code == 200
        resp = client.get("/api/suggest", params={"q": "abys"})

        assert resp.status_code == 429
        assert int(resp.headers["Retry-After"]) >= 1


class TestModerationRoutes:

    def _edit(self, db, article):
        return moderation.create_pending_edit(db, article.id, "<p>Better.</p>", "203.0.113.1")

    def test_admin_requires_key_when_configured(self, client, api_key):
        assert client.get("/api/admin/edits").status_code == 401
        assert client.get("/api/admin/edits", headers={"X-API-Key": "wrong"}).status_code == 401
        assert client.get("/api/admin/edits", headers=api_key).status_code == 200

    def test_show_edit_with_diff(self, client, db, make_article, api_key):
        edit = self._edit(db, make_article(html="<p>Good.</p>"))

        body = client.get(f"/api/admin/edits/{edit.id}", headers=api_key).json()

        assert body["edit"]["submitter_ip"] == "203.0.113.1"
        assert {s["kind"] for s in body["spans"]} == {"equal", "deleted", "inserted"}

    def test_approve_then_reject_is_409(self, client, db, make_article, api_key):
        edit = self._edit(db, make_article())

        approved = client.post(f"/api/admin/edits/{edit.id}/approve", json={"note": "ok"}, headers=api_key)
        again = client.post(f"/api/admin/edits/{edit.id}/reject", headers=api_key)

        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"
        assert again.status_code == 409

    def test_counts(self, client, db, make_article, api_key):
        self._edit(db, make_article())
        assert client.get("/api/admin/edits/counts", headers=api_key).json()["pending"] == 1


class TestAdminRoutes:

    def test_status(self, client, make_article, api_key):
        make_article()

        body = client.get("/api/admin/status", headers=api_key).json()

        assert body["total_articles"] == 1

    def test_trigger_sync(self, client, api_key):
        with patch.object(sync.celery_app, "send_task", return_value=MagicMock(id="task-9")):
            resp = client.post("/api/admin/sync/osrs", json={"limit": 5}, headers=api_key)

        assert resp.status_code == 202
        assert resp.json() == {"task_id": "task-9", "source": "osrs"}

    def test_trigger_sync_while_running_is_409(self, client, redis_client, api_key):
        redis_client.set(sync.lock_key(Source.OSRS), "worker")

        resp = client.post("/api/admin/sync/osrs", headers=api_key)

        assert resp.status_code == 409
        assert resp.json()["code"] == "sync_already_running"

    def test_redirect_lifecycle(self, client, db, make_article, api_key):
        make_article()

        created = client.post(
            "/api/admin/redirects",
            json={"source": "osrs", "from_slug": "Whip", "to_slug": "Abyssal_whip"},
            headers=api_key,
        )
        followed = client.get("/api/articles/osrs/Whip")
        deleted = client.delete("/api/admin/redirects/osrs/Whip", headers=api_key)

        assert created.status_code == 201
        assert followed.json()["slug"] == "Abyssal_whip"
        assert deleted.status_code == 204
        assert content.count_redirects(db) == 0

    def test_self_redirect_is_400(self, client, api_key):
        resp = client.post(
            "/api/admin/redirects",
            json={"source": "osrs", "from_slug": "Whip", "to_slug": "Whip"},
            headers=api_key,
        )
        assert resp.status_code == 400

    def test_curated_cross_link(self, client, make_article, api_key):
        a = make_article(Source.OSRS, "Category")
        b = make_article(Source.NLAB, "category")

        resp = client.post(
            "/api/admin/cross-links",
            json={"source_article_id": a.id, "target_article_id": b.id, "relationship": "see_also"},
            headers=api_key,
        )

        assert resp.status_code == 201
        assert resp.json()["relationship"] == "see_also"
        assert resp.json()["auto_detected"] is False
