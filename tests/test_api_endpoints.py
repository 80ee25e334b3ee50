"""
Tests for the keywords, posts, filter-context and cron endpoints.
"""
import pytest
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from feedwatch.main import create_app

POSTS = [
    {"id": "a1", "title": "Slack outage", "selftext": "down for everyone"},
    {"id": "b2", "title": "Slack pricing", "selftext": ""},
]


@pytest.fixture
def client(installed_store):
    return TestClient(create_app(), raise_server_exceptions=False)


# ---------------------------------------------------------------------------
# /api/keywords
# ---------------------------------------------------------------------------


class TestKeywordsApi:
    def test_add_list_delete(self, client):
        resp = client.post("/api/keywords", json={"keyword": "Slack"})
        assert resp.status_code == 201
        assert resp.json()["keywords"] == ["slack"]

        assert client.get("/api/keywords").json() == {"keywords": ["slack"]}

        resp = client.delete("/api/keywords", params={"keyword": "slack"})
        assert resp.status_code == 200
        assert resp.json()["keywords"] == []

    def test_duplicate_is_409(self, client):
        client.post("/api/keywords", json={"keyword": "slack"})
        assert client.post("/api/keywords", json={"keyword": "SLACK"}).status_code == 409

    @pytest.mark.parametrize("bad", [{}, {"keyword": ""}, {"keyword": 5}])
    def test_invalid_is_400(self, client, bad):
        assert client.post("/api/keywords", json=bad).status_code == 400

    def test_delete_missing_is_404(self, client):
        assert client.delete("/api/keywords", params={"keyword": "nope"}).status_code == 404

    def test_delete_without_param_is_400(self, client):
        assert client.delete("/api/keywords").status_code == 400


# ---------------------------------------------------------------------------
# /api/filter-context
# ---------------------------------------------------------------------------


class TestFilterContextApi:
    async def _seed_posts(self, store):
        await store.set("posts:slack:1000", {"posts": [dict(p, created_utc=1) for p in POSTS]})

    async def test_queue_with_context_marks_posts(self, client, installed_store):
        await self._seed_posts(installed_store)

        resp = client.post(
            "/api/filter-context",
            json={"keyword": "slack", "context": "outages", "posts": POSTS},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["count"] == 2
        assert body["queue_items"][0]["keyword"] == "slack (context: outages)"
        assert body["queue_items"][0]["body"] == "down for everyone"
        batch = await installed_store.get("posts:slack:1000")
        assert all(p["filter_status"] == "queued" for p in batch["posts"])

    def test_missing_context_is_400(self, client):
        resp = client.post("/api/filter-context", json={"keyword": "slack", "posts": POSTS})
        assert resp.status_code == 400

    def test_status_lifecycle(self, client):
        assert client.get("/api/filter-context", params={"post_id": "a1"}).json()["status"] == "not_queued"

        client.post(
            "/api/filter-context",
            json={"keyword": "slack", "context": "outages", "posts": POSTS[:1]},
        )
        assert client.get("/api/filter-context", params={"post_id": "a1"}).json()["status"] == "pending"

        claimed = client.get("/api/filter-queue/next", params={"client_id": "w1"}).json()
        client.post(
            "/api/filter-queue/result",
            json={
                "key": claimed["key"],
                "result": {"relevant": True, "reasoning": "outage", "confidence": 0.8},
                "client_id": "w1",
            },
        )
        body = client.get("/api/filter-context", params={"post_id": "a1"}).json()
        assert body["status"] == "completed"
        assert body["relevant"] is True
        assert body["confidence"] == 0.8

    def test_without_post_id_returns_stats(self, client):
        client.post("/api/filter-context", json={"keyword": "slack", "context": "c", "posts": POSTS})
        assert client.get("/api/filter-context").json()["stats"]["pending"] == 2


# ---------------------------------------------------------------------------
# /api/posts and /api/clear-filter
# ---------------------------------------------------------------------------


class TestPostsApi:
    async def test_lists_posts(self, client, installed_store):
        await installed_store.set("posts:slack:1", {"posts": [
            {"id": "x", "created_utc": 1},
            {"id": "y", "created_utc": 2},
        ]})
        body = client.get("/api/posts", params={"keyword": "slack"}).json()
        assert body["count"] == 2
        assert body["keyword"] == "slack"
        assert [p["id"] for p in body["posts"]] == ["y", "x"]

    def test_all_keyword_label(self, client):
        assert client.get("/api/posts").json() == {"count": 0, "keyword": "all", "posts": []}

    async def test_clear_filter(self, client, installed_store):
        await installed_store.set("posts:slack:1", {"posts": [
            {"id": "x", "filter_context": "c", "filter_status": "queued"},
        ]})
        resp = client.post("/api/clear-filter", json={"keyword": "slack", "postIds": ["x"]})
        assert resp.json() == {"cleared_count": 1, "keyword": "slack"}


# ---------------------------------------------------------------------------
# /api/cron/fetch-posts
# ---------------------------------------------------------------------------


class TestCronApi:
    def test_requires_secret_when_configured(self, client, test_settings):
        test_settings.cron_secret = "cron-s3cret"
        with patch("feedwatch.api.deps.get_settings", return_value=test_settings):
            assert client.get("/api/cron/fetch-posts").status_code == 401

    def test_runs_fetch_for_all_keywords(self, client, test_settings):
        summary = {"keywords": ["slack"], "total_new_posts": 3, "results": {}}
        with (
            patch("feedwatch.api.cron.get_settings", return_value=test_settings),
            patch("feedwatch.api.cron.fetch_all_keywords", new_callable=AsyncMock, return_value=summary) as fetch,
        ):
            resp = client.get("/api/cron/fetch-posts")

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["total_new_posts"] == 3
        assert fetch.await_args.args[2] == test_settings.default_keyword
