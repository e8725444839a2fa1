"""Tests for the digest endpoints."""

import json

import pytest
import pytest_asyncio
from httpx import AsyncClient

from tests.fakes import make_entry


def sse_payloads(body: str) -> list[dict]:
    return [
        json.loads(line.removeprefix("data: "))
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


@pytest_asyncio.fixture
async def configured(services, alice, ai_config, fake_miniflux):
    """Alice with a usable AI configuration and two unread articles."""
    await services.preferences.save(alice, {"ai_config": ai_config})
    fake_miniflux.entries = [make_entry(1, category_id=10), make_entry(2, category_id=20)]
    return alice


class TestGenerate:
    """Tests for POST /api/digest/generate."""

    async def test_json_response(self, client: AsyncClient, auth_headers: dict, configured):
        response = await client.post(
            "/api/digest/generate",
            json={"scope": "group", "groupId": 10, "targetLang": "English"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        digest = data["digest"]
        assert digest["scope"] == "group"
        assert digest["scopeId"] == 10
        assert digest["scopeName"] == "Tech"
        assert digest["articleCount"] == 1
        assert digest["isRead"] is False
        assert digest["content"] == "## Digest\n\nSummary body"

    async def test_default_language_is_chinese(
        self, client: AsyncClient, auth_headers: dict, configured, fake_llm
    ):
        response = await client.post("/api/digest/generate", json={}, headers=auth_headers)

        assert response.json()["digest"]["scopeName"] == "全部订阅"
        prompt = fake_llm.last_body()["messages"][0]["content"]
        assert "简体中文" in prompt

    async def test_custom_prompt(
        self, client: AsyncClient, auth_headers: dict, configured, fake_llm
    ):
        await client.post(
            "/api/digest/generate",
            json={"prompt": "Summarize:", "targetLang": "English"},
            headers=auth_headers,
        )

        prompt = fake_llm.last_body()["messages"][0]["content"]
        assert prompt.startswith("Summarize:\n\n## Article List (Total 2 articles):\n\n")

    async def test_requires_ai_config(self, client: AsyncClient, auth_headers: dict):
        response = await client.post("/api/digest/generate", json={}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["detail"] == "AI service not configured"

    async def test_stream_without_ai_config(self, client: AsyncClient, auth_headers: dict):
        response = await client.post(
            "/api/digest/generate?stream=true", json={}, headers=auth_headers
        )

        assert response.status_code == 200
        assert sse_payloads(response.text) == [
            {"type": "error", "data": {"error": "AI service not configured"}}
        ]

    async def test_stream_events(self, client: AsyncClient, auth_headers: dict, configured):
        response = await client.post(
            "/api/digest/generate?stream=true",
            json={"targetLang": "English"},
            headers=auth_headers,
        )

        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        status, result = sse_payloads(response.text)
        assert status == {"type": "status", "message": "generating"}
        assert result["type"] == "result"
        assert result["data"]["success"] is True
        assert result["data"]["digest"]["articleCount"] == 2

    async def test_accept_header_selects_stream(
        self, client: AsyncClient, auth_headers: dict, configured
    ):
        response = await client.post(
            "/api/digest/generate",
            json={},
            headers={**auth_headers, "Accept": "text/event-stream"},
        )
        assert [p["type"] for p in sse_payloads(response.text)] == ["status", "result"]

    async def test_stream_reports_failure(
        self, client: AsyncClient, auth_headers: dict, configured, fake_llm
    ):
        fake_llm.status = 500

        response = await client.post(
            "/api/digest/generate?stream=true", json={}, headers=auth_headers
        )

        events = sse_payloads(response.text)
        assert events[-1] == {"type": "error", "data": {"error": "model overloaded"}}

    async def test_llm_failure_maps_to_bad_gateway(
        self, client: AsyncClient, auth_headers: dict, configured, fake_llm
    ):
        fake_llm.status = 500

        response = await client.post("/api/digest/generate", json={}, headers=auth_headers)

        assert response.status_code == 502
        assert response.json() == {"error": "model overloaded", "status": 500}

    async def test_empty_window(self, client: AsyncClient, auth_headers: dict, configured):
        response = await client.post(
            "/api/digest/generate",
            json={"scope": "feed", "feedId": 42, "targetLang": "English"},
            headers=auth_headers,
        )

        digest = response.json()["digest"]
        assert digest["id"] is None
        assert digest["articleCount"] == 0
        assert digest["content"] == "No unread articles in the past 12 hours."


class TestListAndRecords:
    """Listing, fetching, read state and deletion."""

    async def _generate(self, client: AsyncClient, auth_headers: dict) -> dict:
        response = await client.post(
            "/api/digest/generate", json={"targetLang": "English"}, headers=auth_headers
        )
        return response.json()["digest"]

    async def test_list_pins_todays_unread(
        self, client: AsyncClient, auth_headers: dict, configured
    ):
        digest = await self._generate(client, auth_headers)

        response = await client.get("/api/digest/list", headers=auth_headers)

        data = response.json()
        assert data["success"] is True
        [entry] = data["digests"]["pinned"]
        assert data["digests"]["normal"] == []
        assert entry["id"] == digest["id"]
        assert entry["type"] == "digest"
        assert entry["author"] == "AI"
        assert entry["is_read"] == 0
        assert entry["digest_scope"] == "all"

    async def test_read_state_moves_out_of_pinned(
        self, client: AsyncClient, auth_headers: dict, configured
    ):
        digest = await self._generate(client, auth_headers)

        read = await client.post(f"/api/digest/{digest['id']}/read", headers=auth_headers)
        listed = (await client.get("/api/digest/list", headers=auth_headers)).json()

        assert read.json() == {"success": True}
        assert listed["digests"]["pinned"] == []
        assert listed["digests"]["normal"][0]["is_read"] == 1

        unread_only = await client.get(
            "/api/digest/list", params={"unreadOnly": "true"}, headers=auth_headers
        )
        assert unread_only.json()["digests"] == {"pinned": [], "normal": []}

        await client.delete(f"/api/digest/{digest['id']}/read", headers=auth_headers)
        fetched = await client.get(f"/api/digest/{digest['id']}", headers=auth_headers)
        assert fetched.json()["digest"]["isRead"] is False

    async def test_delete(self, client: AsyncClient, auth_headers: dict, configured):
        digest = await self._generate(client, auth_headers)

        deleted = await client.delete(f"/api/digest/{digest['id']}", headers=auth_headers)
        fetched = await client.get(f"/api/digest/{digest['id']}", headers=auth_headers)

        assert deleted.json() == {"success": True}
        assert fetched.status_code == 404
        assert fetched.json()["detail"] == "Digest not found"

    @pytest.mark.parametrize(
        ("method", "path"),
        [
            ("GET", "/api/digest/digest_1717200000000_abc"),
            ("POST", "/api/digest/digest_1717200000000_abc/read"),
            ("DELETE", "/api/digest/digest_1717200000000_abc/read"),
            ("DELETE", "/api/digest/digest_1717200000000_abc"),
        ],
    )
    async def test_unknown_digest(self, client: AsyncClient, auth_headers: dict, method, path):
        response = await client.request(method, path, headers=auth_headers)
        assert response.status_code == 404

    async def test_invalid_scope_id(self, client: AsyncClient, auth_headers: dict):
        response = await client.get(
            "/api/digest/list", params={"scope": "group", "scopeId": "abc"}, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid scopeId"

    async def test_digests_are_per_user(
        self, client: AsyncClient, auth_headers: dict, configured, services
    ):
        digest = await self._generate(client, auth_headers)
        assert await services.digests.get("Ym9i", digest["id"]) is None


class TestPreview:
    async def test_preview(self, client: AsyncClient, auth_headers: dict, configured):
        response = await client.get(
            "/api/digest/preview", params={"scope": "group", "groupId": 20}, headers=auth_headers
        )

        preview = response.json()["preview"]
        assert preview["articleCount"] == 1
        assert preview["hours"] == 12
        assert preview["articles"][0]["id"] == 2
        assert preview["articles"][0]["feedTitle"] == "Tech Feed"


class TestParseCron:
    """Tests for POST /api/digest/parse-cron."""

    async def test_next_runs(self, client: AsyncClient, auth_headers: dict):
        response = await client.post(
            "/api/digest/parse-cron", json={"expression": "0 9 * * *"}, headers=auth_headers
        )

        runs = response.json()["nextRuns"]
        assert len(runs) == 5
        assert all(run.endswith(" 09:00:00") for run in runs)
        assert runs == sorted(runs)

    @pytest.mark.parametrize(
        ("body", "detail"),
        [
            ({}, "Cron expression is required"),
            ({"expression": "61 * * * *"}, "Invalid cron expression"),
            ({"expression": "* * *"}, "Invalid cron expression"),
        ],
    )
    async def test_rejects(self, client: AsyncClient, auth_headers: dict, body, detail):
        response = await client.post("/api/digest/parse-cron", json=body, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["detail"] == detail


class TestManualTrigger:
    """Tests for POST /api/digest/manual-trigger."""

    async def test_runs_task_and_pushes(
        self,
        client: AsyncClient,
        auth_headers: dict,
        services,
        alice,
        ai_config,
        fake_push,
        fake_miniflux,
    ):
        await services.preferences.save(
            alice,
            {
                "ai_config": ai_config,
                "push_settings": {"url": "https://hook.test", "body": '{"t": "{{title}}"}'},
            },
        )
        fake_miniflux.entries = [make_entry(1, category_id=10), make_entry(2, category_id=20)]

        response = await client.post(
            "/api/digest/manual-trigger",
            json={
                "id": "t1",
                "title": "Evening",
                "scopes": ["group_10", "group_20"],
                "enablePush": True,
            },
            headers=auth_headers,
        )

        assert response.status_code == 200
        digest = response.json()["digest"]
        assert digest["scope"] == "group"
        assert digest["scopeName"] == "Tech, Science"
        assert digest["scopeId"] is None
        assert digest["articleCount"] == 2
        assert digest["hours"] == 24
        assert fake_push.requests[0].content == b'{"t": "Evening"}'

    async def test_rendered_title(self, client: AsyncClient, auth_headers: dict, configured):
        response = await client.post(
            "/api/digest/manual-trigger",
            json={"digestTitle": "Digest {{yyyy}}", "scopes": ["all"]},
            headers=auth_headers,
        )

        digest = response.json()["digest"]
        assert digest["title"].startswith("Digest 20")
        assert digest["scope"] == "all"

    async def test_requires_ai_config(self, client: AsyncClient, auth_headers: dict):
        response = await client.post(
            "/api/digest/manual-trigger", json={"scopes": ["all"]}, headers=auth_headers
        )
        assert response.status_code == 400
