"""Tests for the manual Miniflux configuration endpoints."""

import asyncio
import json
import socket
from pathlib import Path

import pytest
from httpx import AsyncClient

from fluxdigest.config import Settings
from tests.fakes import TEST_JWT_SECRET

VALID = {"url": "https://rss.example.org/", "username": "reader", "password": "s3cret"}


@pytest.fixture
def settings(data_dir: Path) -> Settings:
    """No Miniflux environment configuration."""
    return Settings(
        _env_file=None,
        data_dir=data_dir,
        jwt_secret=TEST_JWT_SECRET,
        miniflux_url="",
        miniflux_api_key="",
        miniflux_username="",
        miniflux_password="",
        scheduler_enabled=False,
    )


@pytest.fixture
def resolve_to(monkeypatch):
    """Point hostname resolution at a fixed address, or fail it with None."""

    def install(address: str | None) -> None:
        async def fake_getaddrinfo(host, port, *args, **kwargs):
            if address is None:
                raise socket.gaierror("Name or service not known")
            return [(socket.AF_INET, socket.SOCK_STREAM, 6, "", (address, 0))]

        monkeypatch.setattr(asyncio.get_running_loop(), "getaddrinfo", fake_getaddrinfo)

    return install


class TestGetConfig:
    async def test_unconfigured(self, client: AsyncClient, auth_headers: dict):
        response = await client.get("/api/auth/miniflux-config", headers=auth_headers)

        assert response.json() == {
            "configured": False,
            "url": None,
            "username": None,
            "authType": None,
            "source": None,
            "envConfigured": False,
        }

    async def test_status_not_configured(self, client: AsyncClient, auth_headers: dict):
        response = await client.get("/api/auth/miniflux-status", headers=auth_headers)
        assert response.json() == {"connected": False, "error": "Not configured"}

    async def test_digest_routes_need_miniflux(self, client: AsyncClient, auth_headers: dict):
        response = await client.get("/api/digest/preview", headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "Miniflux service is not configured"


class TestSaveConfig:
    """Tests for POST /api/auth/miniflux-config."""

    async def test_saves_basic_auth(
        self, client: AsyncClient, auth_headers: dict, resolve_to, services, fake_miniflux
    ):
        resolve_to("203.0.113.10")

        response = await client.post(
            "/api/auth/miniflux-config", json=VALID, headers=auth_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["config"]["url"] == "https://rss.example.org"
        assert data["config"]["source"] == "manual"
        assert data["config"]["authType"] == "basic"
        assert fake_miniflux.requests[-1].url.path == "/v1/me"

        stored = json.loads(services.miniflux_config.path.read_text())
        assert "password" not in stored
        assert stored["encryptedPassword"]["data"]

        client_after = await services.miniflux.get_client()
        assert client_after is not None

    async def test_saves_api_key(
        self, client: AsyncClient, auth_headers: dict, resolve_to, fake_miniflux
    ):
        resolve_to("203.0.113.10")

        response = await client.post(
            "/api/auth/miniflux-config",
            json={"url": "http://rss.example.org", "authType": "api_key", "apiKey": "tok"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["config"]["apiKey"] == "********"
        assert fake_miniflux.requests[-1].headers["X-Auth-Token"] == "tok"

    async def test_private_addresses_allowed(
        self, client: AsyncClient, auth_headers: dict, resolve_to
    ):
        resolve_to("192.168.1.20")
        response = await client.post(
            "/api/auth/miniflux-config", json=VALID, headers=auth_headers
        )
        assert response.status_code == 200

    @pytest.mark.parametrize(
        ("body", "detail"),
        [
            ({}, "Miniflux URL is required"),
            ({**VALID, "url": "ftp://rss.example.org"}, "Use http or https"),
            ({"url": "https://rss.example.org", "authType": "api_key"}, "API key is required"),
            (
                {"url": "https://rss.example.org", "username": "u"},
                "Username and password are required",
            ),
        ],
    )
    async def test_rejects_invalid_input(
        self, client: AsyncClient, auth_headers: dict, resolve_to, body, detail
    ):
        resolve_to("203.0.113.10")
        response = await client.post("/api/auth/miniflux-config", json=body, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["detail"] == detail

    async def test_rejects_link_local(self, client: AsyncClient, auth_headers: dict, resolve_to):
        resolve_to("169.254.169.254")
        response = await client.post(
            "/api/auth/miniflux-config", json=VALID, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Access to Link-Local addresses is forbidden"

    async def test_rejects_unresolvable(self, client: AsyncClient, auth_headers: dict, resolve_to):
        resolve_to(None)
        response = await client.post(
            "/api/auth/miniflux-config", json=VALID, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Cannot resolve hostname"

    async def test_failed_probe_saves_nothing(
        self, client: AsyncClient, auth_headers: dict, resolve_to, fake_miniflux, services
    ):
        resolve_to("203.0.113.10")
        fake_miniflux.fail_status = 401

        response = await client.post(
            "/api/auth/miniflux-config", json=VALID, headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["detail"].startswith("Connection test failed")
        assert not services.miniflux_config.path.exists()
