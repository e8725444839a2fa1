"""
Pytest configuration and fixtures for fluxdigest tests.

Provides:
- Settings and services rooted in a temporary data directory
- In-memory fakes for the Miniflux API, the LLM endpoint and push webhooks
- Test client for API testing with a signed-in user
- A loguru sink for asserting on log events
"""

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from loguru import logger

from fluxdigest.config import AppConfig, Settings
from fluxdigest.core.security import create_access_token, user_handle
from fluxdigest.dependencies import Services
from fluxdigest.main import create_app
from tests.fakes import TEST_JWT_SECRET, FakeLLM, FakeMiniflux, FakePush

MINIFLUX_URL = "http://miniflux.test"


# ============================================================================
# Core fixtures
# ============================================================================


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def settings(data_dir: Path) -> Settings:
    return Settings(
        _env_file=None,
        data_dir=data_dir,
        jwt_secret=TEST_JWT_SECRET,
        miniflux_url=MINIFLUX_URL,
        miniflux_api_key="miniflux-token",
        miniflux_username="",
        miniflux_password="",
        scheduler_enabled=False,
    )


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    config = AppConfig(config_path=tmp_path / "absent.yml")
    config.upstream.retry_delay_seconds = 0
    return config


@pytest.fixture
def fake_miniflux() -> FakeMiniflux:
    return FakeMiniflux()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def fake_push() -> FakePush:
    return FakePush()


@pytest_asyncio.fixture
async def services(
    settings: Settings,
    app_config: AppConfig,
    fake_miniflux: FakeMiniflux,
    fake_llm: FakeLLM,
    fake_push: FakePush,
) -> AsyncGenerator[Services, None]:
    services = Services.build(
        settings,
        app_config,
        upstream_transport=fake_miniflux.transport,
        llm_transport=fake_llm.transport,
        push_transport=fake_push.transport,
    )
    yield services
    await services.scheduler.wait_idle()
    await services.aclose()


@pytest.fixture
def ai_config() -> dict[str, Any]:
    """Stored `ai_config` preference with a usable key."""
    return {
        "apiUrl": "https://llm.test/v1",
        "apiKey": "sk-test",
        "model": "test-model",
        "targetLang": "English",
    }


# ============================================================================
# API fixtures
# ============================================================================


@pytest_asyncio.fixture
async def client(services: Services) -> AsyncGenerator[AsyncClient, None]:
    """Async test client bound to the test services."""
    app = create_app(services)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def alice(services: Services) -> str:
    """A local account; returns its storage handle."""
    await services.users.create_user("alice", "wonderland")
    return user_handle("alice")


@pytest.fixture
def auth_headers(alice: str) -> dict[str, str]:
    token = create_access_token({"id": "alice", "username": "alice"}, TEST_JWT_SECRET, "1h")
    return {"Authorization": f"Bearer {token}"}


# ============================================================================
# Logging
# ============================================================================


@pytest.fixture
def log_events() -> list[dict[str, Any]]:
    """Captured loguru records as `{"event", "level", **extra}` dicts."""
    events: list[dict[str, Any]] = []

    def sink(message: Any) -> None:
        record = message.record
        events.append(
            {"event": record["message"], "level": record["level"].name, **record["extra"]}
        )

    handler_id = logger.add(sink, level="DEBUG")
    yield events
    logger.remove(handler_id)
