"""Miniflux REST API client.

Usage:
    client = MinifluxClient("https://rss.example.com", api_key="...")
    entries = await client.get_entries({"status": "unread", "limit": 100})

Authentication uses `X-Auth-Token` when an API key is configured and HTTP
Basic otherwise. Transient failures (network errors, non-auth HTTP errors)
are retried up to three times with a 500 ms x attempt delay; 401/403 fail
immediately.
"""

from typing import Any

import httpx

from fluxdigest.config import UpstreamConfig
from fluxdigest.core.exceptions import UpstreamAuthError, UpstreamError
from fluxdigest.core.logging import get_logger
from fluxdigest.core.retry import RetryConfig, retry_with_backoff
from fluxdigest.stores.miniflux_config_store import MinifluxConfig, MinifluxConfigStore

logger = get_logger(__name__)


class MinifluxClient:
    def __init__(
        self,
        base_url: str,
        *,
        username: str | None = None,
        password: str | None = None,
        api_key: str | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.retry_config = RetryConfig(
            max_retries=max_retries,
            delay_base=retry_delay,
            retryable_exceptions=(UpstreamError,),
            give_up=lambda e: isinstance(e, UpstreamAuthError),
        )

        headers = {"Content-Type": "application/json"}
        auth = None
        if api_key:
            headers["X-Auth-Token"] = api_key
        else:
            auth = httpx.BasicAuth(username or "", password or "")

        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/v1",
            headers=headers,
            auth=auth,
            timeout=timeout,
            transport=transport,
        )
        self._in_flight = 0
        self._retired = False

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def closed(self) -> bool:
        return self._client.is_closed

    async def retire(self) -> None:
        """Close now, or after the last in-flight request when one is running."""
        self._retired = True
        if self._in_flight == 0:
            await self._client.aclose()

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Call an API endpoint and return the decoded body.

        Returns:
            Parsed JSON, the raw text for a non-JSON success body, or None for 204

        Raises:
            UpstreamAuthError: 401/403 from Miniflux
            UpstreamError: any other failure once retries are exhausted
        """
        if self._client.is_closed:
            raise UpstreamError("Miniflux client is closed")

        if params:
            params = {k: v for k, v in params.items() if v is not None}

        async def attempt() -> Any:
            try:
                response = await self._client.request(method, endpoint, params=params, json=json)
            except httpx.HTTPError as e:
                raise UpstreamError(f"Miniflux request failed: {e!r}") from e

            if response.status_code == 204:
                return None

            if response.is_success:
                try:
                    return response.json()
                except ValueError:
                    return response.text

            message = (
                f"Miniflux API Error: {response.status_code} "
                f"{response.reason_phrase} - {response.text}"
            )
            if response.status_code in (401, 403):
                raise UpstreamAuthError(message, response.status_code)
            raise UpstreamError(message, response.status_code)

        self._in_flight += 1
        try:
            return await retry_with_backoff(
                attempt,
                config=self.retry_config,
                operation_name=f"miniflux:{method} {endpoint}",
            )
        finally:
            self._in_flight -= 1
            if self._retired and self._in_flight == 0:
                await self._client.aclose()

    async def me(self) -> dict[str, Any]:
        return await self.request("GET", "/me")

    async def get_feeds(self) -> list[dict[str, Any]]:
        return await self.request("GET", "/feeds") or []

    async def get_categories(self) -> list[dict[str, Any]]:
        return await self.request("GET", "/categories") or []

    async def get_entries(self, params: dict[str, Any]) -> dict[str, Any]:
        return await self.request("GET", "/entries", params=params) or {}

    async def get_entry(self, entry_id: int) -> dict[str, Any]:
        return await self.request("GET", f"/entries/{entry_id}")

    async def update_entries_status(self, entry_ids: int | list[int], status: str) -> None:
        ids = entry_ids if isinstance(entry_ids, list) else [entry_ids]
        await self.request("PUT", "/entries", json={"entry_ids": ids, "status": status})

    async def toggle_bookmark(self, entry_id: int) -> None:
        await self.request("PUT", f"/entries/{entry_id}/bookmark")

    async def fetch_entry_content(self, entry_id: int) -> dict[str, Any]:
        return await self.request(
            "GET",
            f"/entries/{entry_id}/fetch-content",
            params={"update_content": "false"},
        )


def build_client(
    config: MinifluxConfig,
    upstream: UpstreamConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> MinifluxClient:
    upstream = upstream or UpstreamConfig({})
    return MinifluxClient(
        config.url,
        username=config.username,
        password=config.password,
        api_key=config.api_key,
        timeout=upstream.timeout_seconds,
        max_retries=upstream.max_retries,
        retry_delay=upstream.retry_delay_seconds,
        transport=transport,
    )


class MinifluxClientProvider:
    """Hands out one shared client per effective configuration.

    The client is rebuilt when the configuration fingerprint changes or after
    `invalidate()`. A replaced client closes once its in-flight requests finish.
    """

    def __init__(
        self,
        config_store: MinifluxConfigStore,
        upstream: UpstreamConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config_store = config_store
        self.upstream = upstream or UpstreamConfig({})
        self.transport = transport
        self._client: MinifluxClient | None = None
        self._fingerprint: str | None = None

    async def _retire(self) -> None:
        if self._client is not None:
            await self._client.retire()
        self._client = None

    async def get_client(self) -> MinifluxClient | None:
        """Current client, or None when Miniflux is not configured."""
        config = await self.config_store.get_config()
        fingerprint = config.fingerprint if config else None

        if fingerprint != self._fingerprint:
            await self._retire()
            self._fingerprint = fingerprint

        if self._client is None and config is not None:
            self._client = build_client(config, self.upstream, self.transport)
            logger.bind(url=config.url, source=config.source).info("miniflux_client_created")

        return self._client

    async def invalidate(self) -> None:
        """Drop the cached client after a configuration change."""
        await self._retire()
        self._fingerprint = None

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
        self._client = None
