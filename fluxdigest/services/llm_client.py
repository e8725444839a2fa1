"""OpenAI-compatible chat-completion client.

Usage:
    llm = LLMClient()
    text = await llm.complete(ai_config, prompt)

    stream = await llm.open_stream(ai_config, messages)
    async for chunk in stream.iter_raw():
        ...

The configured `apiUrl` may be a base URL or already point at
`.../chat/completions`; `normalize_api_url` handles both.
"""

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import httpx

from fluxdigest.config import LLMConfig
from fluxdigest.core.exceptions import ConfigurationMissingError, LLMError, LLMTimeoutError
from fluxdigest.core.logging import get_logger
from fluxdigest.schemas.preferences import AIConfig

logger = get_logger(__name__)

COMPLETIONS_PATH = "chat/completions"
SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def normalize_api_url(url: str) -> str:
    """Append `/chat/completions` to a base URL unless it already ends with it."""
    base = url.strip().rstrip("/")
    if base.endswith(COMPLETIONS_PATH):
        return base
    return f"{base}/{COMPLETIONS_PATH}"


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])

    body = response.text[:500]
    return f"AI API Error: {response.status_code}" + (f" - {body}" if body else "")


class ChatStream:
    """An upstream streaming response whose body is relayed verbatim."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response

    async def iter_raw(self) -> AsyncIterator[bytes]:
        """Yield upstream bytes until either side closes.

        Cancellation (downstream disconnect) propagates and closes the upstream
        response; an upstream transport error just ends the relay.
        """
        try:
            async for chunk in self.response.aiter_raw():
                yield chunk
        except httpx.HTTPError as e:
            logger.bind(error=str(e)).warning("llm_stream_interrupted")
        finally:
            await self.response.aclose()

    async def aclose(self) -> None:
        await self.response.aclose()


class LLMClient:
    def __init__(
        self,
        config: LLMConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or LLMConfig({})
        self._client = httpx.AsyncClient(transport=transport, timeout=None)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _build_request(
        self,
        ai_config: AIConfig,
        messages: list[dict[str, Any]],
        *,
        stream: bool,
        model: str | None = None,
        temperature: float | None = None,
        extra: dict[str, Any] | None = None,
    ) -> httpx.Request:
        if not ai_config.api_url or not ai_config.api_key:
            raise ConfigurationMissingError("AI service not configured")

        if temperature is None:
            temperature = ai_config.temperature
        if temperature is None:
            temperature = self.config.default_temperature

        body: dict[str, Any] = {
            "model": model or ai_config.model or self.config.default_model,
            "temperature": temperature,
            "messages": messages,
            "stream": stream,
            **(extra or {}),
        }
        return self._client.build_request(
            "POST",
            normalize_api_url(ai_config.api_url),
            json=body,
            headers={"Authorization": f"Bearer {ai_config.api_key}"},
        )

    async def chat(
        self,
        ai_config: AIConfig,
        messages: list[dict[str, Any]],
        *,
        model: str | None = None,
        temperature: float | None = None,
        extra: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Non-streaming completion returning the upstream JSON.

        Raises:
            ConfigurationMissingError: apiUrl or apiKey missing
            LLMTimeoutError: no answer within the deadline
            LLMError: non-2xx answer or transport failure
        """
        request = self._build_request(
            ai_config, messages, stream=False, model=model, temperature=temperature, extra=extra
        )

        try:
            async with asyncio.timeout(self.config.timeout_seconds):
                response = await self._client.send(request)
        except TimeoutError as e:
            logger.bind(timeout=self.config.timeout_seconds).error("llm_request_timeout")
            raise LLMTimeoutError(
                f"AI request timed out after {self.config.timeout_seconds:g}s"
            ) from e
        except httpx.HTTPError as e:
            raise LLMError(f"AI request failed: {e!r}") from e

        if not response.is_success:
            message = _error_message(response)
            logger.bind(status=response.status_code, error=message).error("llm_request_failed")
            raise LLMError(message, response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise LLMError("AI API returned a non-JSON response", response.status_code) from e

    async def complete(self, ai_config: AIConfig, prompt: str) -> str:
        """Send one user message and return the first choice's text."""
        data = await self.chat(ai_config, [{"role": "user", "content": prompt}])
        return _first_choice_text(data)

    async def test_connection(self, api_url: str, api_key: str, model: str | None = None) -> str:
        """Probe an endpoint with a tiny request and return the reply."""
        ai_config = AIConfig(api_url=api_url, api_key=api_key, model=model)
        data = await self.chat(
            ai_config,
            [{"role": "user", "content": "Hi"}],
            extra={"max_tokens": 5},
        )
        return _first_choice_text(data)

    async def open_stream(
        self,
        ai_config: AIConfig,
        messages: list[dict[str, Any]],
        *,
        model: str | None = None,
        temperature: float | None = None,
    ) -> ChatStream:
        """Start a streaming completion and return once headers arrive.

        Connect and write are bounded by the deadline; reads are not, since a
        long generation may legitimately stream for many minutes.

        Raises:
            LLMError: non-2xx upstream status, before any bytes are relayed
        """
        request = self._build_request(
            ai_config, messages, stream=True, model=model, temperature=temperature
        )
        deadline = self.config.timeout_seconds
        request.extensions["timeout"] = httpx.Timeout(
            connect=deadline, write=deadline, read=None, pool=deadline
        ).as_dict()

        try:
            response = await self._client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(f"AI request timed out after {deadline:g}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"AI request failed: {e!r}") from e

        if not response.is_success:
            await response.aread()
            await response.aclose()
            message = _error_message(response)
            logger.bind(status=response.status_code, error=message).error("llm_stream_failed")
            raise LLMError(message, response.status_code)

        return ChatStream(response)


def _first_choice_text(data: dict[str, Any]) -> str:
    try:
        return data["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError):
        return ""
