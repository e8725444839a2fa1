from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse, StreamingResponse

from fluxdigest.core.exceptions import ConfigurationMissingError, LLMError
from fluxdigest.core.logging import get_logger
from fluxdigest.dependencies import AppServices, CurrentUser
from fluxdigest.schemas.api import AITestRequest, ChatRequest
from fluxdigest.schemas.preferences import MASKED_SECRET, AIConfig
from fluxdigest.services.llm_client import SSE_HEADERS

logger = get_logger(__name__)

router = APIRouter()


def _upstream_error(e: LLMError, **extra: Any) -> JSONResponse:
    """Answer with the LLM endpoint's own status when it gave one."""
    return JSONResponse(
        status_code=e.status_code or e.http_status,
        content={**extra, "error": e.message},
    )


@router.post("/chat", response_model=None)
async def chat(
    body: ChatRequest,
    user: CurrentUser,
    services: AppServices,
) -> JSONResponse | StreamingResponse:
    """Proxy a chat completion using the caller's stored AI configuration.

    With `stream` the upstream SSE bytes are relayed unchanged.
    """
    prefs = await services.preferences.get(user.handle)
    ai_config = AIConfig.model_validate(prefs.get("ai_config") or {})

    try:
        if body.stream:
            stream = await services.llm.open_stream(
                ai_config, body.messages, model=body.model, temperature=body.temperature
            )
            headers = {k: v for k, v in SSE_HEADERS.items() if k != "Content-Type"}
            return StreamingResponse(
                stream.iter_raw(),
                media_type=SSE_HEADERS["Content-Type"],
                headers=headers,
            )

        data = await services.llm.chat(
            ai_config, body.messages, model=body.model, temperature=body.temperature
        )
    except LLMError as e:
        logger.bind(user=user.handle, status=e.status_code, error=e.message).warning(
            "ai_chat_failed"
        )
        return _upstream_error(e)

    return JSONResponse(content=data)


@router.post("/test")
async def test_connection(
    body: AITestRequest,
    user: CurrentUser,
    services: AppServices,
) -> JSONResponse:
    """Check an AI endpoint; a masked or empty key means the stored one."""
    api_key = body.api_key
    if not api_key or api_key == MASKED_SECRET:
        prefs = await services.preferences.get(user.handle)
        api_key = (prefs.get("ai_config") or {}).get("apiKey")

    if not body.api_url or not api_key:
        raise ConfigurationMissingError("API URL and API key are required")

    try:
        reply = await services.llm.test_connection(body.api_url, api_key, body.model)
    except LLMError as e:
        return _upstream_error(e, success=False)

    return JSONResponse(
        content={"success": True, "message": "Connection successful", "reply": reply}
    )
