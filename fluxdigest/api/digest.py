import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse

from fluxdigest.core.cron import next_fire_times
from fluxdigest.core.datetime_utils import local_now
from fluxdigest.core.exceptions import CronParseError
from fluxdigest.core.logging import get_logger
from fluxdigest.dependencies import AppServices, AuthUser, CurrentUser, Miniflux, Services
from fluxdigest.schemas.api import GenerateRequest, ParseCronRequest
from fluxdigest.schemas.preferences import AIConfig, DigestTask, PushSettings
from fluxdigest.services.digest_service import DigestRequest
from fluxdigest.services.push_service import render_template

logger = get_logger(__name__)

router = APIRouter()

HEARTBEAT_SECONDS = 10.0
NEXT_RUNS_COUNT = 5
NEXT_RUN_FORMAT = "%Y/%m/%d %H:%M:%S"
DEFAULT_GENERATE_LANG = "简体中文"

# Generations outlive a disconnected SSE client; keep them referenced
_background: set[asyncio.Task] = set()


def _settle(task: asyncio.Task) -> None:
    _background.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.bind(error=str(task.exception())).error("digest_generation_failed")


def sse_event(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def wants_stream(request: Request, stream: bool) -> bool:
    return stream or request.headers.get("accept") == "text/event-stream"


async def _stored_ai_config(services: Services, user: AuthUser) -> AIConfig:
    prefs = await services.preferences.get(user.handle)
    return AIConfig.model_validate(prefs.get("ai_config") or {})


async def generation_events(task: asyncio.Task) -> AsyncIterator[str]:
    """SSE frames for one running generation, with heartbeat comments."""
    yield sse_event({"type": "status", "message": "generating"})

    while True:
        done, _ = await asyncio.wait({task}, timeout=HEARTBEAT_SECONDS)
        if done:
            break
        yield ": heartbeat\n\n"

    try:
        result = task.result()
    except Exception as e:
        yield sse_event({"type": "error", "data": {"error": str(e) or "Digest generation failed"}})
        return
    yield sse_event({"type": "result", "data": result.to_json_dict()})


@router.get("/list")
async def list_digests(
    user: CurrentUser,
    services: AppServices,
    scope: str | None = None,
    scope_id: str | None = Query(default=None, alias="scopeId"),
    unread_only: str | None = Query(default=None, alias="unreadOnly"),
    before: str | None = None,
) -> dict[str, Any]:
    """Digests shaped for the article list, optionally paginated by `before`."""
    parsed_scope_id = None
    if scope_id:
        try:
            parsed_scope_id = int(scope_id)
        except ValueError as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid scopeId",
            ) from e

    view = await services.digests.for_article_list(
        user.handle,
        before=before,
        scope=scope,
        scope_id=parsed_scope_id,
        unread_only=unread_only in ("true", "1"),
    )
    return {"success": True, "digests": view.model_dump(mode="json")}


@router.get("/preview")
async def preview_digest(
    user: CurrentUser,
    services: AppServices,
    client: Miniflux,
    scope: str = "all",
    feed_id: int | None = Query(default=None, alias="feedId"),
    group_id: int | None = Query(default=None, alias="groupId"),
    hours: int = 12,
) -> dict[str, Any]:
    """Articles a digest for this scope would cover."""
    preview = await services.digest_service.preview(
        client,
        hours=hours,
        feed_id=feed_id if scope == "feed" else None,
        group_id=group_id if scope == "group" else None,
    )
    return {"success": True, "preview": preview.to_json_dict()}


@router.post("/generate", response_model=None)
async def generate_digest(
    body: GenerateRequest,
    request: Request,
    user: CurrentUser,
    services: AppServices,
    client: Miniflux,
    stream: bool = False,
) -> dict[str, Any] | StreamingResponse:
    """Generate a digest now, as JSON or as an SSE stream."""
    use_stream = wants_stream(request, stream)
    ai_config = await _stored_ai_config(services, user)

    if not ai_config.api_key:
        if use_stream:
            error = sse_event({"type": "error", "data": {"error": "AI service not configured"}})
            return StreamingResponse(iter([error]), media_type="text/event-stream")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="AI service not configured",
        )

    digest_request = DigestRequest(
        scope=body.scope,
        feed_id=body.feed_id,
        group_id=body.group_id,
        hours=body.hours,
        time_range=body.time_range,
        target_lang=body.target_lang or DEFAULT_GENERATE_LANG,
        custom_prompt=body.prompt,
        ai_config=ai_config,
        include_read=body.include_read,
    )
    log = logger.bind(user=user.handle, scope=body.scope, stream=use_stream)
    log.info("digest_generate_requested")

    if not use_stream:
        result = await services.digest_service.generate(client, user.handle, digest_request)
        return result.to_json_dict()

    task = asyncio.create_task(
        services.digest_service.generate(client, user.handle, digest_request)
    )
    _background.add(task)
    task.add_done_callback(_settle)

    return StreamingResponse(
        generation_events(task),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.post("/parse-cron")
async def parse_cron(body: ParseCronRequest, user: CurrentUser) -> dict[str, Any]:
    """Validate a cron expression and list its next fire times."""
    if not body.expression:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cron expression is required",
        )

    try:
        runs = next_fire_times(body.expression, local_now(), NEXT_RUNS_COUNT)
    except CronParseError as e:
        logger.bind(expression=body.expression, error=str(e)).info("cron_parse_rejected")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid cron expression",
        ) from e

    return {"success": True, "nextRuns": [run.strftime(NEXT_RUN_FORMAT) for run in runs]}


@router.post("/manual-trigger")
async def manual_trigger(
    task: DigestTask,
    user: CurrentUser,
    services: AppServices,
    client: Miniflux,
) -> dict[str, Any]:
    """Run a task definition immediately, pushing the result when enabled."""
    prefs = await services.preferences.get(user.handle)
    ai_config = AIConfig.model_validate(prefs.get("ai_config") or {})
    if not ai_config.api_key:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="AI service not configured",
        )

    custom_title = render_template(task.digest_title) if task.digest_title else None
    category_ids = task.category_ids
    digest_request = DigestRequest(
        scope="group" if category_ids else "all",
        category_ids=category_ids,
        hours=24,
        time_range=task.time_range,
        target_lang=ai_config.target_lang or DEFAULT_GENERATE_LANG,
        custom_prompt=task.custom_prompt,
        ai_config=ai_config,
        include_read=task.include_read,
        custom_title=custom_title,
        push_settings=PushSettings.model_validate(prefs.get("push_settings") or {}),
        enable_push=task.enable_push,
        push_title=custom_title or task.title,
    )

    result = await services.digest_service.generate(client, user.handle, digest_request)
    return {"success": True, "digest": result.digest.to_json_dict()}


@router.get("/{digest_id}")
async def get_digest(digest_id: str, user: CurrentUser, services: AppServices) -> dict[str, Any]:
    digest = await services.digests.get(user.handle, digest_id)
    if digest is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Digest not found")
    return {"success": True, "digest": digest.to_json_dict()}


@router.post("/{digest_id}/read")
async def mark_read(digest_id: str, user: CurrentUser, services: AppServices) -> dict[str, Any]:
    if not await services.digests.set_read(user.handle, digest_id, True):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Digest not found")
    return {"success": True}


@router.delete("/{digest_id}/read")
async def mark_unread(digest_id: str, user: CurrentUser, services: AppServices) -> dict[str, Any]:
    if not await services.digests.set_read(user.handle, digest_id, False):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Digest not found")
    return {"success": True}


@router.delete("/{digest_id}")
async def delete_digest(digest_id: str, user: CurrentUser, services: AppServices) -> dict[str, Any]:
    if not await services.digests.delete(user.handle, digest_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Digest not found")
    return {"success": True}
