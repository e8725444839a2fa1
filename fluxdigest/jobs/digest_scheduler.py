"""Per-minute evaluation of every user's digest tasks.

Each tick walks all users with a preference file. Legacy daily tasks fire
when their `HH:MM` equals the current local minute; cron tasks fire when
their expression matches it. Matching tasks are dispatched as independent
asyncio tasks, so a slow LLM call never delays the tick or other users, and
one user's bad record never blocks the rest.
"""

import asyncio
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from fluxdigest.config import DigestConfig
from fluxdigest.core.cron import matches_minute
from fluxdigest.core.datetime_utils import hhmm, local_now, to_local
from fluxdigest.core.logging import get_logger
from fluxdigest.ingest.miniflux import MinifluxClient, MinifluxClientProvider
from fluxdigest.schemas.preferences import AIConfig, DigestTask, LegacyTask, PushSettings
from fluxdigest.services.digest_service import DigestRequest, DigestService
from fluxdigest.services.push_service import render_template
from fluxdigest.stores.preference_store import PreferenceStore

logger = get_logger(__name__)

DEFAULT_TASK_HOURS = 24
DEFAULT_TASK_TITLE = "Digest"


class DigestScheduler:
    def __init__(
        self,
        preferences: PreferenceStore,
        client_provider: MinifluxClientProvider,
        digest_service: DigestService,
        config: DigestConfig | None = None,
    ) -> None:
        self.preferences = preferences
        self.client_provider = client_provider
        self.digest_service = digest_service
        self.config = config or DigestConfig({})
        self._inflight: set[asyncio.Task] = set()

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def legacy_request(self, task: LegacyTask, ai_config: AIConfig) -> DigestRequest:
        scope = task.scope or "all"
        request = DigestRequest(
            scope=scope,
            hours=task.hours or DEFAULT_TASK_HOURS,
            target_lang=ai_config.target_lang
            or ai_config.summarize_lang
            or self.config.default_target_lang,
            custom_prompt=ai_config.digest_prompt,
            ai_config=ai_config,
        )
        # feedId/groupId first, scopeId as fallback
        if scope == "feed":
            request.feed_id = task.effective_feed_id
        elif scope == "group":
            request.group_id = task.effective_group_id
        return request

    def cron_request(
        self,
        task: DigestTask,
        ai_config: AIConfig,
        push_settings: PushSettings,
        now: datetime,
    ) -> DigestRequest:
        category_ids = task.category_ids
        return DigestRequest(
            scope="group" if category_ids else "all",
            category_ids=category_ids,
            hours=DEFAULT_TASK_HOURS,
            time_range=task.time_range,
            target_lang=ai_config.target_lang or self.config.default_target_lang,
            custom_prompt=task.custom_prompt or ai_config.digest_prompt,
            ai_config=ai_config,
            include_read=task.include_read,
            custom_title=render_template(
                task.digest_title or task.title or DEFAULT_TASK_TITLE, now=now
            ),
            push_settings=push_settings,
            enable_push=task.enable_push,
        )

    async def run_check(self, now: datetime | None = None) -> list[asyncio.Task]:
        """Evaluate one tick and return the generation tasks it started."""
        now = to_local(now) if now else local_now()
        dispatched: list[asyncio.Task] = []

        for user in await self.preferences.list_user_ids():
            try:
                dispatched.extend(await self._check_user(user, now))
            except Exception as e:
                logger.bind(user=user, error=str(e)).error("scheduler_user_check_failed")

        if dispatched:
            logger.bind(minute=hhmm(now), dispatched=len(dispatched)).info(
                "scheduler_tick_dispatched"
            )
        return dispatched

    async def _check_user(self, user: str, now: datetime) -> list[asyncio.Task]:
        prefs = await self.preferences.get(user)
        ai_config = AIConfig.model_validate(prefs.get("ai_config") or {})
        push_settings = PushSettings.model_validate(prefs.get("push_settings") or {})
        current = hhmm(now)
        dispatched: list[asyncio.Task] = []

        for raw in prefs.get("digest_schedules") or []:
            task = _validated(LegacyTask, raw, user)
            if task is None or not task.enabled or task.time != current:
                continue
            label = f"legacy:{task.id or task.scope or 'all'}"
            started = await self._dispatch(user, label, self.legacy_request(task, ai_config))
            if started:
                dispatched.append(started)

        for raw in prefs.get("digest_tasks") or []:
            task = _validated(DigestTask, raw, user)
            if task is None or not task.cron_expression:
                continue
            if not matches_minute(task.cron_expression, now):
                continue
            label = task.title or task.id or DEFAULT_TASK_TITLE
            request = self.cron_request(task, ai_config, push_settings, now)
            started = await self._dispatch(user, label, request)
            if started:
                dispatched.append(started)

        return dispatched

    async def _dispatch(self, user: str, label: str, request: DigestRequest) -> asyncio.Task | None:
        log = logger.bind(user=user, task=label)

        if not request.ai_config.api_key:
            log.bind(reason="ai_not_configured").warning("scheduler_skipping_task")
            return None

        client = await self.client_provider.get_client()
        if client is None:
            log.bind(reason="miniflux_unavailable").warning("scheduler_skipping_task")
            return None

        log.bind(scope=request.scope).info("scheduler_task_triggered")
        task = asyncio.create_task(self._generate(user, label, client, request))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _generate(
        self,
        user: str,
        label: str,
        client: MinifluxClient,
        request: DigestRequest,
    ) -> None:
        log = logger.bind(user=user, task=label)
        try:
            result = await self.digest_service.generate(client, user, request)
        except Exception as e:
            log.bind(error=str(e)).error("scheduled_digest_failed")
            return
        log.bind(digest_id=result.digest.id).info("scheduled_digest_completed")

    async def wait_idle(self) -> None:
        """Wait for every in-flight generation to finish."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)


M = TypeVar("M", bound=BaseModel)


def _validated(model: type[M], raw: Any, user: str) -> M | None:
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        logger.bind(user=user, error=str(e)).warning("scheduler_task_invalid")
        return None


# Set by start_scheduler; read by the APScheduler job below
_digest_scheduler: DigestScheduler | None = None


def set_digest_scheduler(instance: DigestScheduler | None) -> None:
    global _digest_scheduler
    _digest_scheduler = instance


async def digest_tick_job() -> None:
    """Digest tick job - evaluates every user's tasks for the current minute."""
    if _digest_scheduler is None:
        logger.warning("digest_tick_without_scheduler")
        return

    try:
        await _digest_scheduler.run_check()
    except Exception as e:
        logger.bind(error=str(e)).error("scheduled_digest_tick_failed")
        raise  # Re-raise so APScheduler records the failure
