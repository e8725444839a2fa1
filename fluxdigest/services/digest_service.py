"""Digest generation: fetch, prepare, summarize, store, push.

One `generate()` call runs the whole pipeline for a single request, whether
it comes from the scheduler or from the HTTP API. Errors from the upstream
fetch, prompt preparation or the LLM abort before anything is written.
"""

from dataclasses import dataclass, field
from datetime import datetime

from fluxdigest.config import DigestConfig
from fluxdigest.core.datetime_utils import local_now, to_iso, utc_now
from fluxdigest.core.exceptions import ConfigurationMissingError
from fluxdigest.core.logging import get_logger
from fluxdigest.ingest.articles import fetch_recent_articles
from fluxdigest.ingest.miniflux import MinifluxClient
from fluxdigest.ingest.normalizer import TokenEstimator
from fluxdigest.pipeline.prompt_builder import build_prompt, prepare_articles
from fluxdigest.schemas.digest import (
    DigestPreview,
    EmptyDigest,
    GenerationResult,
    PreviewArticle,
)
from fluxdigest.schemas.preferences import AIConfig, PushSettings
from fluxdigest.services.llm_client import LLMClient
from fluxdigest.services.push_service import PushNotifier
from fluxdigest.stores.digest_store import DigestStore

logger = get_logger(__name__)

PREVIEW_SIZE = 10


@dataclass
class DigestRequest:
    scope: str = "all"
    feed_id: int | None = None
    group_id: int | None = None
    category_ids: list[int] = field(default_factory=list)
    hours: int = 12
    time_range: int | None = None  # overrides hours when set
    target_lang: str = "Simplified Chinese"
    custom_prompt: str | None = None
    ai_config: AIConfig = field(default_factory=AIConfig)
    include_read: bool = False
    custom_title: str | None = None
    push_settings: PushSettings | None = None
    enable_push: bool = False
    push_title: str | None = None  # defaults to the digest title

    @property
    def effective_hours(self) -> int:
        return self.time_range or self.hours


@dataclass(frozen=True)
class LocaleStrings:
    english: bool
    all_subscriptions: str
    feed: str
    group: str
    digest: str

    def no_articles(self, hours: int, include_read: bool) -> str:
        if self.english:
            qualifier = "" if include_read else "unread "
            return f"No {qualifier}articles in the past {hours} hours."
        qualifier = "" if include_read else "未读"
        return f"在过去 {hours} 小时内没有{qualifier}文章。"


ENGLISH = LocaleStrings(True, "All Subscriptions", "Feed", "Group", "Digest")
CHINESE = LocaleStrings(False, "全部订阅", "订阅源", "分组", "简报")


def locale_for(target_lang: str | None) -> LocaleStrings:
    """English when the language name contains `english` or `en`, else Chinese."""
    lang = (target_lang or "").lower()
    return ENGLISH if "english" in lang or "en" in lang else CHINESE


def default_title(scope_name: str, strings: LocaleStrings, now: datetime) -> str:
    return f"{scope_name} · {strings.digest} {now.strftime('%m-%d-%H:%M')}"


class DigestService:
    def __init__(
        self,
        store: DigestStore,
        llm: LLMClient,
        push: PushNotifier,
        config: DigestConfig | None = None,
        estimator: TokenEstimator | None = None,
    ) -> None:
        self.store = store
        self.llm = llm
        self.push = push
        self.config = config or DigestConfig({})
        self.estimator = estimator or TokenEstimator()

    async def _resolve_scope(
        self,
        client: MinifluxClient,
        request: DigestRequest,
        strings: LocaleStrings,
    ) -> tuple[str, int | None]:
        if request.scope == "feed" and request.feed_id:
            feeds = await client.get_feeds()
            feed = next((f for f in feeds if f.get("id") == request.feed_id), None)
            return (feed["title"] if feed else strings.feed), request.feed_id

        if request.scope == "group" and request.group_id:
            categories = await client.get_categories()
            category = next((c for c in categories if c.get("id") == request.group_id), None)
            return (category["title"] if category else strings.group), request.group_id

        if request.category_ids:
            categories = {c.get("id"): c.get("title") for c in await client.get_categories()}
            names = [categories.get(cid) or f"Category {cid}" for cid in request.category_ids]
            scope_id = request.category_ids[0] if len(request.category_ids) == 1 else None
            return ", ".join(names), scope_id

        return strings.all_subscriptions, None

    async def generate(
        self,
        client: MinifluxClient | None,
        user: str,
        request: DigestRequest,
    ) -> GenerationResult:
        """Run the pipeline for one request.

        Raises:
            ConfigurationMissingError: no upstream client or no AI configuration
            UpstreamError: the article or scope lookup failed
            LLMError: the completion failed or timed out
            StorageError: the digest could not be persisted
        """
        if client is None:
            raise ConfigurationMissingError("Miniflux service is not configured")

        hours = request.effective_hours
        strings = locale_for(request.target_lang)
        log = logger.bind(user=user, scope=request.scope, hours=hours)

        scope_name, scope_id = await self._resolve_scope(client, request, strings)

        articles = await fetch_recent_articles(
            client,
            hours=hours,
            feed_id=request.feed_id,
            group_id=request.group_id,
            category_ids=request.category_ids,
            include_read=request.include_read,
            limit=self.config.article_limit,
        )

        if not articles:
            log.info("digest_no_articles")
            return GenerationResult(
                digest=EmptyDigest(
                    content=strings.no_articles(hours, request.include_read),
                    scope=scope_name,
                    generated_at=to_iso(utc_now()),
                )
            )

        prepared = await prepare_articles(
            articles,
            self.estimator,
            batch_size=self.config.batch_size,
            max_tokens=self.config.max_tokens_per_article,
            safe_length=self.config.safe_content_length,
        )
        prompt = build_prompt(
            prepared,
            target_lang=request.target_lang,
            scope_name=scope_name,
            custom_prompt=request.custom_prompt,
        )

        log.bind(articles=len(prepared), prompt_chars=len(prompt)).info("digest_generation_started")
        content = await self.llm.complete(request.ai_config, prompt)

        digest = await self.store.add(
            user,
            scope=request.scope,
            scope_id=scope_id,
            scope_name=scope_name,
            title=request.custom_title or default_title(scope_name, strings, local_now()),
            content=content,
            article_count=len(prepared),
            hours=hours,
        )
        log.bind(digest_id=digest.id, articles=len(prepared)).info("digest_generation_completed")

        if request.enable_push and request.push_settings and request.push_settings.url:
            await self.push.send(
                request.push_settings,
                digest.content or "",
                request.push_title or digest.title,
            )

        return GenerationResult(digest=digest)

    async def preview(
        self,
        client: MinifluxClient | None,
        *,
        hours: int,
        feed_id: int | None = None,
        group_id: int | None = None,
    ) -> DigestPreview:
        """Count the articles a digest would cover, without calling the LLM."""
        if client is None:
            raise ConfigurationMissingError("Miniflux service is not configured")

        articles = await fetch_recent_articles(
            client,
            hours=hours,
            feed_id=feed_id,
            group_id=group_id,
            limit=self.config.article_limit,
        )
        return DigestPreview(
            article_count=len(articles),
            articles=[
                PreviewArticle(
                    id=a["id"],
                    title=a.get("title"),
                    feed_title=(a.get("feed") or {}).get("title") or "",
                    published_at=a.get("published_at"),
                )
                for a in articles[:PREVIEW_SIZE]
            ],
            hours=hours,
        )
