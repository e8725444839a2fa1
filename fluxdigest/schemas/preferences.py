"""Typed views over the per-user preference record.

Preferences are persisted as free-form JSON objects; these models validate
the parts the digest pipeline consumes and ignore everything else.
"""

from pydantic import ConfigDict, Field

from fluxdigest.schemas.common import CamelModel

MASKED_SECRET = "********"


class _Lenient(CamelModel):
    model_config = ConfigDict(extra="ignore")


class AIConfig(_Lenient):
    """LLM endpoint settings. `api_key` is plaintext only in memory."""

    api_url: str | None = None
    api_key: str | None = None
    model: str | None = None
    temperature: float | None = None
    target_lang: str | None = None
    summarize_lang: str | None = None
    digest_prompt: str | None = None


class PushSettings(_Lenient):
    url: str | None = None
    method: str | None = None
    body: str | None = None


class DigestTask(_Lenient):
    """A cron-driven digest task."""

    id: str | None = None
    cron_expression: str | None = None
    title: str | None = None
    digest_title: str | None = None
    scopes: list[str] = Field(default_factory=list)
    custom_prompt: str | None = None
    time_range: int | None = None
    include_read: bool = False
    enable_push: bool = False

    @property
    def category_ids(self) -> list[int]:
        """Category ids from `group_<id>` scopes; empty when `all` is present."""
        if not self.scopes or "all" in self.scopes:
            return []
        ids = []
        for scope in self.scopes:
            if scope.startswith("group_") and scope[len("group_") :].isdigit():
                ids.append(int(scope[len("group_") :]))
        return ids


class LegacyTask(_Lenient):
    """A daily `HH:MM` task from the older preference layout."""

    id: str | None = None
    enabled: bool = False
    time: str | None = None
    scope: str | None = None
    scope_id: int | None = None
    feed_id: int | None = None
    group_id: int | None = None
    hours: int | None = None

    @property
    def effective_feed_id(self) -> int | None:
        return self.feed_id or self.scope_id

    @property
    def effective_group_id(self) -> int | None:
        return self.group_id or self.scope_id
