from typing import Literal

from pydantic import BaseModel

from fluxdigest.schemas.common import CamelModel

DigestScope = Literal["all", "feed", "group"]


class Digest(CamelModel):
    """A persisted digest as stored in a shard file."""

    id: str
    type: Literal["digest"] = "digest"
    scope: str = "all"
    scope_id: int | None = None
    scope_name: str
    title: str
    content: str | None = None
    article_count: int = 0
    hours: int = 12
    generated_at: str  # ISO-8601, UTC
    is_read: bool = False


class EmptyDigest(CamelModel):
    """Result for a window with no articles; never persisted."""

    id: None = None
    content: str
    article_count: int = 0
    scope: str  # display name of the scope
    generated_at: str


class GenerationResult(CamelModel):
    success: bool = True
    digest: Digest | EmptyDigest


class ArticleListEntry(BaseModel):
    """A digest reshaped to merge into the article stream."""

    id: str
    type: Literal["digest"] = "digest"
    feed_id: None = None
    title: str
    content: str | None
    published_at: str
    is_read: int
    is_favorited: int = 0
    thumbnail_url: None = None
    feed_title: str
    author: str = "AI"
    url: None = None
    digest_scope: str
    digest_scope_id: int | None
    article_count: int

    @classmethod
    def from_digest(cls, digest: Digest) -> "ArticleListEntry":
        return cls(
            id=digest.id,
            title=digest.title,
            content=digest.content,
            published_at=digest.generated_at,
            is_read=1 if digest.is_read else 0,
            feed_title=digest.scope_name,
            digest_scope=digest.scope,
            digest_scope_id=digest.scope_id,
            article_count=digest.article_count,
        )


class ArticleListView(BaseModel):
    pinned: list[ArticleListEntry]
    normal: list[ArticleListEntry]


class PreviewArticle(CamelModel):
    id: int
    title: str | None = None
    feed_title: str = ""
    published_at: str | None = None


class DigestPreview(CamelModel):
    article_count: int
    articles: list[PreviewArticle]
    hours: int
