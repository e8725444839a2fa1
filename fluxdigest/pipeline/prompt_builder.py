"""Turns upstream entries into the digest prompt.

Entries are normalized in batches, yielding to the event loop between
batches so a large digest never stalls the scheduler or HTTP handlers.
"""

import asyncio
import re
from dataclasses import dataclass
from typing import Any

from fluxdigest.ingest.normalizer import SAFE_CONTENT_LENGTH, TokenEstimator, clean_html

BATCH_SIZE = 20
MAX_TOKENS_PER_ARTICLE = 1000

DEFAULT_PROMPT = """You are a professional news editor. Please generate a concise digest based on the following list of recent {scope} articles.

## Output Requirements:
1. Output in {target_lang}
2. Start with a 2-3 sentence overview of today's/recent key content
3. Categorize by topic or importance, listing key information in concise bullet points
4. If multiple articles relate to the same topic, combine them
5. Keep the format concise and compact, using Markdown
6. Output the content directly, no opening remarks like "Here is the digest"

{content}"""

# Longer spellings first so `{{content}}` is never read as `{` + `{content}` + `}`
_PLACEHOLDER_RE = re.compile(r"\{\{(content|targetLang)\}\}|\{(content|targetLang)\}")


@dataclass
class PreparedArticle:
    index: int
    title: str
    feed_title: str
    published_at: str
    summary: str

    def render(self) -> str:
        return (
            f"### {self.index}. {self.title}\n"
            f"- Source: {self.feed_title}\n"
            f"- Date: {self.published_at}\n"
            f"- Summary: {self.summary}\n"
        )


async def prepare_articles(
    entries: list[dict[str, Any]],
    estimator: TokenEstimator | None = None,
    *,
    batch_size: int = BATCH_SIZE,
    max_tokens: int = MAX_TOKENS_PER_ARTICLE,
    safe_length: int = SAFE_CONTENT_LENGTH,
) -> list[PreparedArticle]:
    """Strip HTML and cut each entry to its token budget, numbering from 1."""
    estimator = estimator or TokenEstimator()
    prepared: list[PreparedArticle] = []

    for start in range(0, len(entries), batch_size):
        for offset, entry in enumerate(entries[start : start + batch_size]):
            feed = entry.get("feed") or {}
            text = clean_html(entry.get("content"), safe_length)
            prepared.append(
                PreparedArticle(
                    index=start + offset + 1,
                    title=entry.get("title") or "",
                    feed_title=feed.get("title") or "",
                    published_at=entry.get("published_at") or "",
                    summary=estimator.truncate(text, max_tokens),
                )
            )

        if start + batch_size < len(entries):
            await asyncio.sleep(0)

    return prepared


def render_article_list(articles: list[PreparedArticle]) -> str:
    """`## Article List (Total n articles):` followed by the rendered entries."""
    body = "\n".join(article.render() for article in articles)
    return f"## Article List (Total {len(articles)} articles):\n\n{body}"


def build_prompt(
    articles: list[PreparedArticle],
    *,
    target_lang: str,
    scope_name: str,
    custom_prompt: str | None = None,
) -> str:
    """Assemble the final LLM prompt.

    A custom prompt without a content placeholder gets `{{content}}` appended.
    Placeholders (`{content}`, `{{content}}`, `{targetLang}`,
    `{{targetLang}}`) are substituted in a single pass, so placeholder text
    inside article content is left alone.
    """
    article_list = render_article_list(articles)

    if custom_prompt and custom_prompt.strip():
        template = custom_prompt
        if "{{content}}" not in template and "{content}" not in template:
            template = template.strip() + "\n\n{{content}}"

        values = {"content": article_list, "targetLang": target_lang}
        return _PLACEHOLDER_RE.sub(lambda m: values[m.group(1) or m.group(2)], template)

    return DEFAULT_PROMPT.format(scope=scope_name, target_lang=target_lang, content=article_list)
