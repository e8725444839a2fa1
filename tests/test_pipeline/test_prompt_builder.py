"""Tests for article preparation and prompt assembly."""

from unittest.mock import AsyncMock, patch

import pytest

from fluxdigest.pipeline.prompt_builder import (
    PreparedArticle,
    build_prompt,
    prepare_articles,
    render_article_list,
)
from tests.fakes import make_entry


def article(index: int = 1, summary: str = "Summary text") -> PreparedArticle:
    return PreparedArticle(
        index=index,
        title=f"Title {index}",
        feed_title="Tech Feed",
        published_at="2024-06-03T12:00:00Z",
        summary=summary,
    )


class TestPrepareArticles:
    """Tests for prepare_articles."""

    async def test_numbers_and_cleans_entries(self):
        entries = [make_entry(1, content="<p>Hello <i>there</i></p>"), make_entry(2)]

        prepared = await prepare_articles(entries)

        assert [p.index for p in prepared] == [1, 2]
        assert prepared[0].summary == "Hello there"
        assert prepared[0].feed_title == "Tech Feed"
        assert prepared[0].title == "Article 1"

    async def test_truncates_long_content(self):
        entries = [make_entry(1, content="中" * 2000)]
        prepared = await prepare_articles(entries, max_tokens=100)
        assert prepared[0].summary.endswith("...")
        assert len(prepared[0].summary) < 70

    async def test_yields_between_batches(self):
        """Large inputs should hand control back to the loop between batches."""
        entries = [make_entry(i) for i in range(45)]
        with patch(
            "fluxdigest.pipeline.prompt_builder.asyncio.sleep", new_callable=AsyncMock
        ) as sleep:
            prepared = await prepare_articles(entries, batch_size=20)

        assert len(prepared) == 45
        assert prepared[-1].index == 45
        assert sleep.await_count == 2

    async def test_missing_fields(self):
        prepared = await prepare_articles([{"id": 1}])
        assert prepared[0].title == ""
        assert prepared[0].summary == ""


class TestRendering:
    """Tests for render_article_list."""

    def test_article_block(self):
        assert article().render() == (
            "### 1. Title 1\n"
            "- Source: Tech Feed\n"
            "- Date: 2024-06-03T12:00:00Z\n"
            "- Summary: Summary text\n"
        )

    def test_list_header(self):
        rendered = render_article_list([article(1), article(2)])
        assert rendered.startswith("## Article List (Total 2 articles):\n\n### 1. Title 1")
        assert "\n### 2. Title 2" in rendered


class TestBuildPrompt:
    """Tests for build_prompt."""

    def test_default_prompt(self):
        prompt = build_prompt([article()], target_lang="English", scope_name="Tech")
        assert "recent Tech articles" in prompt
        assert "1. Output in English" in prompt
        assert prompt.endswith(render_article_list([article()]))

    def test_custom_prompt_placeholders(self):
        prompt = build_prompt(
            [article()],
            target_lang="French",
            scope_name="Tech",
            custom_prompt="Summarize in {{targetLang}}:\n{content}",
        )
        assert prompt.startswith("Summarize in French:\n## Article List")

    def test_custom_prompt_without_placeholder_gets_content(self):
        prompt = build_prompt(
            [article()], target_lang="English", scope_name="Tech", custom_prompt="  Be brief.  "
        )
        assert prompt == "Be brief.\n\n" + render_article_list([article()])

    def test_placeholders_in_articles_left_alone(self):
        """Substitution is single-pass; article text is never re-expanded."""
        tricky = article(summary="literal {targetLang} and {{content}}")
        prompt = build_prompt(
            [tricky], target_lang="English", scope_name="Tech", custom_prompt="{content}"
        )
        assert "literal {targetLang} and {{content}}" in prompt

    def test_blank_custom_prompt_uses_default(self):
        prompt = build_prompt(
            [article()], target_lang="English", scope_name="Tech", custom_prompt=" "
        )
        assert prompt.startswith("You are a professional news editor.")
