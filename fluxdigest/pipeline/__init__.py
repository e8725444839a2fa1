from fluxdigest.pipeline.prompt_builder import (
    PreparedArticle,
    build_prompt,
    prepare_articles,
    render_article_list,
)

__all__ = [
    "PreparedArticle",
    "build_prompt",
    "prepare_articles",
    "render_article_list",
]
