from datetime import timedelta
from typing import Any

from fluxdigest.core.datetime_utils import parse_instant, utc_now
from fluxdigest.core.logging import get_logger
from fluxdigest.ingest.miniflux import MinifluxClient

logger = get_logger(__name__)

DEFAULT_ARTICLE_LIMIT = 500


def _published_sort_key(entry: dict[str, Any]) -> float:
    moment = parse_instant(entry.get("published_at"))
    return moment.timestamp() if moment else 0.0


async def fetch_recent_articles(
    client: MinifluxClient,
    *,
    hours: int,
    feed_id: int | None = None,
    group_id: int | None = None,
    category_ids: list[int] | None = None,
    include_read: bool = False,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """
    Fetch entries published within the last `hours`, newest first.

    With `category_ids` one request is made per category; a failing category
    is logged and skipped, and the merged entries are de-duplicated by id,
    sorted by `published_at` and capped at `limit`. Otherwise a single request
    is made, narrowed by `feed_id` or `group_id`, and its errors propagate.
    """
    limit = limit or DEFAULT_ARTICLE_LIMIT
    after = int((utc_now() - timedelta(hours=hours)).timestamp())

    params: dict[str, Any] = {
        "status": None if include_read else "unread",
        "order": "published_at",
        "direction": "desc",
        "limit": limit,
        "after": after,
    }
    logger.bind(
        hours=hours,
        limit=limit,
        after=after,
        include_read=include_read,
    ).debug("articles_fetch_started")

    if category_ids:
        merged: dict[Any, dict[str, Any]] = {}
        for category_id in category_ids:
            try:
                response = await client.get_entries({**params, "category_id": category_id})
            except Exception as e:
                logger.bind(category_id=category_id, error=str(e)).error(
                    "articles_category_fetch_failed"
                )
                continue
            entries = response.get("entries") or []
            logger.bind(category_id=category_id, count=len(entries)).debug(
                "articles_category_fetched"
            )
            for entry in entries:
                merged[entry.get("id")] = entry

        articles = sorted(merged.values(), key=_published_sort_key, reverse=True)
        return articles[:limit]

    if feed_id:
        params["feed_id"] = feed_id
    if group_id:
        params["category_id"] = group_id

    response = await client.get_entries(params)
    return response.get("entries") or []
