import re
from datetime import datetime

import httpx

from fluxdigest.core.datetime_utils import local_now
from fluxdigest.core.logging import get_logger
from fluxdigest.schemas.preferences import PushSettings

logger = get_logger(__name__)

_TEMPLATE_VAR_RE = re.compile(r"\{\{(title|summary_content|yyyy|MM|dd|HH|mm|ss)\}\}")
_CURLY_QUOTES = str.maketrans({"“": '"', "”": '"', "‘": "'", "’": "'"})


def render_template(
    template: str,
    content: str = "",
    title: str = "",
    now: datetime | None = None,
) -> str:
    """
    Expand push/title template variables.

    Supported: {{title}}, {{summary_content}}, {{yyyy}}, {{MM}}, {{dd}},
    {{HH}}, {{mm}}, {{ss}}; date parts are local time, zero-padded.
    """
    now = now or local_now()
    values = {
        "title": title or "",
        "summary_content": content or "",
        "yyyy": f"{now.year:04d}",
        "MM": f"{now.month:02d}",
        "dd": f"{now.day:02d}",
        "HH": f"{now.hour:02d}",
        "mm": f"{now.minute:02d}",
        "ss": f"{now.second:02d}",
    }
    return _TEMPLATE_VAR_RE.sub(lambda m: values[m.group(1)], template)


def normalize_quotes(text: str) -> str:
    """Replace typographic quotes with their ASCII equivalents."""
    return text.translate(_CURLY_QUOTES)


class PushNotifier:
    """Best-effort webhook delivery of finished digests."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._client = httpx.AsyncClient(transport=transport, timeout=30.0)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send(
        self,
        settings: PushSettings,
        content: str,
        title: str,
        now: datetime | None = None,
    ) -> int | None:
        """Send the push request.

        Returns:
            HTTP status of the push endpoint, or None when nothing was sent or
            the request failed. Never raises.
        """
        if not settings.url:
            return None

        method = (settings.method or "POST").upper()
        body = normalize_quotes(render_template(settings.body or "", content, title, now))

        try:
            response = await self._client.request(
                method,
                settings.url,
                headers={"Content-Type": "application/json"},
                content=body.encode("utf-8") if method == "POST" and body else None,
            )
        except Exception as e:
            logger.bind(url=settings.url, method=method, error=str(e)).error("push_failed")
            return None

        logger.bind(url=settings.url, method=method, status=response.status_code).info(
            "push_sent"
        )
        return response.status_code
