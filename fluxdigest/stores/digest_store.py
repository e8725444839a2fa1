"""Date-sharded digest persistence.

Each user's digests live in one JSON array per local calendar date:

    <data-dir>/digests/<userHandle>_<YYYY-MM-DD>.json

Shards hold digests newest first. The millisecond timestamp embedded in a
digest id (`digest_<ms>_<suffix>`) always decodes to the shard's date, so a
digest can be located from its id alone. Writes to a shard are serialized
with a per-path lock and land atomically; readers take whole files.
"""

import asyncio
import os
import re
import secrets
import string
from datetime import datetime, timedelta
from pathlib import Path

from pydantic import ValidationError

from fluxdigest.core.datetime_utils import (
    epoch_ms,
    from_epoch_ms,
    local_date_str,
    local_now,
    parse_instant,
    to_iso,
    to_local,
    utc_now,
)
from fluxdigest.core.locks import KeyedLock
from fluxdigest.core.logging import get_logger
from fluxdigest.schemas.digest import ArticleListEntry, ArticleListView, Digest
from fluxdigest.stores.files import read_json, write_json

logger = get_logger(__name__)

DIGEST_DIR_NAME = "digests"
DEFAULT_SCOPE_NAME = "全部订阅"
DEFAULT_HOURS = 12
DEFAULT_LIST_LIMIT = 100
# Digests scanned when an id carries no usable timestamp
RECENT_SCAN_LIMIT = 200

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_digest_id(moment: datetime) -> str:
    """Build `digest_<ms-epoch>_<9 base36 chars>` for a creation instant."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"digest_{epoch_ms(moment)}_{suffix}"


def shard_date_from_id(digest_id: str) -> str | None:
    """Local date (YYYY-MM-DD) encoded in a digest id, or None."""
    parts = digest_id.split("_")
    if len(parts) >= 2 and parts[1].isdigit():
        try:
            return local_date_str(from_epoch_ms(int(parts[1])))
        except (OverflowError, OSError, ValueError):
            return None
    return None


def _timestamp(digest: Digest) -> float:
    moment = parse_instant(digest.generated_at)
    return moment.timestamp() if moment else 0.0


class DigestStore:
    """Per-user digest storage sharded by local date."""

    def __init__(self, data_dir: Path) -> None:
        self.directory = Path(data_dir) / DIGEST_DIR_NAME
        self._locks = KeyedLock()

    def shard_path(self, user: str, date_str: str) -> Path:
        return self.directory / f"{user}_{date_str}.json"

    async def _load_shard(self, path: Path) -> list[Digest]:
        raw = await read_json(path, default=[])
        if not isinstance(raw, list):
            logger.bind(path=str(path)).error("digest_shard_corrupt")
            return []

        digests = []
        for item in raw:
            try:
                digests.append(Digest.model_validate(item))
            except ValidationError as e:
                logger.bind(path=str(path), error=str(e)).warning("digest_record_invalid")
        return digests

    async def _save_shard(self, path: Path, digests: list[Digest]) -> None:
        await write_json(path, [d.to_json_dict() for d in digests])

    async def _user_shards(self, user: str) -> list[tuple[str, Path]]:
        """(date, path) for every shard of a user, newest date first."""
        try:
            names = await asyncio.to_thread(os.listdir, self.directory)
        except FileNotFoundError:
            return []

        pattern = re.compile(rf"^{re.escape(user)}_(\d{{4}}-\d{{2}}-\d{{2}})\.json$")
        shards = []
        for name in names:
            match = pattern.match(name)
            if match:
                shards.append((match.group(1), self.directory / name))
        shards.sort(reverse=True)
        return shards

    async def add(
        self,
        user: str,
        *,
        content: str | None,
        scope: str | None = None,
        scope_id: int | None = None,
        scope_name: str | None = None,
        title: str | None = None,
        article_count: int | None = None,
        hours: int | None = None,
        generated_at: datetime | str | None = None,
    ) -> Digest:
        """Persist a new digest at the head of its date shard.

        Raises:
            StorageError: the shard could not be written
        """
        moment = parse_instant(generated_at) or utc_now()
        local = to_local(moment)
        scope_name = scope_name or DEFAULT_SCOPE_NAME

        digest = Digest(
            id=generate_digest_id(moment),
            scope=scope or "all",
            scope_id=scope_id or None,
            scope_name=scope_name,
            title=title or f"{scope_name} · 简报 {local.strftime('%m-%d-%H:%M')}",
            content=content,
            article_count=article_count or 0,
            hours=hours or DEFAULT_HOURS,
            generated_at=to_iso(moment),
        )

        path = self.shard_path(user, local_date_str(moment))
        async with self._locks.hold(str(path)):
            digests = await self._load_shard(path)
            digests.insert(0, digest)
            await self._save_shard(path, digests)

        logger.bind(user=user, digest_id=digest.id, shard=path.name).info("digest_stored")
        return digest

    async def get(self, user: str, digest_id: str) -> Digest | None:
        date_str = shard_date_from_id(digest_id)
        if date_str:
            for digest in await self._load_shard(self.shard_path(user, date_str)):
                if digest.id == digest_id:
                    return digest

        for digest in await self.list_digests(user, limit=RECENT_SCAN_LIMIT):
            if digest.id == digest_id:
                return digest
        return None

    async def set_read(self, user: str, digest_id: str, is_read: bool = True) -> bool:
        """Set the read flag; returns False when the digest does not exist."""
        date_str = shard_date_from_id(digest_id)
        if not date_str:
            return False

        path = self.shard_path(user, date_str)
        async with self._locks.hold(str(path)):
            digests = await self._load_shard(path)
            for digest in digests:
                if digest.id == digest_id:
                    digest.is_read = is_read
                    await self._save_shard(path, digests)
                    return True
        return False

    async def delete(self, user: str, digest_id: str) -> bool:
        date_str = shard_date_from_id(digest_id)
        if not date_str:
            return False

        path = self.shard_path(user, date_str)
        async with self._locks.hold(str(path)):
            digests = await self._load_shard(path)
            remaining = [d for d in digests if d.id != digest_id]
            if len(remaining) == len(digests):
                return False
            await self._save_shard(path, remaining)

        logger.bind(user=user, digest_id=digest_id).info("digest_deleted")
        return True

    async def list_digests(
        self,
        user: str,
        *,
        limit: int = DEFAULT_LIST_LIMIT,
        before: datetime | str | int | None = None,
        scope: str | None = None,
        scope_id: int | None = None,
        unread_only: bool = False,
    ) -> list[Digest]:
        """Digests strictly older than `before`, newest first.

        Shards dated after `before` are skipped and the shard on `before`'s
        date is cut at `before`. Scanning stops once `limit` matching digests
        have been collected.
        """
        before_dt = parse_instant(before) or utc_now() + timedelta(seconds=1)
        before_date = local_date_str(before_dt)
        before_ts = before_dt.timestamp()

        collected: list[Digest] = []
        for date_str, path in await self._user_shards(user):
            if date_str > before_date:
                continue

            for digest in await self._load_shard(path):
                if date_str == before_date and _timestamp(digest) >= before_ts:
                    continue
                if scope and scope_id:
                    if digest.scope != scope or digest.scope_id != scope_id:
                        continue
                elif scope == "all" and digest.scope != "all":
                    continue
                if unread_only and digest.is_read:
                    continue
                collected.append(digest)

            if len(collected) >= limit:
                break

        collected.sort(key=_timestamp, reverse=True)
        return collected[:limit]

    async def for_article_list(
        self,
        user: str,
        *,
        limit: int | None = None,
        before: datetime | str | int | None = None,
        scope: str | None = None,
        scope_id: int | None = None,
        unread_only: bool = False,
    ) -> ArticleListView:
        """Digests reshaped for the article stream.

        Without `before`, today's unread digests are pinned; everything else
        lands in `normal`.
        """
        digests = await self.list_digests(
            user,
            limit=limit or DEFAULT_LIST_LIMIT,
            before=before,
            scope=scope,
            scope_id=scope_id,
            unread_only=unread_only,
        )

        midnight = local_now().replace(hour=0, minute=0, second=0, microsecond=0).timestamp()
        pinned: list[ArticleListEntry] = []
        normal: list[ArticleListEntry] = []

        for digest in digests:
            entry = ArticleListEntry.from_digest(digest)
            if not before and not digest.is_read and _timestamp(digest) >= midnight:
                pinned.append(entry)
            elif not unread_only or not digest.is_read:
                normal.append(entry)

        return ArticleListView(pinned=pinned, normal=normal)
