"""Upstream Miniflux connection settings.

The environment (`MINIFLUX_URL` with `MINIFLUX_API_KEY`, or
`MINIFLUX_USERNAME`/`MINIFLUX_PASSWORD`) takes precedence. Otherwise the
manual configuration saved from the settings UI is used; its password and
API key are stored as encrypted envelopes in `miniflux-config.json`.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fluxdigest.config import Settings
from fluxdigest.core.datetime_utils import to_iso, utc_now
from fluxdigest.core.encryption import SecretBox
from fluxdigest.core.exceptions import DecryptionError
from fluxdigest.core.logging import get_logger
from fluxdigest.schemas.preferences import MASKED_SECRET
from fluxdigest.stores.files import read_json, write_json

logger = get_logger(__name__)

CONFIG_FILE_NAME = "miniflux-config.json"
AUTH_TYPE_API_KEY = "api_key"
AUTH_TYPE_BASIC = "basic"


@dataclass(frozen=True)
class MinifluxConfig:
    url: str
    auth_type: str
    source: str
    username: str | None = None
    password: str | None = None
    api_key: str | None = None

    @property
    def fingerprint(self) -> str:
        return f"{self.url}:{self.username}:{self.password}:{self.api_key}"


class MinifluxConfigStore:
    def __init__(self, settings: Settings, secret_box: SecretBox) -> None:
        self.settings = settings
        self.secret_box = secret_box
        self.path = Path(settings.data_dir) / CONFIG_FILE_NAME

    @property
    def env_configured(self) -> bool:
        return self.settings.miniflux_env_configured

    def _decrypt(self, envelope: Any) -> str | None:
        if not envelope:
            return None
        try:
            return self.secret_box.decrypt(envelope)
        except DecryptionError as e:
            logger.bind(error=e.message).error("miniflux_config_decrypt_failed")
            return None

    async def _load_manual(self) -> dict[str, Any] | None:
        data = await read_json(self.path)
        if not isinstance(data, dict):
            return None
        data["password"] = self._decrypt(data.pop("encryptedPassword", None))
        data["apiKey"] = self._decrypt(data.pop("encryptedApiKey", None))
        return data

    async def get_config(self) -> MinifluxConfig | None:
        """Effective configuration, or None when nothing usable is configured."""
        s = self.settings
        if self.env_configured:
            if s.miniflux_api_key:
                return MinifluxConfig(
                    url=s.miniflux_url,
                    auth_type=AUTH_TYPE_API_KEY,
                    source="env",
                    api_key=s.miniflux_api_key,
                )
            return MinifluxConfig(
                url=s.miniflux_url,
                auth_type=AUTH_TYPE_BASIC,
                source="env",
                username=s.miniflux_username,
                password=s.miniflux_password,
            )

        manual = await self._load_manual()
        if not manual or not manual.get("url"):
            return None

        if manual.get("authType") == AUTH_TYPE_API_KEY and manual.get("apiKey"):
            return MinifluxConfig(
                url=manual["url"],
                auth_type=AUTH_TYPE_API_KEY,
                source="manual",
                api_key=manual["apiKey"],
            )
        if manual.get("username") and manual.get("password"):
            return MinifluxConfig(
                url=manual["url"],
                auth_type=AUTH_TYPE_BASIC,
                source="manual",
                username=manual["username"],
                password=manual["password"],
            )
        return None

    async def safe_config(self) -> dict[str, Any]:
        """Configuration summary without secrets."""
        config = await self.get_config()
        if config is None:
            return {
                "configured": False,
                "url": None,
                "username": None,
                "authType": None,
                "source": None,
            }
        return {
            "configured": True,
            "url": config.url,
            "username": config.username,
            "authType": config.auth_type,
            "apiKey": MASKED_SECRET if config.auth_type == AUTH_TYPE_API_KEY else None,
            "source": config.source,
        }

    async def save_manual(
        self,
        url: str,
        username: str | None = None,
        password: str | None = None,
        api_key: str | None = None,
        auth_type: str | None = None,
    ) -> None:
        """Persist the manual configuration with encrypted credentials.

        Raises:
            StorageError: the file could not be written
        """
        await write_json(
            self.path,
            {
                "url": url,
                "username": username,
                "encryptedPassword": self.secret_box.encrypt(password),
                "encryptedApiKey": self.secret_box.encrypt(api_key),
                "authType": auth_type or AUTH_TYPE_BASIC,
                "updated_at": to_iso(utc_now()),
            },
        )
        logger.bind(url=url, auth_type=auth_type or AUTH_TYPE_BASIC).info("miniflux_config_saved")

    async def clear_manual(self) -> None:
        await asyncio.to_thread(self.path.unlink, missing_ok=True)
