"""Per-user preference records.

One JSON object per user at `<data-dir>/preferences/<userHandle>.json`. The
AI API key is held in plaintext only in memory; on disk it is replaced by an
`encryptedApiKey` envelope.
"""

import asyncio
import copy
import os
from pathlib import Path
from typing import Any

from fluxdigest.core.encryption import SecretBox
from fluxdigest.core.exceptions import DecryptionError
from fluxdigest.core.logging import get_logger
from fluxdigest.stores.files import read_json, write_json

logger = get_logger(__name__)

PREFERENCES_DIR_NAME = "preferences"
LEGACY_SCHEDULE_ID = "default"


def migrate_legacy_schedule(prefs: dict[str, Any]) -> bool:
    """Rewrite a singular `digest_schedule` as a one-element `digest_schedules` list.

    Returns True when `prefs` was changed in place.
    """
    if isinstance(prefs.get("digest_schedules"), list):
        return False

    legacy = prefs.get("digest_schedule")
    if not isinstance(legacy, dict):
        return False

    prefs["digest_schedules"] = [{"id": LEGACY_SCHEDULE_ID, **legacy}]
    del prefs["digest_schedule"]
    return True


class PreferenceStore:
    """Loads and saves preference records, encrypting the API key at rest."""

    def __init__(self, data_dir: Path, secret_box: SecretBox) -> None:
        self.directory = Path(data_dir) / PREFERENCES_DIR_NAME
        self.secret_box = secret_box

    def path_for(self, user: str) -> Path:
        return self.directory / f"{user}.json"

    async def get(self, user: str) -> dict[str, Any]:
        """Load a user's preferences; a missing file yields an empty record.

        A legacy `digest_schedule` object is migrated and the migrated form is
        written back before returning.
        """
        prefs = await read_json(self.path_for(user), default={})
        if not isinstance(prefs, dict):
            logger.bind(user=user).error("preferences_corrupt")
            return {}

        ai_config = prefs.get("ai_config")
        if isinstance(ai_config, dict) and ai_config.get("encryptedApiKey"):
            envelope = ai_config.pop("encryptedApiKey")
            try:
                ai_config["apiKey"] = self.secret_box.decrypt(envelope)
            except DecryptionError as e:
                logger.bind(user=user, error=e.message).error("preferences_api_key_decrypt_failed")

        if migrate_legacy_schedule(prefs):
            logger.bind(user=user).info("preferences_legacy_schedule_migrated")
            await self.save(user, prefs)

        return prefs

    async def save(self, user: str, prefs: dict[str, Any]) -> None:
        """Persist preferences, sealing `ai_config.apiKey` into an envelope.

        Raises:
            StorageError: the file could not be written
        """
        to_save = copy.deepcopy(prefs)
        ai_config = to_save.get("ai_config")
        if isinstance(ai_config, dict) and ai_config.get("apiKey"):
            ai_config["encryptedApiKey"] = self.secret_box.encrypt(ai_config.pop("apiKey"))

        await write_json(self.path_for(user), to_save)

    async def list_user_ids(self) -> list[str]:
        """Handles of every user with a preference file."""
        try:
            names = await asyncio.to_thread(os.listdir, self.directory)
        except FileNotFoundError:
            return []
        return sorted(name.removesuffix(".json") for name in names if name.endswith(".json"))
