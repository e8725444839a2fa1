from pathlib import Path
from typing import Any

from fluxdigest.core.datetime_utils import to_iso, utc_now
from fluxdigest.core.logging import get_logger
from fluxdigest.core.security import hash_password, verify_password
from fluxdigest.stores.files import read_json, write_json

logger = get_logger(__name__)

USERS_FILE_NAME = "users.json"
DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_PASSWORD = "admin"


class UserExistsError(ValueError):
    pass


class UserNotFoundError(LookupError):
    pass


class UserStore:
    """Local accounts in `<data-dir>/users.json` (mode 0600)."""

    def __init__(self, data_dir: Path) -> None:
        self.path = Path(data_dir) / USERS_FILE_NAME

    async def _load(self) -> dict[str, dict[str, Any]]:
        users = await read_json(self.path, default={})
        return users if isinstance(users, dict) else {}

    async def _save(self, users: dict[str, dict[str, Any]]) -> None:
        await write_json(self.path, users, mode=0o600)

    async def init(self) -> None:
        """Create the default admin account when no users exist."""
        if await self._load():
            return
        await self.create_user(DEFAULT_ADMIN_USERNAME, DEFAULT_ADMIN_PASSWORD)
        logger.bind(username=DEFAULT_ADMIN_USERNAME).warning("default_admin_created")

    async def create_user(self, username: str, password: str) -> None:
        users = await self._load()
        if username in users:
            raise UserExistsError(f"User already exists: {username}")

        password_hash, salt = hash_password(password)
        users[username] = {
            "username": username,
            "hash": password_hash,
            "salt": salt,
            "created_at": to_iso(utc_now()),
        }
        await self._save(users)

    async def authenticate(self, username: str, password: str) -> dict[str, Any] | None:
        """Return the user without its hash and salt, or None on bad credentials."""
        user = (await self._load()).get(username)
        if not user or not verify_password(password, user.get("hash", ""), user.get("salt", "")):
            return None
        return {k: v for k, v in user.items() if k not in ("hash", "salt")}

    async def change_password(self, username: str, new_password: str) -> None:
        users = await self._load()
        if username not in users:
            raise UserNotFoundError(f"User not found: {username}")

        password_hash, salt = hash_password(new_password)
        users[username].update(hash=password_hash, salt=salt, updated_at=to_iso(utc_now()))
        await self._save(users)
