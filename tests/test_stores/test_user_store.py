"""Tests for local user accounts."""

import json
import stat
from pathlib import Path

import pytest

from fluxdigest.stores.user_store import UserExistsError, UserNotFoundError, UserStore

pytestmark = pytest.mark.asyncio


@pytest.fixture
def store(tmp_path: Path) -> UserStore:
    return UserStore(tmp_path)


class TestUserStore:
    """Tests for UserStore."""

    async def test_init_creates_default_admin(self, store: UserStore, log_events):
        await store.init()
        assert await store.authenticate("admin", "admin") is not None
        assert any(e["event"] == "default_admin_created" for e in log_events)

    async def test_init_keeps_existing_users(self, store: UserStore):
        await store.create_user("alice", "pw")
        await store.init()
        assert await store.authenticate("admin", "admin") is None

    async def test_file_is_private_and_hashed(self, store: UserStore):
        await store.create_user("alice", "pw")
        mode = stat.S_IMODE(store.path.stat().st_mode)
        assert mode == 0o600

        record = json.loads(store.path.read_text(encoding="utf-8"))["alice"]
        assert "pw" not in record.values()
        assert len(record["hash"]) == 128
        assert len(record["salt"]) == 32

    async def test_authenticate(self, store: UserStore):
        await store.create_user("alice", "pw")
        user = await store.authenticate("alice", "pw")
        assert user["username"] == "alice"
        assert "hash" not in user and "salt" not in user
        assert await store.authenticate("alice", "nope") is None
        assert await store.authenticate("bob", "pw") is None

    async def test_duplicate_user(self, store: UserStore):
        await store.create_user("alice", "pw")
        with pytest.raises(UserExistsError):
            await store.create_user("alice", "other")

    async def test_change_password(self, store: UserStore):
        await store.create_user("alice", "pw")
        await store.change_password("alice", "new")
        assert await store.authenticate("alice", "pw") is None
        assert await store.authenticate("alice", "new") is not None

    async def test_change_password_unknown_user(self, store: UserStore):
        with pytest.raises(UserNotFoundError):
            await store.change_password("ghost", "x")
