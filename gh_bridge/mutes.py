"""
Per-user mute lists.

A user's mute list is stored as a comma-joined string of GitHub logins under
``<user_id>-muted-users``. Commas are not valid in GitHub logins, so splitting
on them is lossless.
"""

from __future__ import annotations

import structlog

from .store import KVStore, StoreError

log = structlog.get_logger()

MUTED_USERS_KEY_SUFFIX = "-muted-users"


class MuteError(Exception):
    """A mute request was rejected; the message is user-facing."""


class MuteList:
    def __init__(self, store: KVStore):
        self._store = store

    @staticmethod
    def _key(user_id: str) -> str:
        return user_id + MUTED_USERS_KEY_SUFFIX

    async def list(self, user_id: str) -> list[str]:
        raw = await self._store.get(self._key(user_id))
        if not raw:
            return []
        return [name for name in raw.decode().split(",") if name]

    async def _save(self, user_id: str, usernames: list[str]) -> None:
        await self._store.set(self._key(user_id), ",".join(usernames).encode())

    async def add(self, user_id: str, username: str) -> None:
        if not username or "," in username:
            raise MuteError("Invalid username provided")
        muted = await self.list(user_id)
        if username in muted:
            raise MuteError(f"{username} is already muted")
        muted.append(username)
        await self._save(user_id, muted)
        log.info("mutes.added", user_id=user_id, username=username)

    async def remove(self, user_id: str, username: str) -> None:
        muted = await self.list(user_id)
        await self._save(user_id, [name for name in muted if name != username])
        log.info("mutes.removed", user_id=user_id, username=username)

    async def remove_all(self, user_id: str) -> None:
        await self._save(user_id, [])
        log.info("mutes.cleared", user_id=user_id)

    async def is_muted(self, user_id: str, sender: str) -> bool:
        """True if ``user_id`` muted GitHub login ``sender``; read failures mean not muted."""
        try:
            muted = await self.list(user_id)
        except StoreError as exc:
            log.warning("mutes.read_failed", user_id=user_id, error=str(exc))
            return False
        return sender in muted
