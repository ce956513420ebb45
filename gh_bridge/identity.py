"""
Chat user ↔ GitHub account mapping.

Stores, per connected chat user, the GitHub login and access token used on
that user's behalf, plus the reverse index from GitHub login to chat user.
"""

from __future__ import annotations

import structlog
from pydantic import BaseModel, ValidationError

from .store import KVStore, StoreError

log = structlog.get_logger()

TOKEN_KEY_SUFFIX = "_githubtoken"
USERNAME_KEY_SUFFIX = "_githubusername"


class GitHubUserInfo(BaseModel):
    user_id: str
    github_username: str
    access_token: str


class IdentityDirectory:
    """Resolves chat user ids and GitHub logins in both directions."""

    def __init__(self, store: KVStore):
        self._store = store

    async def link(self, user_id: str, github_username: str, access_token: str) -> None:
        info = GitHubUserInfo(
            user_id=user_id,
            github_username=github_username,
            access_token=access_token,
        )
        await self._store.set(user_id + TOKEN_KEY_SUFFIX, info.model_dump_json().encode())
        await self._store.set(github_username + USERNAME_KEY_SUFFIX, user_id.encode())
        log.info("identity.linked", user_id=user_id, github_username=github_username)

    async def unlink(self, user_id: str) -> None:
        info = await self.get_user_info(user_id)
        await self._store.delete(user_id + TOKEN_KEY_SUFFIX)
        if info:
            await self._store.delete(info.github_username + USERNAME_KEY_SUFFIX)
        log.info("identity.unlinked", user_id=user_id)

    async def get_user_info(self, user_id: str) -> GitHubUserInfo | None:
        if not user_id:
            return None
        try:
            raw = await self._store.get(user_id + TOKEN_KEY_SUFFIX)
        except StoreError as exc:
            log.warning("identity.read_failed", user_id=user_id, error=str(exc))
            return None
        if not raw:
            return None
        try:
            return GitHubUserInfo.model_validate_json(raw)
        except ValidationError as exc:
            log.warning("identity.decode_failed", user_id=user_id, error=str(exc))
            return None

    async def github_to_user_id(self, github_username: str) -> str:
        """Chat user id for a GitHub login, or "" if nobody connected it."""
        if not github_username:
            return ""
        try:
            raw = await self._store.get(github_username + USERNAME_KEY_SUFFIX)
        except StoreError as exc:
            log.warning("identity.read_failed", github_username=github_username, error=str(exc))
            return ""
        return raw.decode() if raw else ""

    async def user_id_to_github(self, user_id: str) -> str:
        info = await self.get_user_info(user_id)
        return info.github_username if info else ""
