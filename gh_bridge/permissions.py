"""
Live permission checks against GitHub using stored user credentials.

Nothing is cached: each answer reflects what GitHub says right now.
"""

from __future__ import annotations

import structlog

from .config import GitHubConfig
from .github import GitHubClient, GitHubError, parse_owner_and_repo
from .identity import IdentityDirectory
from .subscriptions import Subscription

log = structlog.get_logger()


class PermissionOracle:
    def __init__(self, github: GitHubClient, identity: IdentityDirectory, config: GitHubConfig):
        self._github = github
        self._identity = identity
        self._config = config

    async def can_see(self, user_id: str, owner_and_repo: str) -> bool:
        """
        Whether ``user_id``'s GitHub account can read ``owner_and_repo``.

        Fails closed: unknown users, users without a stored token, owners
        outside the locked organization and any lookup error all mean no.
        """
        if not user_id:
            return False

        owner, repo = parse_owner_and_repo(owner_and_repo, self._config.base_url)
        if not owner:
            return False
        if self._config.organization and owner.lower() != self._config.organization:
            return False

        info = await self._identity.get_user_info(user_id)
        if info is None:
            return False

        try:
            result = await self._github.get_repository(owner, repo, info.access_token)
        except GitHubError as exc:
            log.warning("permissions.repo_fetch_failed", repo=owner_and_repo, error=str(exc))
            return False
        return result is not None

    async def exclude_org_member(self, sender: str, sub: Subscription) -> bool:
        """
        Whether ``sender`` should be filtered out for ``sub`` because they are
        a member of the configured organization.

        Membership is checked with the subscription creator's credential. If
        the creator's credential is missing or the lookup fails, the event is
        not filtered.
        """
        if not sub.exclude_org_members:
            return False

        info = await self._identity.get_user_info(sub.creator_id)
        if info is None:
            log.warning("permissions.exclude_org_member_no_creator", creator_id=sub.creator_id)
            return False

        try:
            return await self._github.is_org_member(
                self._config.organization, sender, info.access_token
            )
        except GitHubError as exc:
            log.warning("permissions.org_membership_failed", sender=sender, error=str(exc))
            return False
