"""
Subscription matching: which subscriptions apply to a repository.
"""

from __future__ import annotations

import asyncio

import structlog

from .permissions import PermissionOracle
from .store import StoreError
from .subscriptions import Subscription, SubscriptionStore

log = structlog.get_logger()


class SubscriptionMatcher:
    def __init__(self, store: SubscriptionStore, permissions: PermissionOracle):
        self._store = store
        self._permissions = permissions

    async def subscriptions_for(self, repo_full_name: str, private: bool) -> list[Subscription]:
        """
        Repository subscriptions followed by organization subscriptions.

        For private repositories, subscriptions whose creator can no longer
        see the repository are dropped. Each distinct creator is checked once.
        A store read failure yields no subscriptions.
        """
        name = repo_full_name.lower()
        org = name.split("/")[0]

        try:
            doc = await self._store.get_subscriptions()
        except StoreError as exc:
            log.warning("matcher.read_failed", repo=repo_full_name, error=str(exc))
            return []

        candidates = list(doc.repositories.get(name, []))
        candidates.extend(doc.repositories.get(f"{org}/", []))
        if not candidates or not private:
            return candidates

        creators = sorted({sub.creator_id for sub in candidates})
        allowed = await asyncio.gather(
            *(self._permissions.can_see(creator, name) for creator in creators)
        )
        visible = {creator for creator, ok in zip(creators, allowed) if ok}

        subs = [sub for sub in candidates if sub.creator_id in visible]
        if len(subs) < len(candidates):
            log.debug(
                "matcher.private_filtered",
                repo=repo_full_name,
                dropped=len(candidates) - len(subs),
            )
        return subs
