"""
Channel subscriptions to repositories and organizations.

Storage layout (one document each):
- ``subscriptions``: {"repositories": {"owner/repo" | "owner/": [Subscription]}}
- ``subscribed-turned-off-notifications``: ["Owner/Repo", ...]

Both documents are rewritten whole on every change. Writes go through the
store's compare-and-set with a bounded number of retries, serialized per key
inside this process, so concurrent subscribe/unsubscribe calls cannot silently
drop each other's changes.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections import defaultdict
from typing import Callable

import structlog
from pydantic import BaseModel, Field, ValidationError

from .config import GitHubConfig
from .github import (
    GitHubClient,
    GitHubError,
    full_name_from_owner_and_repo,
    parse_owner_and_repo,
)
from .identity import IdentityDirectory
from .store import KVStore, StoreError

log = structlog.get_logger()

SUBSCRIPTIONS_KEY = "subscriptions"
NOTIFICATIONS_OFF_KEY = "subscribed-turned-off-notifications"
MAX_UPDATE_ATTEMPTS = 5

EXCLUDE_ORG_MEMBER_FLAG = "exclude-org-member"
EXCLUDE_ORG_REPOS_FLAG = "exclude"

FEATURE_ISSUE_CREATIONS = "issue_creations"
FEATURE_ISSUES = "issues"
FEATURE_PULLS = "pulls"
FEATURE_PULLS_MERGED = "pulls_merged"
FEATURE_PUSHES = "pushes"
FEATURE_CREATES = "creates"
FEATURE_DELETES = "deletes"
FEATURE_ISSUE_COMMENTS = "issue_comments"
FEATURE_PULL_REVIEWS = "pull_reviews"
FEATURE_STARS = "stars"

VALID_FEATURES = frozenset({
    FEATURE_ISSUE_CREATIONS,
    FEATURE_ISSUES,
    FEATURE_PULLS,
    FEATURE_PULLS_MERGED,
    FEATURE_PUSHES,
    FEATURE_CREATES,
    FEATURE_DELETES,
    FEATURE_ISSUE_COMMENTS,
    FEATURE_PULL_REVIEWS,
    FEATURE_STARS,
})

DEFAULT_FEATURES = "pulls,issues,creates,deletes"

_LABEL_RE = re.compile(r'^label:"(.*)"$')


class SubscriptionError(Exception):
    """A subscription request was rejected; the message is user-facing."""


class SubscriptionFlags(BaseModel):
    exclude_org_members: bool = False
    exclude_org_repos: bool = False

    def add_flag(self, flag: str) -> None:
        flag = flag.lstrip("-")
        if flag == EXCLUDE_ORG_MEMBER_FLAG:
            self.exclude_org_members = True
        elif flag == EXCLUDE_ORG_REPOS_FLAG:
            self.exclude_org_repos = True

    def __str__(self) -> str:
        flags = []
        if self.exclude_org_members:
            flags.append("--" + EXCLUDE_ORG_MEMBER_FLAG)
        return ",".join(flags)


class Subscription(BaseModel):
    channel_id: str
    creator_id: str
    repository: str = ""
    features: list[str] = Field(default_factory=list)
    flags: SubscriptionFlags = Field(default_factory=SubscriptionFlags)

    def has(self, feature: str) -> bool:
        return feature in self.features

    @property
    def label(self) -> str:
        """The ``label:"name"`` filter, or "" when the subscription has none."""
        for feature in self.features:
            match = _LABEL_RE.match(feature)
            if match:
                return match.group(1)
        return ""

    @property
    def exclude_org_members(self) -> bool:
        return self.flags.exclude_org_members


class SubscriptionDocument(BaseModel):
    repositories: dict[str, list[Subscription]] = Field(default_factory=dict)


def parse_features(features: str | list[str]) -> list[str]:
    if isinstance(features, str):
        features = features.split(",")
    return [f.strip() for f in features if f.strip()]


def validate_features(features: list[str]) -> None:
    """Raise SubscriptionError unless ``features`` is an acceptable set."""
    invalid = []
    labels = []
    for feature in features:
        if feature in VALID_FEATURES:
            continue
        if feature.startswith("label"):
            labels.append(feature)
            continue
        invalid.append(feature)

    if invalid:
        raise SubscriptionError(f"Invalid feature(s) provided: {','.join(invalid)}")
    if FEATURE_ISSUES in features and FEATURE_ISSUE_CREATIONS in features:
        raise SubscriptionError("Feature list cannot contain both issue and issue_creations")
    if len(labels) > 1:
        raise SubscriptionError("Only one label filter is allowed per subscription.")
    if labels and FEATURE_PULLS not in features and FEATURE_ISSUES not in features:
        raise SubscriptionError('Feature list must have "pulls" or "issues" when using a label.')


class SubscriptionStore:
    """Read-modify-write access to the subscription and notification-off documents."""

    def __init__(self, store: KVStore, max_attempts: int = MAX_UPDATE_ATTEMPTS):
        self._store = store
        self._max_attempts = max_attempts
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _update(self, key: str, mutate: Callable[[bytes | None], bytes | None]) -> None:
        """Apply ``mutate`` to the stored document with compare-and-set.

        ``mutate`` returns the new serialized document, or None for no change.
        """
        async with self._locks[key]:
            for attempt in range(self._max_attempts):
                current = await self._store.get(key)
                updated = mutate(current)
                if updated is None:
                    return
                if await self._store.compare_and_set(key, current, updated):
                    return
                log.warning("subscriptions.write_conflict", key=key, attempt=attempt + 1)
        raise StoreError(f"could not update {key}: too many concurrent writers")

    # --- Subscriptions ---

    @staticmethod
    def _decode(raw: bytes | None) -> SubscriptionDocument:
        if not raw:
            return SubscriptionDocument()
        try:
            return SubscriptionDocument.model_validate_json(raw)
        except ValidationError as exc:
            raise StoreError(f"could not decode {SUBSCRIPTIONS_KEY}: {exc}") from exc

    async def get_subscriptions(self) -> SubscriptionDocument:
        return self._decode(await self._store.get(SUBSCRIPTIONS_KEY))

    async def subscriptions_for_key(self, key: str) -> list[Subscription]:
        doc = await self.get_subscriptions()
        return list(doc.repositories.get(key, []))

    async def add_subscription(self, repo_key: str, sub: Subscription) -> None:
        """Store ``sub`` under ``repo_key``, replacing the channel's existing entry."""

        def mutate(raw: bytes | None) -> bytes:
            doc = self._decode(raw)
            subs = doc.repositories.setdefault(repo_key, [])
            for index, existing in enumerate(subs):
                if existing.channel_id == sub.channel_id:
                    subs[index] = sub
                    break
            else:
                subs.append(sub)
            return doc.model_dump_json().encode()

        await self._update(SUBSCRIPTIONS_KEY, mutate)
        log.info("subscriptions.added", repo=repo_key, channel_id=sub.channel_id)

    async def remove_subscription(self, channel_id: str, repo_key: str) -> bool:
        removed = False

        def mutate(raw: bytes | None) -> bytes | None:
            nonlocal removed
            doc = self._decode(raw)
            subs = doc.repositories.get(repo_key)
            if not subs:
                return None
            remaining = [s for s in subs if s.channel_id != channel_id]
            if len(remaining) == len(subs):
                return None
            doc.repositories[repo_key] = remaining
            removed = True
            return doc.model_dump_json().encode()

        await self._update(SUBSCRIPTIONS_KEY, mutate)
        if removed:
            log.info("subscriptions.removed", repo=repo_key, channel_id=channel_id)
        return removed

    async def subscriptions_by_channel(self, channel_id: str) -> list[Subscription]:
        doc = await self.get_subscriptions()
        found = []
        for repo_key, subs in doc.repositories.items():
            for sub in subs:
                if sub.channel_id != channel_id:
                    continue
                if not sub.repository:
                    sub = sub.model_copy(update={"repository": repo_key})
                found.append(sub)
        return sorted(found, key=lambda s: s.repository)

    # --- Notification-off list ---

    @staticmethod
    def _decode_repo_list(raw: bytes | None) -> list[str]:
        if not raw:
            return []
        try:
            repos = json.loads(raw)
        except ValueError as exc:
            raise StoreError(f"could not decode {NOTIFICATIONS_OFF_KEY}: {exc}") from exc
        if not isinstance(repos, list):
            raise StoreError(f"could not decode {NOTIFICATIONS_OFF_KEY}: not a list")
        return [str(r) for r in repos]

    async def get_excluded_notification_repos(self) -> list[str]:
        return self._decode_repo_list(await self._store.get(NOTIFICATIONS_OFF_KEY))

    async def add_excluded_notification_repo(self, repo_name: str) -> None:
        def mutate(raw: bytes | None) -> bytes | None:
            repos = self._decode_repo_list(raw)
            if repo_name in repos:
                return None
            repos.append(repo_name)
            return json.dumps(repos).encode()

        await self._update(NOTIFICATIONS_OFF_KEY, mutate)
        log.info("subscriptions.notifications_disabled", repo=repo_name)

    async def remove_excluded_notification_repo(self, repo_name: str) -> None:
        def mutate(raw: bytes | None) -> bytes | None:
            repos = self._decode_repo_list(raw)
            if repo_name not in repos:
                return None
            repos.remove(repo_name)
            return json.dumps(repos).encode()

        await self._update(NOTIFICATIONS_OFF_KEY, mutate)

    async def is_notification_off(self, repo_name: str) -> bool:
        try:
            repos = await self.get_excluded_notification_repos()
        except StoreError as exc:
            log.warning("subscriptions.notifications_off_read_failed", error=str(exc))
            return False
        return repo_name in repos


class SubscriptionManager:
    """Subscribe and unsubscribe channels, validating against GitHub."""

    def __init__(
        self,
        store: SubscriptionStore,
        github: GitHubClient,
        identity: IdentityDirectory,
        config: GitHubConfig,
    ):
        self._store = store
        self._github = github
        self._identity = identity
        self._config = config

    def check_org(self, owner: str) -> None:
        org = self._config.organization
        if org and owner.lower() != org:
            raise SubscriptionError(f"Only repositories in the {org} organization are supported")

    async def subscribe(
        self,
        user_id: str,
        owner: str,
        repo: str,
        channel_id: str,
        features: str | list[str] = DEFAULT_FEATURES,
        flags: SubscriptionFlags | None = None,
    ) -> str:
        """Subscribe ``channel_id`` to ``owner/repo`` (or the whole owner when repo is "")."""
        flags = flags or SubscriptionFlags()
        if not owner:
            raise SubscriptionError("invalid repository")

        owner = owner.lower()
        repo = repo.lower()
        full_name = full_name_from_owner_and_repo(owner, repo)

        self.check_org(owner)
        if flags.exclude_org_members and not self._config.organization_locked:
            raise SubscriptionError(
                "Unable to set --exclude-org-member flag. "
                "The GitHub plugin is not locked to a single organization."
            )
        if flags.exclude_org_repos and repo:
            raise SubscriptionError("--exclude feature currently support on organization level.")

        feature_list = parse_features(features)
        validate_features(feature_list)

        info = await self._identity.get_user_info(user_id)
        if info is None:
            raise SubscriptionError("You must connect your account to GitHub first.")

        ghrepo = None
        try:
            if not repo:
                found = await self._github.get_organization(owner, info.access_token)
                if found is None:
                    found = await self._github.get_user(owner, info.access_token)
                if found is None:
                    raise SubscriptionError(f"Unknown organization {owner}")
            else:
                ghrepo = await self._github.get_repository(owner, repo, info.access_token)
                if ghrepo is None:
                    raise SubscriptionError(f"unknown repository {full_name}")
        except GitHubError as exc:
            log.warning("subscriptions.lookup_failed", repo=full_name, error=str(exc))
            raise SubscriptionError(f"Encountered an error subscribing to {full_name}") from exc

        sub = Subscription(
            channel_id=channel_id,
            creator_id=user_id,
            repository=full_name,
            features=feature_list,
            flags=flags,
        )
        await self._store.add_subscription(full_name, sub)

        if not repo:
            return f"Successfully subscribed to organization {owner}."

        msg = f"Successfully subscribed to {repo}."
        if ghrepo and ghrepo.get("private"):
            msg += (
                "\n\n**Warning:** You subscribed to a private repository. Anyone with "
                "access to this channel will be able to read the events getting posted here."
            )
        return msg

    async def subscribe_org(
        self,
        user_id: str,
        org: str,
        channel_id: str,
        features: str | list[str] = DEFAULT_FEATURES,
        flags: SubscriptionFlags | None = None,
        exclude_repos: list[str] | None = None,
    ) -> str:
        """Subscribe to every repository of ``org``, optionally muting some of them."""
        if not org:
            raise SubscriptionError("invalid organization")

        flags = flags or SubscriptionFlags()
        exclude_repos = [r.strip() for r in exclude_repos or [] if r.strip()]
        if exclude_repos:
            flags.exclude_org_repos = True
            for name in exclude_repos:
                owner, repo = parse_owner_and_repo(name, self._config.base_url)
                if owner.lower() != org.lower():
                    raise SubscriptionError(
                        f"--exclude repository {repo} is not of subscribed organization."
                    )

        msg = await self.subscribe(user_id, org, "", channel_id, features, flags)

        for name in exclude_repos:
            await self._store.add_excluded_notification_repo(name)
        if exclude_repos:
            msg += "\n\nNotifications are disabled for " + " and ".join(exclude_repos)
        return msg

    async def unsubscribe(self, channel_id: str, repo: str) -> str:
        owner, name = parse_owner_and_repo(repo, self._config.base_url)
        if not owner and not name:
            raise SubscriptionError("invalid repository")

        await self._store.remove_excluded_notification_repo(repo)
        repo_key = full_name_from_owner_and_repo(owner.lower(), name.lower())
        await self._store.remove_subscription(channel_id, repo_key)
        return f"Successfully unsubscribed from {repo}."

    async def subscriptions_by_channel(self, channel_id: str) -> list[Subscription]:
        return await self._store.subscriptions_by_channel(channel_id)
