"""
Recording fakes for the chat sink and GitHub API, plus webhook payload builders.
"""

from __future__ import annotations

from typing import Any

from gh_bridge.chat import ChatError
from gh_bridge.events import (
    IssueCommentEvent,
    IssuesEvent,
    PullRequestEvent,
    PullRequestReviewEvent,
)
from gh_bridge.github import GitHubError
from gh_bridge.subscriptions import Subscription, SubscriptionFlags, SubscriptionStore, parse_features

REPO = "acme/widgets"


class FakeChat:
    bot_user_id = "github-bot"

    def __init__(self):
        self.posts: list[tuple[str, str, str]] = []
        self.direct: list[tuple[str, str, str]] = []
        self.refreshed: list[str] = []
        self.fail_channels: set[str] = set()
        self.fail_users: set[str] = set()

    async def create_post(self, channel_id: str, message: str, post_type: str = "") -> None:
        if channel_id in self.fail_channels:
            raise ChatError(f"POST /api/v4/posts returned 500 for {channel_id}")
        self.posts.append((channel_id, message, post_type))

    async def create_direct_post(self, user_id: str, message: str, post_type: str = "") -> None:
        if user_id in self.fail_users:
            raise ChatError(f"no direct channel returned for {user_id}")
        self.direct.append((user_id, message, post_type))

    async def publish_refresh(self, user_id: str) -> None:
        self.refreshed.append(user_id)

    @property
    def channels(self) -> list[str]:
        return [channel_id for channel_id, _, _ in self.posts]

    @property
    def dm_users(self) -> list[str]:
        return [user_id for user_id, _, _ in self.direct]


class FakeGitHub:
    """
    In-memory GitHub. Repositories are readable by every token unless
    ``readers`` restricts them to a set of tokens.
    """

    def __init__(self):
        self.repos: dict[str, dict[str, Any]] = {}
        self.readers: dict[str, set[str]] = {}
        self.orgs: set[str] = set()
        self.users: set[str] = set()
        self.org_members: set[str] = set()
        self.calls: list[tuple[str, ...]] = []
        self.fail = False

    def add_repo(self, full_name: str, private: bool = False, readers: set[str] | None = None) -> None:
        self.repos[full_name.lower()] = {"full_name": full_name, "private": private}
        if readers is not None:
            self.readers[full_name.lower()] = readers

    async def get_repository(self, owner: str, repo: str, token: str) -> dict | None:
        name = f"{owner}/{repo}".lower()
        self.calls.append(("repo", name, token))
        if self.fail:
            raise GitHubError(f"GET /repos/{name} failed: connection refused")
        if name not in self.repos:
            return None
        readers = self.readers.get(name)
        if readers is not None and token not in readers:
            return None
        return self.repos[name]

    async def get_organization(self, org: str, token: str) -> dict | None:
        self.calls.append(("org", org, token))
        if self.fail:
            raise GitHubError(f"GET /orgs/{org} failed")
        return {"login": org} if org in self.orgs else None

    async def get_user(self, username: str, token: str) -> dict | None:
        self.calls.append(("user", username, token))
        return {"login": username} if username in self.users else None

    async def is_org_member(self, org: str, username: str, token: str) -> bool:
        self.calls.append(("member", org, username, token))
        if self.fail:
            raise GitHubError(f"membership check for {username} in {org} returned 500")
        return username in self.org_members


async def add_sub(
    store: SubscriptionStore,
    channel_id: str,
    repo_key: str = REPO,
    features: str = "pulls,issues,creates,deletes",
    creator_id: str = "u-creator",
    exclude_org_members: bool = False,
) -> Subscription:
    sub = Subscription(
        channel_id=channel_id,
        creator_id=creator_id,
        repository=repo_key,
        features=parse_features(features),
        flags=SubscriptionFlags(exclude_org_members=exclude_org_members),
    )
    await store.add_subscription(repo_key, sub)
    return sub


# ── Payload builders ──


def repository(full_name: str = REPO, private: bool = False) -> dict[str, Any]:
    return {
        "full_name": full_name,
        "name": full_name.split("/")[1],
        "html_url": f"https://github.com/{full_name}",
        "private": private,
    }


def user(login: str) -> dict[str, Any]:
    return {"login": login, "html_url": f"https://github.com/{login}"}


def labels(*names: str) -> list[dict[str, str]]:
    return [{"name": name} for name in names]


def pull_request_payload(
    action: str = "opened",
    sender: str = "alice",
    author: str = "alice",
    label_names: tuple[str, ...] = (),
    applied_label: str | None = None,
    body: str = "",
    merged: bool = False,
    private: bool = False,
    requested_reviewer: str | None = None,
    assignee: str | None = None,
    full_name: str = REPO,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "action": action,
        "number": 7,
        "sender": user(sender),
        "repository": repository(full_name, private),
        "pull_request": {
            "number": 7,
            "title": "Add widget polishing",
            "body": body,
            "html_url": f"https://github.com/{full_name}/pull/7",
            "state": "closed" if action == "closed" else "open",
            "merged": merged,
            "user": user(author),
            "labels": labels(*label_names),
        },
    }
    if applied_label is not None:
        payload["label"] = {"name": applied_label}
    if requested_reviewer:
        payload["requested_reviewer"] = user(requested_reviewer)
    if assignee:
        payload["assignee"] = user(assignee)
        payload["pull_request"]["assignee"] = user(assignee)
    return payload


def pull_request_event(**kwargs: Any) -> PullRequestEvent:
    return PullRequestEvent.model_validate(pull_request_payload(**kwargs))


def issue_payload(
    number: int = 12,
    author: str = "alice",
    label_names: tuple[str, ...] = (),
    assignees: tuple[str, ...] = (),
    created_at: str = "2024-05-01T10:00:00Z",
    kind: str = "issues",
    full_name: str = REPO,
) -> dict[str, Any]:
    return {
        "number": number,
        "title": "Widgets wobble",
        "body": "They wobble a lot.",
        "html_url": f"https://github.com/{full_name}/{kind}/{number}",
        "state": "open",
        "user": user(author),
        "assignees": [user(a) for a in assignees],
        "labels": labels(*label_names),
        "created_at": created_at,
    }


def issues_event(
    action: str = "opened",
    sender: str = "alice",
    author: str = "alice",
    label_names: tuple[str, ...] = (),
    applied_label: str | None = None,
    assignee: str | None = None,
    created_at: str = "2024-05-01T10:00:00Z",
    private: bool = False,
    full_name: str = REPO,
) -> IssuesEvent:
    payload: dict[str, Any] = {
        "action": action,
        "sender": user(sender),
        "repository": repository(full_name, private),
        "issue": issue_payload(
            author=author, label_names=label_names, created_at=created_at, full_name=full_name
        ),
    }
    if applied_label is not None:
        payload["label"] = {"name": applied_label}
    if assignee:
        payload["assignee"] = user(assignee)
    return IssuesEvent.model_validate(payload)


def issue_comment_event(
    body: str,
    action: str = "created",
    sender: str = "carol",
    author: str = "alice",
    assignees: tuple[str, ...] = (),
    label_names: tuple[str, ...] = (),
    kind: str = "issues",
    private: bool = False,
) -> IssueCommentEvent:
    return IssueCommentEvent.model_validate({
        "action": action,
        "sender": user(sender),
        "repository": repository(REPO, private),
        "issue": issue_payload(
            author=author, label_names=label_names, assignees=assignees, kind=kind
        ),
        "comment": {
            "body": body,
            "html_url": f"https://github.com/{REPO}/{kind}/12#issuecomment-1",
            "user": user(sender),
        },
    })


def review_event(
    state: str = "approved",
    action: str = "submitted",
    sender: str = "bob",
    author: str = "alice",
    label_names: tuple[str, ...] = (),
) -> PullRequestReviewEvent:
    pr = pull_request_payload(author=author, label_names=label_names)["pull_request"]
    return PullRequestReviewEvent.model_validate({
        "action": action,
        "sender": user(sender),
        "repository": repository(),
        "review": {
            "state": state,
            "body": "Looks good",
            "html_url": f"https://github.com/{REPO}/pull/7#pullrequestreview-1",
            "user": user(sender),
        },
        "pull_request": pr,
    })
