"""
Typed GitHub webhook events.

Each of the nine supported event kinds has its own immutable model; the
``X-GitHub-Event`` header value selects which one a payload is parsed into.
Unknown payload fields are ignored.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class EventParseError(ValueError):
    """The webhook body is not JSON or does not fit the event model."""


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class User(_Frozen):
    login: str = ""
    html_url: str = ""


class Label(_Frozen):
    name: str = ""


class Repository(_Frozen):
    full_name: str = ""
    name: str = ""
    html_url: str = ""
    private: bool = False

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]


class PullRequest(_Frozen):
    number: int = 0
    title: str = ""
    body: str | None = None
    html_url: str = ""
    state: str = ""
    merged: bool | None = None
    user: User = Field(default_factory=User)
    assignee: User | None = None
    labels: list[Label] = Field(default_factory=list)

    @property
    def label_names(self) -> list[str]:
        return [label.name for label in self.labels]


class Issue(_Frozen):
    number: int = 0
    title: str = ""
    body: str | None = None
    html_url: str = ""
    state: str = ""
    user: User = Field(default_factory=User)
    assignees: list[User] = Field(default_factory=list)
    labels: list[Label] = Field(default_factory=list)
    created_at: datetime | None = None

    @property
    def label_names(self) -> list[str]:
        return [label.name for label in self.labels]

    @property
    def is_pull_request(self) -> bool | None:
        """Tell PR conversations from issues by their URL; None if neither."""
        parts = self.html_url.split("/")
        if len(parts) < 2:
            return None
        kind = parts[-2]
        if kind == "pull":
            return True
        if kind == "issues":
            return False
        return None


class Comment(_Frozen):
    body: str | None = None
    html_url: str = ""
    user: User = Field(default_factory=User)


class Review(_Frozen):
    state: str = ""
    body: str | None = None
    html_url: str = ""
    user: User = Field(default_factory=User)


class CommitAuthor(_Frozen):
    name: str = ""
    username: str = ""


class Commit(_Frozen):
    id: str = ""
    message: str = ""
    url: str = ""
    author: CommitAuthor = Field(default_factory=CommitAuthor)


class _Event(_Frozen):
    sender: User = Field(default_factory=User)
    repository: Repository = Field(default_factory=Repository)


class PushEvent(_Event):
    ref: str = ""
    compare: str = ""
    commits: list[Commit] = Field(default_factory=list)

    @property
    def branch(self) -> str:
        return self.ref.removeprefix("refs/heads/")


class PullRequestEvent(_Event):
    action: str = ""
    number: int = 0
    pull_request: PullRequest = Field(default_factory=PullRequest)
    label: Label | None = None
    requested_reviewer: User | None = None
    assignee: User | None = None


class PullRequestReviewEvent(_Event):
    action: str = ""
    review: Review = Field(default_factory=Review)
    pull_request: PullRequest = Field(default_factory=PullRequest)


class PullRequestReviewCommentEvent(_Event):
    action: str = ""
    comment: Comment = Field(default_factory=Comment)
    pull_request: PullRequest = Field(default_factory=PullRequest)


class IssuesEvent(_Event):
    action: str = ""
    issue: Issue = Field(default_factory=Issue)
    label: Label | None = None
    assignee: User | None = None


class IssueCommentEvent(_Event):
    action: str = ""
    issue: Issue = Field(default_factory=Issue)
    comment: Comment = Field(default_factory=Comment)


class CreateEvent(_Event):
    ref: str = ""
    ref_type: str = ""


class DeleteEvent(_Event):
    ref: str = ""
    ref_type: str = ""


class StarEvent(_Event):
    action: str = ""


Event = Union[
    PushEvent,
    PullRequestEvent,
    PullRequestReviewEvent,
    PullRequestReviewCommentEvent,
    IssuesEvent,
    IssueCommentEvent,
    CreateEvent,
    DeleteEvent,
    StarEvent,
]

EVENT_TYPES: dict[str, type[_Event]] = {
    "push": PushEvent,
    "pull_request": PullRequestEvent,
    "pull_request_review": PullRequestReviewEvent,
    "pull_request_review_comment": PullRequestReviewCommentEvent,
    "issues": IssuesEvent,
    "issue_comment": IssueCommentEvent,
    "create": CreateEvent,
    "delete": DeleteEvent,
    "star": StarEvent,
}


def parse_event(kind: str, body: bytes | str) -> Event | None:
    """
    Parse a webhook body into the model for ``kind``.

    Returns None for event kinds the bridge does not handle. Raises
    EventParseError if the body is not a JSON object of the expected shape.
    """
    model = EVENT_TYPES.get(kind)
    if model is None:
        return None

    try:
        raw = json.loads(body)
    except (TypeError, ValueError) as exc:
        raise EventParseError(f"invalid JSON body: {exc}") from exc

    if not isinstance(raw, dict):
        raise EventParseError("webhook body must be a JSON object")

    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise EventParseError(f"invalid {kind} payload: {exc}") from exc
