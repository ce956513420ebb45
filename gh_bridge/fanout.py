"""
Channel fan-out: one GitHub event → one post per interested subscription.

For every event kind the handler:
1. drops actions the bridge does not announce (debug log only)
2. looks up matching subscriptions (repo + org, private repos filtered)
3. keeps subscriptions that enabled the event's feature, are not excluding
   the sender as an org member, and whose label filter (if any) matches
4. posts the rendered message to each remaining channel

Deliveries are independent: a failed post is logged and counted, and the
remaining channels are still posted to.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable

import structlog
from jinja2 import TemplateError

from .chat import ChatClient
from .events import (
    CreateEvent,
    DeleteEvent,
    Event,
    IssueCommentEvent,
    IssuesEvent,
    PullRequestEvent,
    PullRequestReviewCommentEvent,
    PullRequestReviewEvent,
    PushEvent,
    StarEvent,
)
from .matcher import SubscriptionMatcher
from .metrics import MetricsCollector
from .permissions import PermissionOracle
from .render import render
from .subscriptions import (
    FEATURE_CREATES,
    FEATURE_DELETES,
    FEATURE_ISSUE_COMMENTS,
    FEATURE_ISSUE_CREATIONS,
    FEATURE_ISSUES,
    FEATURE_PULL_REVIEWS,
    FEATURE_PULLS,
    FEATURE_PULLS_MERGED,
    FEATURE_PUSHES,
    FEATURE_STARS,
    Subscription,
)

log = structlog.get_logger()

ACTION_OPENED = "opened"
ACTION_CLOSED = "closed"
ACTION_REOPENED = "reopened"
ACTION_LABELED = "labeled"
ACTION_SUBMITTED = "submitted"
ACTION_CREATED = "created"

PULL_REQUEST_ACTIONS = {
    ACTION_OPENED: "newPR",
    ACTION_LABELED: "pullRequestLabelled",
    ACTION_CLOSED: "closedPR",
}
ISSUE_ACTIONS = {
    ACTION_OPENED: "newIssue",
    ACTION_CLOSED: "closedIssue",
    ACTION_REOPENED: "reopenedIssue",
    ACTION_LABELED: "issueLabelled",
}
REVIEW_STATES = {"APPROVED", "COMMENTED", "CHANGES_REQUESTED"}
REF_TYPES = {"tag", "branch"}

# Labels applied within this window of issue creation are assumed to come
# from automation and would duplicate the "new issue" post.
LABEL_AFTER_CREATE_WINDOW = timedelta(seconds=4)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChannelFanout:
    def __init__(
        self,
        matcher: SubscriptionMatcher,
        permissions: PermissionOracle,
        chat: ChatClient,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._matcher = matcher
        self._permissions = permissions
        self._chat = chat
        self._metrics = metrics
        self._clock = clock

    # --- Shared pipeline ---

    async def _select(
        self,
        event: Event,
        wants: Callable[[Subscription], bool],
        labels: list[str] | None = None,
        applied_label: str | None = None,
    ) -> list[Subscription]:
        """
        Matching subscriptions that pass the feature, org-member and label filters.

        ``labels`` are the labels currently on the issue/PR (None when the
        event kind has no labels). ``applied_label`` is set only for
        ``labeled`` actions and must equal the subscription's label filter.
        """
        repo = event.repository
        subs = await self._matcher.subscriptions_for(repo.full_name, repo.private)
        if not subs:
            return []

        subs = [sub for sub in subs if wants(sub)]
        excluded = await asyncio.gather(
            *(self._permissions.exclude_org_member(event.sender.login, sub) for sub in subs)
        )
        subs = [sub for sub, skip in zip(subs, excluded) if not skip]

        selected = []
        for sub in subs:
            label = sub.label
            if labels is not None and label and label not in labels:
                continue
            if applied_label is not None and (not label or label != applied_label):
                continue
            selected.append(sub)
        return selected

    async def _publish(
        self,
        event: Event,
        kind: str,
        subs: list[Subscription],
        template: str,
        post_type: str,
    ) -> int:
        if not subs:
            return 0
        try:
            message = render(template, event)
        except TemplateError as exc:
            log.warning("fanout.render_failed", template=template, error=str(exc))
            return 0

        results = await asyncio.gather(
            *(self._chat.create_post(sub.channel_id, message, post_type) for sub in subs),
            return_exceptions=True,
        )

        delivered = 0
        for sub, result in zip(subs, results):
            if isinstance(result, Exception):
                log.warning(
                    "fanout.post_failed",
                    kind=kind,
                    repo=event.repository.full_name,
                    channel_id=sub.channel_id,
                    error=str(result),
                )
                if self._metrics:
                    self._metrics.inc("channel_post_errors_total", kind=kind)
                continue
            delivered += 1
            if self._metrics:
                self._metrics.inc("channel_posts_total", kind=kind)
        return delivered

    def _drop(self, kind: str, reason: str, **context: object) -> int:
        log.debug("fanout.dropped", kind=kind, reason=reason, **context)
        if self._metrics:
            self._metrics.inc("events_dropped_total", kind=kind)
        return 0

    # --- Per-kind handlers ---

    async def post_pull_request_event(self, event: PullRequestEvent) -> int:
        action = event.action
        template = PULL_REQUEST_ACTIONS.get(action)
        if template is None:
            return self._drop("pull_request", "unhandled action", action=action)

        def wants(sub: Subscription) -> bool:
            if not sub.has(FEATURE_PULLS) and not sub.has(FEATURE_PULLS_MERGED):
                return False
            return not (sub.has(FEATURE_PULLS_MERGED) and action != ACTION_CLOSED)

        applied = None
        if action == ACTION_LABELED:
            applied = event.label.name if event.label else ""

        subs = await self._select(event, wants, event.pull_request.label_names, applied)
        return await self._publish(event, "pull_request", subs, template, "custom_git_pr")

    async def post_issue_event(self, event: IssuesEvent) -> int:
        action = event.action
        template = ISSUE_ACTIONS.get(action)
        if template is None:
            return self._drop("issues", "unhandled action", action=action)

        created_at = event.issue.created_at
        if action == ACTION_LABELED and created_at is not None:
            if created_at.tzinfo is None:
                created_at = created_at.replace(tzinfo=timezone.utc)
            if self._clock() - created_at < LABEL_AFTER_CREATE_WINDOW:
                return self._drop("issues", "labeled right after creation")

        def wants(sub: Subscription) -> bool:
            if not sub.has(FEATURE_ISSUES) and not sub.has(FEATURE_ISSUE_CREATIONS):
                return False
            return not (sub.has(FEATURE_ISSUE_CREATIONS) and action != ACTION_OPENED)

        applied = None
        if action == ACTION_LABELED:
            applied = event.label.name if event.label else ""

        subs = await self._select(event, wants, event.issue.label_names, applied)
        return await self._publish(event, "issues", subs, template, "custom_git_issue")

    async def post_push_event(self, event: PushEvent) -> int:
        if not event.commits:
            return self._drop("push", "no commits")
        subs = await self._select(event, lambda sub: sub.has(FEATURE_PUSHES))
        return await self._publish(event, "push", subs, "pushedCommits", "custom_git_push")

    async def post_create_event(self, event: CreateEvent) -> int:
        if event.ref_type not in REF_TYPES:
            return self._drop("create", "unhandled ref type", ref_type=event.ref_type)
        subs = await self._select(event, lambda sub: sub.has(FEATURE_CREATES))
        return await self._publish(event, "create", subs, "newCreateMessage", "custom_git_create")

    async def post_delete_event(self, event: DeleteEvent) -> int:
        if event.ref_type not in REF_TYPES:
            return self._drop("delete", "unhandled ref type", ref_type=event.ref_type)
        subs = await self._select(event, lambda sub: sub.has(FEATURE_DELETES))
        return await self._publish(event, "delete", subs, "newDeleteMessage", "custom_git_delete")

    async def post_issue_comment_event(self, event: IssueCommentEvent) -> int:
        if event.action != ACTION_CREATED:
            return self._drop("issue_comment", "unhandled action", action=event.action)
        subs = await self._select(
            event, lambda sub: sub.has(FEATURE_ISSUE_COMMENTS), event.issue.label_names
        )
        return await self._publish(event, "issue_comment", subs, "issueComment", "custom_git_comment")

    async def post_pull_request_review_event(self, event: PullRequestReviewEvent) -> int:
        if event.action != ACTION_SUBMITTED:
            return self._drop("pull_request_review", "unhandled action", action=event.action)
        state = event.review.state.upper()
        if state not in REVIEW_STATES:
            return self._drop("pull_request_review", "unhandled review state", state=state)
        subs = await self._select(
            event, lambda sub: sub.has(FEATURE_PULL_REVIEWS), event.pull_request.label_names
        )
        return await self._publish(
            event, "pull_request_review", subs, "pullRequestReviewEvent", "custom_git_pull_review"
        )

    async def post_pull_request_review_comment_event(
        self, event: PullRequestReviewCommentEvent
    ) -> int:
        subs = await self._select(
            event, lambda sub: sub.has(FEATURE_PULL_REVIEWS), event.pull_request.label_names
        )
        return await self._publish(
            event,
            "pull_request_review_comment",
            subs,
            "newReviewComment",
            "custom_git_pull_review_comment",
        )

    async def post_star_event(self, event: StarEvent) -> int:
        subs = await self._select(event, lambda sub: sub.has(FEATURE_STARS))
        return await self._publish(event, "star", subs, "newRepoStar", "custom_git_star")
