"""
Event routing.

Routes verified, parsed webhook events to channel fan-out and actor
notifications based on event kind.

Responsibilities:
- Drop events for repositories on the notification-off list (kill-switch)
- Drop private repository events unless private repos are enabled
- Dispatch each kind to its fan-out handler and notifier path concurrently
"""

from __future__ import annotations

import asyncio
from typing import Awaitable

import structlog

from .config import GitHubConfig
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
from .fanout import ChannelFanout
from .metrics import MetricsCollector
from .notifier import ActorNotifier
from .subscriptions import SubscriptionStore

log = structlog.get_logger()


class EventRouter:
    def __init__(
        self,
        config: GitHubConfig,
        subscriptions: SubscriptionStore,
        fanout: ChannelFanout,
        notifier: ActorNotifier,
        metrics: MetricsCollector | None = None,
    ):
        self._config = config
        self._subscriptions = subscriptions
        self._fanout = fanout
        self._notifier = notifier
        self._metrics = metrics

    async def handle_event(self, event: Event) -> None:
        """Main event dispatch. Returns once every delivery has finished or failed."""
        repo = event.repository

        if self._config.enable_webhook_event_logging:
            log.debug(
                "router.webhook_event",
                kind=type(event).__name__,
                event=event.model_dump(mode="json"),
            )

        if await self._subscriptions.is_notification_off(repo.full_name):
            log.debug("router.notifications_off", repo=repo.full_name)
            self._dropped(event)
            return

        if repo.private and not self._config.enable_private_repos:
            log.debug("router.private_repo_disabled", repo=repo.full_name)
            self._dropped(event)
            return

        handlers: list[Awaitable[int]] = []
        if isinstance(event, PullRequestEvent):
            handlers.append(self._fanout.post_pull_request_event(event))
            handlers.append(self._notifier.notify_pull_request(event))
        elif isinstance(event, IssuesEvent):
            handlers.append(self._fanout.post_issue_event(event))
            handlers.append(self._notifier.notify_issue(event))
        elif isinstance(event, IssueCommentEvent):
            handlers.append(self._fanout.post_issue_comment_event(event))
            handlers.append(self._notifier.notify_issue_comment(event))
        elif isinstance(event, PullRequestReviewEvent):
            handlers.append(self._fanout.post_pull_request_review_event(event))
            handlers.append(self._notifier.notify_pull_request_review(event))
        elif isinstance(event, PullRequestReviewCommentEvent):
            handlers.append(self._fanout.post_pull_request_review_comment_event(event))
        elif isinstance(event, PushEvent):
            handlers.append(self._fanout.post_push_event(event))
        elif isinstance(event, CreateEvent):
            handlers.append(self._fanout.post_create_event(event))
        elif isinstance(event, DeleteEvent):
            handlers.append(self._fanout.post_delete_event(event))
        elif isinstance(event, StarEvent):
            handlers.append(self._fanout.post_star_event(event))
        else:
            log.debug("router.unhandled_event", kind=type(event).__name__)
            return

        results = await asyncio.gather(*handlers, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                log.warning(
                    "router.handler_failed",
                    kind=type(event).__name__,
                    repo=repo.full_name,
                    error=str(result),
                )

    def _dropped(self, event: Event) -> None:
        if self._metrics:
            self._metrics.inc("events_dropped_total", kind=type(event).__name__)
