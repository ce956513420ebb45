"""
Actor notifications: direct messages to the people an event is about.

Independent of channel subscriptions. Recipients are GitHub users who were
@-mentioned, who authored the issue/PR, who are assigned to it, or whose
review was requested. A recipient is skipped when they are the sender, have
no linked chat account, cannot see the (private) repository, or have muted
the sender.

Mention and authorship paths each decide on their own; one event may DM the
same user through both.
"""

from __future__ import annotations

import asyncio
import re

import structlog
from jinja2 import TemplateError

from .chat import ChatClient
from .events import Event, IssueCommentEvent, IssuesEvent, PullRequestEvent, PullRequestReviewEvent
from .identity import IdentityDirectory
from .metrics import MetricsCollector
from .mutes import MuteList
from .permissions import PermissionOracle
from .render import render

log = structlog.get_logger()

EMAIL_REPLY_MARKER = "notifications@github.com"
EMAIL_FOOTER_SEPARATOR = "\n\nOn"

_TOKEN_SPLIT = re.compile(r"[^-@A-Za-z0-9]+")


def parse_github_usernames(text: str) -> list[str]:
    """
    ``@login`` mentions in ``text``, in order of first appearance.

    Logins are letters, digits and single hyphens, and cannot start or end
    with a hyphen.
    """
    usernames: list[str] = []
    for token in _TOKEN_SPLIT.split(text or ""):
        if len(token) < 2 or not token.startswith("@"):
            continue
        login = token[1:]
        if "@" in login or "--" in login:
            continue
        if login.startswith("-") or login.endswith("-"):
            continue
        if login not in usernames:
            usernames.append(login)
    return usernames


def strip_email_footer(body: str) -> str:
    """Drop the quoted thread GitHub appends to comments sent by email reply."""
    if EMAIL_REPLY_MARKER in body:
        return body.split(EMAIL_FOOTER_SEPARATOR)[0]
    return body


class ActorNotifier:
    def __init__(
        self,
        identity: IdentityDirectory,
        mutes: MuteList,
        permissions: PermissionOracle,
        chat: ChatClient,
        metrics: MetricsCollector | None = None,
    ):
        self._identity = identity
        self._mutes = mutes
        self._permissions = permissions
        self._chat = chat
        self._metrics = metrics

    # --- Recipient resolution and delivery ---

    async def _recipient(self, event: Event, login: str) -> str:
        """Chat user id to notify for GitHub ``login``, or "" if they must not be notified."""
        sender = event.sender.login
        if not login or login == sender:
            return ""

        user_id = await self._identity.github_to_user_id(login)
        if not user_id:
            return ""

        repo = event.repository
        if repo.private and not await self._permissions.can_see(user_id, repo.full_name):
            log.debug("notifier.no_permission", login=login, repo=repo.full_name)
            return ""

        if await self._mutes.is_muted(user_id, sender):
            log.debug("notifier.sender_muted", user_id=user_id, sender=sender)
            return ""
        return user_id

    async def _deliver(self, event: Event, template: str, user_ids: list[str], post_type: str) -> int:
        user_ids = [uid for uid in user_ids if uid]
        if not user_ids:
            return 0
        try:
            message = render(template, event)
        except TemplateError as exc:
            log.warning("notifier.render_failed", template=template, error=str(exc))
            return 0

        results = await asyncio.gather(
            *(self._send(user_id, message, post_type) for user_id in user_ids),
            return_exceptions=True,
        )

        delivered = 0
        for user_id, result in zip(user_ids, results):
            if isinstance(result, Exception):
                log.warning(
                    "notifier.dm_failed",
                    user_id=user_id,
                    post_type=post_type,
                    repo=event.repository.full_name,
                    error=str(result),
                )
                if self._metrics:
                    self._metrics.inc("direct_message_errors_total", type=post_type)
                continue
            delivered += 1
            if self._metrics:
                self._metrics.inc("direct_messages_total", type=post_type)
        return delivered

    async def _send(self, user_id: str, message: str, post_type: str) -> None:
        await self._chat.create_direct_post(user_id, message, post_type)
        await self._chat.publish_refresh(user_id)

    async def _mentions(
        self, event: Event, body: str, author: str, template: str
    ) -> int:
        targets = [name for name in parse_github_usernames(body) if name != author]
        user_ids = await asyncio.gather(*(self._recipient(event, name) for name in targets))
        return await self._deliver(event, template, list(user_ids), "custom_git_mention")

    # --- Pull requests ---

    async def notify_pull_request(self, event: PullRequestEvent) -> int:
        sent = 0
        if event.action == "opened":
            sent += await self._mentions(
                event,
                event.pull_request.body or "",
                event.pull_request.user.login,
                "pullRequestMentionNotification",
            )

        pr = event.pull_request
        if event.action == "review_requested":
            login = event.requested_reviewer.login if event.requested_reviewer else ""
            post_type = "custom_git_review_request"
        elif event.action in ("closed", "reopened"):
            login = pr.user.login
            post_type = "custom_git_author"
        elif event.action == "assigned":
            assignee = event.assignee or pr.assignee
            login = assignee.login if assignee else ""
            post_type = "custom_git_assigned"
        else:
            if event.action != "opened":
                log.debug("notifier.unhandled_action", kind="pull_request", action=event.action)
            return sent

        user_id = await self._recipient(event, login)
        sent += await self._deliver(event, "pullRequestNotification", [user_id], post_type)
        return sent

    async def notify_pull_request_review(self, event: PullRequestReviewEvent) -> int:
        if event.action != "submitted":
            return 0
        user_id = await self._recipient(event, event.pull_request.user.login)
        return await self._deliver(event, "pullRequestReviewNotification", [user_id], "custom_git_review")

    # --- Issues ---

    async def notify_issue(self, event: IssuesEvent) -> int:
        if event.action in ("closed", "reopened"):
            login = event.issue.user.login
            post_type = "custom_git_author"
        elif event.action == "assigned":
            login = event.assignee.login if event.assignee else ""
            post_type = "custom_git_assigned"
        else:
            log.debug("notifier.unhandled_action", kind="issues", action=event.action)
            return 0

        user_id = await self._recipient(event, login)
        return await self._deliver(event, "issueNotification", [user_id], post_type)

    async def notify_issue_comment(self, event: IssueCommentEvent) -> int:
        if event.action in ("edited", "deleted"):
            return 0

        author = event.issue.user.login
        sent = await self._mentions(
            event,
            strip_email_footer(event.comment.body or ""),
            author,
            "commentMentionNotification",
        )

        is_pull = event.issue.is_pull_request
        if is_pull is None:
            log.debug("notifier.unknown_issue_type", url=event.issue.html_url)
            return sent
        kind = "PullRequest" if is_pull else "Issue"

        author_id = await self._recipient(event, author)
        sent += await self._deliver(
            event, f"commentAuthor{kind}Notification", [author_id], "custom_git_author"
        )

        assignees = [a.login for a in event.issue.assignees if a.login != author]
        assignee_ids = await asyncio.gather(*(self._recipient(event, login) for login in assignees))
        sent += await self._deliver(
            event, f"commentAssignee{kind}Notification", list(assignee_ids), "custom_git_assignee"
        )
        return sent
