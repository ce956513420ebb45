"""
Markdown rendering of GitHub events into chat messages.
"""

from __future__ import annotations

import re

from jinja2 import DictLoader, Environment, StrictUndefined
from markupsafe import Markup

from .events import Event

_DETAILS_PATTERN = re.compile(r"<details\b.*?</details\s*>", re.DOTALL | re.IGNORECASE)

_REPO = "[{{ event.repository.full_name }}]({{ event.repository.html_url }})"
_SENDER = "[{{ event.sender.login }}]({{ event.sender.html_url }})"
_PR = "[#{{ event.pull_request.number }} {{ event.pull_request.title }}]({{ event.pull_request.html_url }})"
_ISSUE = "[#{{ event.issue.number }} {{ event.issue.title }}]({{ event.issue.html_url }})"

TEMPLATES = {
    # Channel posts
    "newPR": (
        "#### {{ event.pull_request.title }}\n"
        "##### " + _PR + "\n"
        "#new-pull-request by " + _SENDER + "\n\n"
        "{{ (event.pull_request.body or '') | sanitize }}"
    ),
    "closedPR": (
        "[" + _REPO + "] Pull request " + _PR + " was "
        "{% if event.pull_request.merged %}merged{% else %}closed{% endif %} by " + _SENDER + "."
    ),
    "pullRequestLabelled": (
        "#### {{ event.pull_request.title }}\n"
        "##### " + _PR + "\n"
        "#pull-request-labeled `{{ event.label.name }}` by " + _SENDER
    ),
    "newIssue": (
        "#### {{ event.issue.title }}\n"
        "##### " + _ISSUE + "\n"
        "#new-issue by " + _SENDER + "\n\n"
        "{{ (event.issue.body or '') | sanitize }}"
    ),
    "closedIssue": "[" + _REPO + "] Issue " + _ISSUE + " closed by " + _SENDER + ".",
    "reopenedIssue": "[" + _REPO + "] Issue " + _ISSUE + " reopened by " + _SENDER + ".",
    "issueLabelled": (
        "#### {{ event.issue.title }}\n"
        "##### " + _ISSUE + "\n"
        "#issue-labeled `{{ event.label.name }}` by " + _SENDER
    ),
    "pushedCommits": (
        _SENDER + " pushed [{{ event.commits | length }} new commit"
        "{% if event.commits | length != 1 %}s{% endif %}]({{ event.compare }}) "
        "to [{{ event.repository.full_name }}:{{ event.branch }}]"
        "({{ event.repository.html_url }}/tree/{{ event.branch }}):\n"
        "{% for c in event.commits %}"
        "[`{{ c.id[:6] }}`]({{ c.url }}) {{ c.message.splitlines()[0] if c.message else '' }} - {{ c.author.name }}\n"
        "{% endfor %}"
    ),
    "newCreateMessage": (
        "[" + _REPO + "] New {{ event.ref_type }} "
        "[{{ event.ref }}]({{ event.repository.html_url }}/tree/{{ event.ref }}) created by " + _SENDER
    ),
    "newDeleteMessage": (
        "[" + _REPO + "] {{ event.ref_type | capitalize }} {{ event.ref }} deleted by " + _SENDER
    ),
    "issueComment": (
        "[" + _REPO + "] New comment by " + _SENDER + " on " + _ISSUE + ":\n\n"
        "{{ event.comment.body or '' }}"
    ),
    "pullRequestReviewEvent": (
        "[" + _REPO + "] " + _SENDER + " "
        "{% if event.review.state | upper == 'APPROVED' %}approved"
        "{% elif event.review.state | upper == 'CHANGES_REQUESTED' %}requested changes on"
        "{% else %}commented on{% endif %} " + _PR + ":\n\n"
        "{{ event.review.body or '' }}"
    ),
    "newReviewComment": (
        "[" + _REPO + "] New review comment by " + _SENDER + " on " + _PR + ":\n\n"
        "{{ event.comment.body or '' }}"
    ),
    "newRepoStar": (
        "[" + _REPO + "] A star was "
        "{% if event.action == 'deleted' %}removed{% else %}added{% endif %} by " + _SENDER
    ),
    # Direct messages
    "pullRequestMentionNotification": (
        _SENDER + " mentioned you on [{{ event.repository.full_name }}#{{ event.pull_request.number }}]"
        "({{ event.pull_request.html_url }}) - {{ event.pull_request.title }}:\n"
        ">{{ event.pull_request.body or '' }}"
    ),
    "commentMentionNotification": (
        _SENDER + " mentioned you on [{{ event.repository.full_name }}#{{ event.issue.number }}]"
        "({{ event.comment.html_url }}) - {{ event.issue.title }}:\n"
        ">{{ event.comment.body or '' }}"
    ),
    "commentAuthorPullRequestNotification": (
        _SENDER + " commented on your pull request " + _ISSUE + ":\n>{{ event.comment.body or '' }}"
    ),
    "commentAuthorIssueNotification": (
        _SENDER + " commented on your issue " + _ISSUE + ":\n>{{ event.comment.body or '' }}"
    ),
    "commentAssigneePullRequestNotification": (
        _SENDER + " commented on pull request " + _ISSUE + " you are assigned to:\n"
        ">{{ event.comment.body or '' }}"
    ),
    "commentAssigneeIssueNotification": (
        _SENDER + " commented on issue " + _ISSUE + " you are assigned to:\n"
        ">{{ event.comment.body or '' }}"
    ),
    "pullRequestNotification": (
        "[{{ event.repository.full_name }}] " + _SENDER + " "
        "{% if event.action == 'review_requested' %}requested your review on"
        "{% elif event.action == 'closed' and event.pull_request.merged %}merged your pull request"
        "{% elif event.action == 'closed' %}closed your pull request"
        "{% elif event.action == 'reopened' %}reopened your pull request"
        "{% elif event.action == 'assigned' %}assigned you to pull request"
        "{% endif %} " + _PR
    ),
    "issueNotification": (
        "[{{ event.repository.full_name }}] " + _SENDER + " "
        "{% if event.action == 'closed' %}closed your issue"
        "{% elif event.action == 'reopened' %}reopened your issue"
        "{% elif event.action == 'assigned' %}assigned you to issue"
        "{% endif %} " + _ISSUE
    ),
    "pullRequestReviewNotification": (
        "[{{ event.repository.full_name }}] " + _SENDER + " "
        "{% if event.review.state | upper == 'APPROVED' %}approved"
        "{% elif event.review.state | upper == 'CHANGES_REQUESTED' %}requested changes on"
        "{% else %}reviewed{% endif %} your pull request " + _PR
    ),
}

_env = Environment(
    loader=DictLoader(TEMPLATES),
    undefined=StrictUndefined,
    autoescape=False,
    keep_trailing_newline=False,
)


def sanitize_description(text: str) -> str:
    """Drop ``<details>`` blocks entirely and strip any remaining HTML tags, line by line."""
    text = _DETAILS_PATTERN.sub("", text)
    return "\n".join(Markup(line).striptags() for line in text.splitlines()).strip()


_env.filters["sanitize"] = sanitize_description


def render(template_name: str, event: Event) -> str:
    """Render ``template_name`` for ``event``. Raises jinja2 errors on bad templates."""
    return _env.get_template(template_name).render(event=event).strip()
