"""
GitHub REST client.

Every call is made with an explicit user token: the bridge never acts with a
credential of its own, so what a call can see is exactly what that user can
see on GitHub.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

log = structlog.get_logger()


class GitHubError(Exception):
    """A GitHub API request failed for a reason other than not-found."""


@dataclass(frozen=True)
class PRDetails:
    url: str
    number: int
    status: str = ""
    mergeable: bool = False
    requested_reviewers: tuple[str, ...] = ()
    reviews: tuple[dict[str, Any], ...] = field(default_factory=tuple)


def parse_owner_and_repo(full_name: str, base_url: str = "https://github.com/") -> tuple[str, str]:
    """Split ``owner/repo``, ``owner`` or a repository URL into its parts."""
    full_name = full_name.strip()
    if full_name.startswith(base_url):
        full_name = full_name[len(base_url):]
    parts = full_name.strip("/").split("/")
    if not parts or not parts[0]:
        return "", ""
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], parts[1]


def full_name_from_owner_and_repo(owner: str, repo: str) -> str:
    return f"{owner}/{repo}"


class GitHubClient:
    """Thin async wrapper around the handful of GitHub endpoints the bridge uses."""

    def __init__(
        self,
        api_url: str = "https://api.github.com",
        base_url: str = "https://github.com/",
        request_timeout: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_url = api_url.rstrip("/")
        self._base_url = base_url.rstrip("/")
        self._request_timeout = request_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def open(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self._api_url,
            timeout=httpx.Timeout(self._request_timeout),
            transport=self._transport,
            headers={"Accept": "application/vnd.github+json"},
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _get(self, path: str, token: str, **kwargs: Any) -> httpx.Response:
        assert self._client
        try:
            return await self._client.get(
                path, headers={"Authorization": f"Bearer {token}"}, **kwargs
            )
        except httpx.HTTPError as exc:
            raise GitHubError(f"GET {path} failed: {exc}") from exc

    async def _get_json(self, path: str, token: str) -> Any | None:
        resp = await self._get(path, token)
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise GitHubError(f"GET {path} returned {resp.status_code}")
        return resp.json()

    async def get_repository(self, owner: str, repo: str, token: str) -> dict | None:
        return await self._get_json(f"/repos/{owner}/{repo}", token)

    async def get_organization(self, org: str, token: str) -> dict | None:
        return await self._get_json(f"/orgs/{org}", token)

    async def get_user(self, username: str, token: str) -> dict | None:
        return await self._get_json(f"/users/{username}", token)

    async def is_org_member(self, org: str, username: str, token: str) -> bool:
        """204 means member; 404 and 302 (requester outside the org) mean not."""
        resp = await self._get(
            f"/orgs/{org}/members/{username}", token, follow_redirects=False
        )
        if resp.status_code == 204:
            return True
        if resp.status_code in (302, 404):
            return False
        raise GitHubError(
            f"membership check for {username} in {org} returned {resp.status_code}"
        )

    async def fetch_pr_details(
        self, owner: str, repo: str, number: int, token: str
    ) -> PRDetails:
        """
        Collect review state, requested reviewers, mergeability and combined
        commit status for one pull request.

        Reviews and the PR/status chain are fetched concurrently and only
        merged once both have finished; either half failing leaves its fields
        at their defaults.
        """
        url = f"{self._base_url}/{owner}/{repo}/pull/{number}"

        async def reviews() -> tuple[dict[str, Any], ...]:
            try:
                data = await self._get_json(f"/repos/{owner}/{repo}/pulls/{number}/reviews", token)
            except GitHubError as exc:
                log.warning("github.reviews_failed", repo=f"{owner}/{repo}", number=number, error=str(exc))
                return ()
            return tuple(data or ())

        async def pr_and_status() -> tuple[bool, tuple[str, ...], str]:
            try:
                pr = await self._get_json(f"/repos/{owner}/{repo}/pulls/{number}", token)
            except GitHubError as exc:
                log.warning("github.pr_failed", repo=f"{owner}/{repo}", number=number, error=str(exc))
                return False, (), ""
            if not pr:
                return False, (), ""
            mergeable = bool(pr.get("mergeable"))
            reviewers = tuple(r.get("login", "") for r in pr.get("requested_reviewers") or [])
            sha = (pr.get("head") or {}).get("sha", "")
            try:
                status = await self._get_json(f"/repos/{owner}/{repo}/commits/{sha}/status", token)
            except GitHubError as exc:
                log.warning("github.status_failed", repo=f"{owner}/{repo}", sha=sha, error=str(exc))
                return mergeable, reviewers, ""
            return mergeable, reviewers, (status or {}).get("state", "")

        review_list, (mergeable, reviewers, status) = await asyncio.gather(
            reviews(), pr_and_status()
        )
        return PRDetails(
            url=url,
            number=number,
            status=status,
            mergeable=mergeable,
            requested_reviewers=reviewers,
            reviews=review_list,
        )
