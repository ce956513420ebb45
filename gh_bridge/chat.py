"""
Chat platform client: the bridge's message sink.

Handles:
- Channel posts for subscription fan-out
- Direct messages from the bot to a single user
- Ephemeral messages and client refresh signals
- Rate limiting (429) and connection retries
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog

log = structlog.get_logger()

# Retry configuration
MAX_RETRIES = 3
RETRY_BASE_SECONDS = 1.0


class ChatError(Exception):
    """A chat API request failed."""


class ChatClient:
    """
    Posts messages to the chat platform as the bot user.

    Only requests that cannot have been applied are retried: 429 responses and
    connection failures. Server errors and read timeouts raise immediately so
    a message is never posted twice.
    """

    def __init__(
        self,
        url: str,
        bot_user_id: str,
        bot_token: str = "",
        verify_tls: bool = True,
        request_timeout: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._url = url.rstrip("/")
        self._bot_user_id = bot_user_id
        self._bot_token = bot_token
        self._verify_tls = verify_tls
        self._request_timeout = request_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def bot_user_id(self) -> str:
        return self._bot_user_id

    async def open(self) -> None:
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._request_timeout),
            verify=self._verify_tls,
            transport=self._transport,
            headers={"Authorization": f"Bearer {self._bot_token}"},
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _post(self, path: str, body: Any) -> httpx.Response:
        assert self._client
        url = f"{self._url}{path}"

        last_exc: Exception | None = None
        for attempt in range(MAX_RETRIES):
            try:
                resp = await self._client.post(url, json=body)
            except httpx.ConnectError as exc:
                last_exc = exc
                backoff = RETRY_BASE_SECONDS * (2 ** attempt)
                log.warning("chat.retry", attempt=attempt + 1, backoff=backoff, error=str(exc))
                await asyncio.sleep(backoff)
                continue
            except httpx.HTTPError as exc:
                raise ChatError(f"POST {path} failed: {exc}") from exc

            if resp.status_code == 429:
                retry_after = float(resp.headers.get("Retry-After", RETRY_BASE_SECONDS * (attempt + 1)))
                log.warning("chat.rate_limited", retry_after=retry_after)
                last_exc = ChatError(f"POST {path} rate limited")
                await asyncio.sleep(retry_after)
                continue

            if resp.status_code >= 400:
                raise ChatError(f"POST {path} returned {resp.status_code}")
            return resp

        raise ChatError(f"POST {path} failed after {MAX_RETRIES} attempts: {last_exc}")

    async def create_post(self, channel_id: str, message: str, post_type: str = "") -> None:
        await self._post(
            "/api/v4/posts",
            {
                "channel_id": channel_id,
                "user_id": self._bot_user_id,
                "message": message,
                "type": post_type,
            },
        )

    async def get_direct_channel(self, user_id: str) -> str:
        resp = await self._post("/api/v4/channels/direct", [self._bot_user_id, user_id])
        channel_id = resp.json().get("id")
        if not channel_id:
            raise ChatError(f"no direct channel returned for {user_id}")
        return channel_id

    async def create_direct_post(self, user_id: str, message: str, post_type: str = "") -> None:
        channel_id = await self.get_direct_channel(user_id)
        await self.create_post(channel_id, message, post_type)

    async def send_ephemeral(self, user_id: str, channel_id: str, message: str) -> None:
        await self._post(
            "/api/v4/posts/ephemeral",
            {
                "user_id": user_id,
                "post": {"channel_id": channel_id, "user_id": self._bot_user_id, "message": message},
            },
        )

    async def publish_refresh(self, user_id: str) -> None:
        """Tell ``user_id``'s clients to reload their GitHub sidebar data."""
        await self._post("/api/v4/events/publish", {"event": "refresh", "user_id": user_id})
