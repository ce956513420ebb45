"""
Main Bridge orchestrator.

Wires store, GitHub client, chat client, routing and the HTTP server together.
Handles lifecycle: startup, shutdown, signal handling.
"""

from __future__ import annotations

import asyncio
import signal

import structlog

from .chat import ChatClient
from .config import BridgeConfig
from .fanout import ChannelFanout
from .github import GitHubClient
from .identity import IdentityDirectory
from .matcher import SubscriptionMatcher
from .metrics import MetricsCollector
from .mutes import MuteList
from .notifier import ActorNotifier
from .permissions import PermissionOracle
from .router import EventRouter
from .server import WebhookServer
from .store import KVStore, StoreError, create_store
from .subscriptions import SubscriptionManager, SubscriptionStore

log = structlog.get_logger()

SHUTDOWN_TIMEOUT = 15.0
HEALTH_INTERVAL = 30.0
HEALTH_PROBE_KEY = "bridge-health-probe"


class WebhookBridge:
    """
    Main bridge process: receives GitHub webhooks and publishes them to chat.
    """

    def __init__(self, config: BridgeConfig, store: KVStore | None = None):
        self._config = config
        self._metrics = MetricsCollector()
        self._store = store or create_store(config.store)

        gh = config.github
        self._github = GitHubClient(
            api_url=gh.api_url,
            base_url=gh.base_url,
            request_timeout=gh.request_timeout_seconds,
        )
        self._chat = ChatClient(
            url=config.chat.url,
            bot_user_id=config.chat.bot_user_id,
            bot_token=config.chat.bot_token or "",
            verify_tls=config.chat.verify_tls,
            request_timeout=config.chat.request_timeout_seconds,
        )

        self.identity = IdentityDirectory(self._store)
        self.mutes = MuteList(self._store)
        self.subscription_store = SubscriptionStore(self._store)
        self.subscriptions = SubscriptionManager(
            self.subscription_store, self._github, self.identity, gh
        )

        permissions = PermissionOracle(self._github, self.identity, gh)
        matcher = SubscriptionMatcher(self.subscription_store, permissions)
        fanout = ChannelFanout(matcher, permissions, self._chat, self._metrics)
        notifier = ActorNotifier(self.identity, self.mutes, permissions, self._chat, self._metrics)
        self.router = EventRouter(gh, self.subscription_store, fanout, notifier, self._metrics)

        self._server = WebhookServer(
            self.router,
            webhook_secret=gh.webhook_secret,
            host=config.server.host,
            port=config.server.port,
            metrics=self._metrics,
            metrics_enabled=config.metrics.enabled,
        )
        self._running = False
        self._shutdown_event = asyncio.Event()

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    async def start(self) -> None:
        """Start the bridge: open store and clients, then accept webhooks."""
        log.info(
            "bridge.starting",
            store=self._config.store.backend,
            organization=self._config.github.organization or None,
        )
        if not self._config.github.webhook_secret:
            log.warning("bridge.missing_webhook_secret", env=self._config.github.webhook_secret_env)
        if self._config.chat.bot_token is None:
            log.warning("bridge.missing_bot_token", env=self._config.chat.bot_token_env)

        await self._store.open()
        await self._github.open()
        await self._chat.open()
        await self._server.start()

        self._running = True
        log.info("bridge.started", host=self._config.server.host, port=self._config.server.port)

    async def stop(self) -> None:
        """Graceful shutdown: stop accepting webhooks, then close connections."""
        if not self._running:
            return
        self._running = False
        log.info("bridge.stopping")

        await self._server.stop()
        await self._chat.close()
        await self._github.close()
        await self._store.close()

        log.info("bridge.stopped")

    async def run_forever(self) -> None:
        """Run until shutdown signal."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._shutdown_event.set)

        await self.start()

        # Periodic health status update
        try:
            while not self._shutdown_event.is_set():
                await self._update_health()
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=HEALTH_INTERVAL)
                except asyncio.TimeoutError:
                    pass
        finally:
            await asyncio.wait_for(self.stop(), timeout=SHUTDOWN_TIMEOUT)

    async def _update_health(self) -> None:
        try:
            await self._store.get(HEALTH_PROBE_KEY)
            store_ok = True
        except StoreError as exc:
            log.warning("bridge.store_unreachable", error=str(exc))
            store_ok = False

        self._metrics.set_gauge("store_reachable", 1 if store_ok else 0)
        self._server.update_status(
            store_backend=self._config.store.backend,
            store_reachable=store_ok,
            organization=self._config.github.organization,
            private_repos_enabled=self._config.github.enable_private_repos,
        )
