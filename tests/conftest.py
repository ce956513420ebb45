"""
Shared fixtures: a SQLite-backed KV store, recording fakes wired into the real
routing components, and mock servers for integration tests.
"""

import asyncio
import random

import pytest
import uvicorn

from gh_bridge.config import GitHubConfig
from gh_bridge.fanout import ChannelFanout
from gh_bridge.identity import IdentityDirectory
from gh_bridge.matcher import SubscriptionMatcher
from gh_bridge.metrics import MetricsCollector
from gh_bridge.mutes import MuteList
from gh_bridge.notifier import ActorNotifier
from gh_bridge.permissions import PermissionOracle
from gh_bridge.router import EventRouter
from gh_bridge.store import SQLiteKVStore
from gh_bridge.subscriptions import SubscriptionStore

from .fakes import FakeChat, FakeGitHub, REPO
from .mock_servers import create_chat_app, create_github_app


class _UvicornServer:
    def __init__(self, app, host: str, port: int):
        self.config = uvicorn.Config(app, host=host, port=port, log_level="error")
        self.server = uvicorn.Server(self.config)
        self._task: asyncio.Task | None = None

    async def start(self):
        self._task = asyncio.create_task(self.server.serve())
        for _ in range(100):
            if self.server.started:
                return
            await asyncio.sleep(0.05)
        raise RuntimeError("Server did not start")

    async def stop(self):
        self.server.should_exit = True
        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=5)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                self._task.cancel()


def _pick_port():
    return random.randint(19000, 19999)


# ── Unit fixtures ──


@pytest.fixture
async def kv(tmp_path):
    store = SQLiteKVStore(str(tmp_path / "kv.db"))
    await store.open()
    yield store
    await store.close()


@pytest.fixture
def github_config():
    return GitHubConfig(enable_private_repos=True)


@pytest.fixture
def fake_github():
    gh = FakeGitHub()
    gh.add_repo(REPO)
    return gh


@pytest.fixture
def chat():
    return FakeChat()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def identity(kv):
    return IdentityDirectory(kv)


@pytest.fixture
def mutes(kv):
    return MuteList(kv)


@pytest.fixture
def subscription_store(kv):
    return SubscriptionStore(kv)


@pytest.fixture
def permissions(fake_github, identity, github_config):
    return PermissionOracle(fake_github, identity, github_config)


@pytest.fixture
def matcher(subscription_store, permissions):
    return SubscriptionMatcher(subscription_store, permissions)


@pytest.fixture
def fanout(matcher, permissions, chat, metrics):
    return ChannelFanout(matcher, permissions, chat, metrics)


@pytest.fixture
def notifier(identity, mutes, permissions, chat, metrics):
    return ActorNotifier(identity, mutes, permissions, chat, metrics)


@pytest.fixture
def router(github_config, subscription_store, fanout, notifier, metrics):
    return EventRouter(github_config, subscription_store, fanout, notifier, metrics)


# ── Integration fixtures ──


@pytest.fixture
async def github_server():
    port = _pick_port()
    app = create_github_app(
        repos={
            REPO: {"full_name": REPO, "private": False},
            "acme/secret": {"full_name": "acme/secret", "private": True},
        },
        members={"insider"},
        tokens={"tok-creator"},
    )
    srv = _UvicornServer(app, "127.0.0.1", port)
    await srv.start()
    yield f"http://127.0.0.1:{port}"
    await srv.stop()


@pytest.fixture
async def chat_server():
    port = _pick_port()
    srv = _UvicornServer(create_chat_app(), "127.0.0.1", port)
    await srv.start()
    yield f"http://127.0.0.1:{port}"
    await srv.stop()


@pytest.fixture
def bridge_config_dict(github_server, chat_server, tmp_path):
    return {
        "github": {
            "api_url": github_server,
            "webhook_secret_env": "TEST_GH_WEBHOOK_SECRET",
            "organization": "acme",
            "enable_private_repos": True,
            "request_timeout_seconds": 5,
        },
        "chat": {
            "url": chat_server,
            "bot_user_id": "github-bot",
            "bot_token_env": "TEST_CHAT_TOKEN",
            "verify_tls": False,
            "request_timeout_seconds": 5,
        },
        "store": {
            "backend": "sqlite",
            "db_path": str(tmp_path / "bridge_kv.db"),
        },
        "server": {"host": "127.0.0.1", "port": _pick_port()},
        "logging": {"level": "debug", "format": "text"},
        "metrics": {"enabled": True},
    }
