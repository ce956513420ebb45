"""Tests for the GitHub and chat HTTP clients."""

import json

import httpx
import pytest

from gh_bridge import chat as chat_module
from gh_bridge.chat import ChatClient, ChatError
from gh_bridge.github import GitHubClient, GitHubError, parse_owner_and_repo


# ── GitHub ──


@pytest.mark.parametrize(
    "value, expected",
    [
        ("acme/widgets", ("acme", "widgets")),
        ("acme", ("acme", "")),
        ("https://github.com/acme/widgets", ("acme", "widgets")),
        (" acme/widgets/ ", ("acme", "widgets")),
        ("", ("", "")),
    ],
)
def test_parse_owner_and_repo(value, expected):
    assert parse_owner_and_repo(value) == expected


async def _github(handler) -> GitHubClient:
    client = GitHubClient(api_url="https://api.test", transport=httpx.MockTransport(handler))
    await client.open()
    return client


async def test_get_repository_uses_user_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        if request.url.path == "/repos/acme/widgets":
            return httpx.Response(200, json={"full_name": "acme/widgets", "private": True})
        return httpx.Response(404)

    gh = await _github(handler)
    try:
        assert (await gh.get_repository("acme", "widgets", "tok"))["private"] is True
        assert await gh.get_repository("acme", "missing", "tok") is None
        assert seen["auth"] == "Bearer tok"
    finally:
        await gh.close()


async def test_server_error_raises():
    gh = await _github(lambda request: httpx.Response(502))
    try:
        with pytest.raises(GitHubError):
            await gh.get_organization("acme", "tok")
    finally:
        await gh.close()


async def test_transport_error_raises():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    gh = await _github(handler)
    try:
        with pytest.raises(GitHubError):
            await gh.get_user("octocat", "tok")
    finally:
        await gh.close()


@pytest.mark.parametrize("status, expected", [(204, True), (404, False), (302, False)])
async def test_is_org_member(status, expected):
    gh = await _github(lambda request: httpx.Response(status, headers={"Location": "https://api.test/x"}))
    try:
        assert await gh.is_org_member("acme", "bob", "tok") is expected
    finally:
        await gh.close()


async def test_is_org_member_unexpected_status():
    gh = await _github(lambda request: httpx.Response(403))
    try:
        with pytest.raises(GitHubError):
            await gh.is_org_member("acme", "bob", "tok")
    finally:
        await gh.close()


async def test_fetch_pr_details_merges_both_halves():
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/pulls/7/reviews"):
            return httpx.Response(200, json=[{"state": "APPROVED", "user": {"login": "bob"}}])
        if path.endswith("/pulls/7"):
            return httpx.Response(200, json={
                "mergeable": True,
                "requested_reviewers": [{"login": "carol"}],
                "head": {"sha": "abc123"},
            })
        if path.endswith("/commits/abc123/status"):
            return httpx.Response(200, json={"state": "success"})
        return httpx.Response(404)

    gh = await _github(handler)
    try:
        details = await gh.fetch_pr_details("acme", "widgets", 7, "tok")
    finally:
        await gh.close()

    assert details.url == "https://github.com/acme/widgets/pull/7"
    assert details.mergeable is True
    assert details.requested_reviewers == ("carol",)
    assert details.status == "success"
    assert details.reviews[0]["state"] == "APPROVED"


async def test_fetch_pr_details_survives_partial_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/reviews"):
            return httpx.Response(500)
        if request.url.path.endswith("/pulls/7"):
            return httpx.Response(200, json={"mergeable": False, "head": {"sha": "abc"}})
        return httpx.Response(500)

    gh = await _github(handler)
    try:
        details = await gh.fetch_pr_details("acme", "widgets", 7, "tok")
    finally:
        await gh.close()

    assert details.reviews == ()
    assert details.status == ""
    assert details.mergeable is False


# ── Chat ──


async def _chat(handler) -> ChatClient:
    client = ChatClient("https://chat.test/", "bot-id", "bot-token", transport=httpx.MockTransport(handler))
    await client.open()
    return client


@pytest.fixture
def no_sleep(monkeypatch):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr(chat_module.asyncio, "sleep", fake_sleep)
    return delays


async def test_create_post():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201, json={"id": "p1"})

    chat = await _chat(handler)
    try:
        await chat.create_post("ch1", "hello", "custom_git_pr")
    finally:
        await chat.close()

    assert requests[0].url.path == "/api/v4/posts"
    assert requests[0].headers["Authorization"] == "Bearer bot-token"
    assert json.loads(requests[0].content) == {
        "channel_id": "ch1",
        "user_id": "bot-id",
        "message": "hello",
        "type": "custom_git_pr",
    }


async def test_direct_post_and_refresh():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.url.path, json.loads(request.content)))
        if request.url.path == "/api/v4/channels/direct":
            return httpx.Response(201, json={"id": "dm1"})
        return httpx.Response(201, json={})

    chat = await _chat(handler)
    try:
        await chat.create_direct_post("u1", "psst", "custom_git_mention")
        await chat.publish_refresh("u1")
    finally:
        await chat.close()

    assert requests[0] == ("/api/v4/channels/direct", ["bot-id", "u1"])
    assert requests[1][1]["channel_id"] == "dm1"
    assert requests[2] == ("/api/v4/events/publish", {"event": "refresh", "user_id": "u1"})


async def test_send_ephemeral():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        return httpx.Response(201, json={})

    chat = await _chat(handler)
    try:
        await chat.send_ephemeral("u1", "ch1", "only you can see this")
    finally:
        await chat.close()

    assert requests[0]["user_id"] == "u1"
    assert requests[0]["post"]["channel_id"] == "ch1"


async def test_rate_limit_honours_retry_after(no_sleep):
    responses = iter([httpx.Response(429, headers={"Retry-After": "2"}), httpx.Response(201, json={})])
    chat = await _chat(lambda request: next(responses))
    try:
        await chat.create_post("ch1", "hello")
    finally:
        await chat.close()
    assert no_sleep == [2.0]


async def test_connect_errors_retried_then_raise(no_sleep):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    chat = await _chat(handler)
    try:
        with pytest.raises(ChatError):
            await chat.create_post("ch1", "hello")
    finally:
        await chat.close()
    assert no_sleep == [1.0, 2.0, 4.0]


async def test_server_error_not_retried(no_sleep):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500)

    chat = await _chat(handler)
    try:
        with pytest.raises(ChatError):
            await chat.create_post("ch1", "hello")
    finally:
        await chat.close()
    assert len(calls) == 1
    assert no_sleep == []


async def test_direct_channel_without_id_raises():
    chat = await _chat(lambda request: httpx.Response(201, json={}))
    try:
        with pytest.raises(ChatError):
            await chat.create_direct_post("u1", "psst")
    finally:
        await chat.close()
