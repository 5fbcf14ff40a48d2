from __future__ import annotations

import json
from typing import Callable

import httpx
import pytest

from rollcloud_relay.integrations.discord.errors import (
    DiscordPermanentError,
    DiscordTransientError,
)
from rollcloud_relay.integrations.discord.rest import DiscordRestClient

Handler = Callable[[httpx.Request], httpx.Response]


def _client(handler: Handler, **kwargs: float) -> DiscordRestClient:
    return DiscordRestClient(
        bot_token="bot-token",
        base_url="https://discord.test/api/v10",
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        transport=httpx.MockTransport(handler),
        **kwargs,  # type: ignore[arg-type]
    )


@pytest.mark.anyio
async def test_create_channel_message_posts_payload() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "m-1", "channel_id": "c-1"})

    async with _client(handler) as rest:
        response = await rest.create_channel_message(
            channel_id="c-1", payload={"content": "hi"}
        )

    assert response["id"] == "m-1"
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/api/v10/channels/c-1/messages"
    assert request.headers["Authorization"] == "Bot bot-token"
    assert json.loads(request.content) == {"content": "hi"}


@pytest.mark.anyio
async def test_get_channel_returns_none_for_unknown_channel() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "Unknown Channel"})

    async with _client(handler) as rest:
        assert await rest.get_channel("gone") is None


@pytest.mark.anyio
async def test_forbidden_is_permanent() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"message": "Missing Access"})

    async with _client(handler) as rest:
        with pytest.raises(DiscordPermanentError) as exc_info:
            await rest.get_channel("c-1")
    assert exc_info.value.status_code == 403
    assert exc_info.value.recoverable is False


@pytest.mark.anyio
async def test_rate_limits_honor_retry_after() -> None:
    responses = [
        httpx.Response(429, headers={"Retry-After": "0"}, json={}),
        httpx.Response(200, json={"id": "c-1"}),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    async with _client(handler) as rest:
        assert await rest.get_channel("c-1") == {"id": "c-1"}
    assert responses == []


@pytest.mark.anyio
async def test_rate_limit_without_retry_after_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={})

    async with _client(handler) as rest:
        with pytest.raises(DiscordTransientError) as exc_info:
            await rest.get_channel("c-1")
    assert exc_info.value.status_code == 429


@pytest.mark.anyio
async def test_server_errors_retry_then_give_up() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(502, text="bad gateway")

    async with _client(handler, max_retries=2) as rest:
        with pytest.raises(DiscordTransientError):
            await rest.create_channel_message(channel_id="c-1", payload={})
    assert calls == 3


@pytest.mark.anyio
async def test_network_errors_are_retried() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"id": "m-2"})

    async with _client(handler) as rest:
        response = await rest.create_channel_message(channel_id="c-1", payload={})
    assert response == {"id": "m-2"}
    assert attempts == 2


@pytest.mark.anyio
async def test_interaction_response_ignores_empty_body() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    async with _client(handler) as rest:
        await rest.create_interaction_response(
            interaction_id="i-1", interaction_token="tok", payload={"type": 1}
        )
    assert seen[0].url.path == "/api/v10/interactions/i-1/tok/callback"
