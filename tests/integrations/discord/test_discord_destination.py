from __future__ import annotations

from typing import Any, Optional

import pytest

from rollcloud_relay.integrations.discord.destination import DiscordDestinationClient
from rollcloud_relay.integrations.discord.errors import DiscordAPIError
from rollcloud_relay.mailbox.models import Destination
from rollcloud_relay.relay.builder import RenderedMessage


class FakeRest:
    def __init__(
        self,
        channels: dict[str, dict[str, Any]],
        response: Optional[dict[str, Any]] = None,
    ) -> None:
        self.channels = channels
        self.response = {"id": "m-1"} if response is None else response
        self.posted: list[tuple[str, dict[str, Any]]] = []

    async def get_channel(self, channel_id: str) -> Optional[dict[str, Any]]:
        return self.channels.get(channel_id)

    async def create_channel_message(
        self, *, channel_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        self.posted.append((channel_id, payload))
        return self.response


def _client(rest: FakeRest) -> DiscordDestinationClient:
    return DiscordDestinationClient(rest)  # type: ignore[arg-type]


@pytest.mark.anyio
async def test_resolve_checks_channel_and_guild() -> None:
    rest = FakeRest({"c-1": {"id": "c-1", "guild_id": "g-1"}})
    client = _client(rest)

    assert await client.resolve_destination(Destination("c-1", "g-1")) is not None
    assert await client.resolve_destination(Destination("c-1")) is not None
    assert await client.resolve_destination(Destination("c-1", "g-2")) is None
    assert await client.resolve_destination(Destination("c-404")) is None


@pytest.mark.anyio
async def test_deliver_returns_message_id() -> None:
    rest = FakeRest({}, response={"id": 1234})
    message_id = await _client(rest).deliver(
        {"id": "c-1"}, RenderedMessage(title="🔄 Round 2")
    )

    assert message_id == "1234"
    channel_id, payload = rest.posted[0]
    assert channel_id == "c-1"
    assert payload["embeds"][0]["title"] == "🔄 Round 2"


@pytest.mark.anyio
async def test_deliver_without_message_id_is_an_error() -> None:
    client = _client(FakeRest({}, response={}))
    with pytest.raises(DiscordAPIError):
        await client.deliver({"id": "c-1"}, RenderedMessage(title="x"))
    with pytest.raises(DiscordAPIError):
        await client.deliver({}, RenderedMessage(title="x"))
