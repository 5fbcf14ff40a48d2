from __future__ import annotations

from typing import Any, Optional

from ...mailbox.models import Destination
from ...relay.builder import RenderedMessage
from .components import rendered_message_payload
from .errors import DiscordAPIError
from .rest import DiscordRestClient


class DiscordDestinationClient:
    """Turn relay delivery through the Discord REST API."""

    def __init__(self, rest: DiscordRestClient) -> None:
        self._rest = rest

    async def resolve_destination(
        self, destination: Destination
    ) -> Optional[dict[str, Any]]:
        channel = await self._rest.get_channel(destination.channel_id)
        if channel is None:
            return None
        guild_id = channel.get("guild_id")
        if destination.guild_id and guild_id and str(guild_id) != destination.guild_id:
            return None
        return channel

    async def deliver(self, channel: dict[str, Any], message: RenderedMessage) -> str:
        channel_id = str(channel.get("id") or "")
        if not channel_id:
            raise DiscordAPIError("resolved Discord channel has no id")
        response = await self._rest.create_channel_message(
            channel_id=channel_id, payload=rendered_message_payload(message)
        )
        message_id = response.get("id")
        if not message_id:
            raise DiscordAPIError(
                f"Discord did not return a message id for channel {channel_id}"
            )
        return str(message_id)
