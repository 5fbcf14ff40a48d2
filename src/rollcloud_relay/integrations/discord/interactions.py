from __future__ import annotations

import logging
from typing import Any, Optional

from ...core.exceptions import RelayError, ResolutionError
from ...core.logging_utils import log_event
from ...mailbox.models import Destination
from ...mailbox.pairing import PairingRegistry
from ...relay.commands import CommandRelay
from ...relay.control_ids import CONTROL_ID_PREFIX
from .constants import (
    DISCORD_INTERACTION_APPLICATION_COMMAND,
    DISCORD_INTERACTION_MESSAGE_COMPONENT,
    DISCORD_INTERACTION_PING,
    DISCORD_MESSAGE_FLAG_EPHEMERAL,
    DISCORD_RESPONSE_CHANNEL_MESSAGE,
    DISCORD_RESPONSE_PONG,
)
from .rest import DiscordRestClient

DISCORD_PERMISSION_MANAGE_WEBHOOKS = 1 << 29

ROLL_HERE_COMMAND = "rollhere"
CONNECT_COMMAND = "rollcloud"

MISSING_PERMISSION_MESSAGE = (
    "❌ You need the **Manage Webhooks** permission to set up RollCloud."
)
CONNECTED_MESSAGE = (
    "✅ RollCloud connected! Turn notifications will now appear in this channel."
)
UNKNOWN_INTERACTION_MESSAGE = "❌ Unknown command."
FAILURE_MESSAGE = "❌ Something went wrong. Please try again."


def _as_id(value: object) -> str | None:
    if value is None:
        return None
    token = str(value).strip()
    return token or None


def extract_command_path_and_options(
    interaction_payload: dict[str, Any],
) -> tuple[tuple[str, ...], dict[str, Any]]:
    data = interaction_payload.get("data")
    if not isinstance(data, dict):
        return (), {}

    root_name = data.get("name")
    if not isinstance(root_name, str) or not root_name:
        return (), {}

    path: list[str] = [root_name]
    options = data.get("options")
    current_options = options if isinstance(options, list) else []

    while current_options:
        first = current_options[0]
        if not isinstance(first, dict):
            break
        if first.get("type") not in (1, 2):
            break
        name = first.get("name")
        if isinstance(name, str) and name:
            path.append(name)
        nested = first.get("options")
        current_options = nested if isinstance(nested, list) else []

    parsed_options: dict[str, Any] = {}
    for item in current_options:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        if not isinstance(name, str) or not name:
            continue
        parsed_options[name] = item.get("value")

    return tuple(path), parsed_options


def extract_interaction_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    return _as_id(interaction_payload.get("id"))


def extract_interaction_token(interaction_payload: dict[str, Any]) -> Optional[str]:
    return _as_id(interaction_payload.get("token"))


def extract_channel_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    return _as_id(interaction_payload.get("channel_id"))


def extract_guild_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    return _as_id(interaction_payload.get("guild_id"))


def _extract_user(interaction_payload: dict[str, Any]) -> dict[str, Any]:
    member = interaction_payload.get("member")
    if isinstance(member, dict) and isinstance(member.get("user"), dict):
        return member["user"]
    user = interaction_payload.get("user")
    return user if isinstance(user, dict) else {}


def extract_user_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    return _as_id(_extract_user(interaction_payload).get("id"))


def extract_user_display_name(interaction_payload: dict[str, Any]) -> Optional[str]:
    user = _extract_user(interaction_payload)
    return _as_id(user.get("global_name")) or _as_id(user.get("username"))


def extract_member_permissions(interaction_payload: dict[str, Any]) -> int:
    member = interaction_payload.get("member")
    raw = member.get("permissions") if isinstance(member, dict) else None
    try:
        return int(raw) if raw is not None else 0
    except (TypeError, ValueError):
        return 0


def extract_message_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    message = interaction_payload.get("message")
    if not isinstance(message, dict):
        return None
    return _as_id(message.get("id"))


def is_component_interaction(interaction_payload: dict[str, Any]) -> bool:
    return interaction_payload.get("type") == DISCORD_INTERACTION_MESSAGE_COMPONENT


def extract_component_custom_id(interaction_payload: dict[str, Any]) -> Optional[str]:
    data = interaction_payload.get("data")
    if not isinstance(data, dict):
        return None
    return _as_id(data.get("custom_id"))


def ephemeral_response(content: str) -> dict[str, Any]:
    return {
        "type": DISCORD_RESPONSE_CHANNEL_MESSAGE,
        "data": {"content": content, "flags": DISCORD_MESSAGE_FLAG_EPHEMERAL},
    }


class InteractionRouter:
    """Maps Discord interaction payloads onto the pairing and command relays.

    The transport that receives interactions (gateway or HTTP endpoint) is
    not part of this package; it hands payload dicts to ``handle`` and sends
    back the returned response, or calls ``respond`` to do both.
    """

    def __init__(
        self,
        registry: PairingRegistry,
        commands: CommandRelay,
        *,
        logger: Optional[logging.Logger] = None,
        rest: Optional[DiscordRestClient] = None,
    ) -> None:
        self._registry = registry
        self._commands = commands
        self._logger = logger or logging.getLogger(__name__)
        self._rest = rest

    async def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        interaction_type = payload.get("type")
        if interaction_type == DISCORD_INTERACTION_PING:
            return {"type": DISCORD_RESPONSE_PONG}
        try:
            if is_component_interaction(payload):
                return await self._handle_component(payload)
            if interaction_type == DISCORD_INTERACTION_APPLICATION_COMMAND:
                return await self._handle_command(payload)
        except RelayError as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "discord.interaction.failed",
                interaction_id=extract_interaction_id(payload),
                exc=exc,
            )
            return ephemeral_response(exc.user_message or FAILURE_MESSAGE)
        return ephemeral_response(UNKNOWN_INTERACTION_MESSAGE)

    async def respond(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self.handle(payload)
        interaction_id = extract_interaction_id(payload)
        interaction_token = extract_interaction_token(payload)
        if self._rest is None or not interaction_id or not interaction_token:
            raise RuntimeError("respond needs a REST client and interaction credentials")
        await self._rest.create_interaction_response(
            interaction_id=interaction_id,
            interaction_token=interaction_token,
            payload=response,
        )
        return response

    async def _handle_command(self, payload: dict[str, Any]) -> dict[str, Any]:
        path, options = extract_command_path_and_options(payload)
        if path == (ROLL_HERE_COMMAND,):
            return await self._handle_roll_here(payload, options)
        if path == (CONNECT_COMMAND,):
            return await self._handle_connect(payload, options)
        return ephemeral_response(UNKNOWN_INTERACTION_MESSAGE)

    async def _handle_roll_here(
        self, payload: dict[str, Any], options: dict[str, Any]
    ) -> dict[str, Any]:
        user_id = extract_user_id(payload)
        if not user_id:
            return ephemeral_response(UNKNOWN_INTERACTION_MESSAGE)
        result = await self._commands.enqueue_roll_here(
            user_id,
            str(options.get("dice") or ""),
            display_name=_as_id(options.get("name")),
            actor_name=extract_user_display_name(payload),
        )
        return ephemeral_response(result.user_message or FAILURE_MESSAGE)

    async def _handle_connect(
        self, payload: dict[str, Any], options: dict[str, Any]
    ) -> dict[str, Any]:
        permissions = extract_member_permissions(payload)
        if not permissions & DISCORD_PERMISSION_MANAGE_WEBHOOKS:
            return ephemeral_response(MISSING_PERMISSION_MESSAGE)
        channel_id = extract_channel_id(payload)
        code = _as_id(options.get("code"))
        if not channel_id or not code:
            return ephemeral_response(UNKNOWN_INTERACTION_MESSAGE)
        try:
            await self._registry.redeem_code(
                code,
                destination=Destination(
                    channel_id=channel_id, guild_id=extract_guild_id(payload)
                ),
                owner_id=extract_user_id(payload),
            )
        except ResolutionError as exc:
            return ephemeral_response(f"❌ {exc.user_message or exc}")
        return ephemeral_response(CONNECTED_MESSAGE)

    async def _handle_component(self, payload: dict[str, Any]) -> dict[str, Any]:
        custom_id = extract_component_custom_id(payload)
        channel_id = extract_channel_id(payload)
        user_id = extract_user_id(payload)
        if (
            not custom_id
            or not custom_id.startswith(f"{CONTROL_ID_PREFIX}:")
            or not channel_id
            or not user_id
        ):
            return ephemeral_response(UNKNOWN_INTERACTION_MESSAGE)
        result = await self._commands.enqueue_control_command(
            channel_id,
            user_id,
            custom_id,
            message_id=extract_message_id(payload),
        )
        return ephemeral_response(result.user_message or FAILURE_MESSAGE)
