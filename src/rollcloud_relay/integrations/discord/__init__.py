"""Discord delivery and interaction handling for the relay."""

from .components import build_action_row, build_button, rendered_message_payload
from .constants import DISCORD_API_BASE_URL
from .destination import DiscordDestinationClient
from .errors import DiscordAPIError, DiscordPermanentError, DiscordTransientError
from .interactions import InteractionRouter, ephemeral_response
from .rest import DiscordRestClient

__all__ = [
    "DISCORD_API_BASE_URL",
    "DiscordAPIError",
    "DiscordDestinationClient",
    "DiscordPermanentError",
    "DiscordRestClient",
    "DiscordTransientError",
    "InteractionRouter",
    "build_action_row",
    "build_button",
    "ephemeral_response",
    "rendered_message_payload",
]
