from __future__ import annotations

DISCORD_API_BASE_URL = "https://discord.com/api/v10"

# Discord hard limits for embeds and message components.
DISCORD_MAX_EMBED_TITLE_LENGTH = 256
DISCORD_MAX_EMBED_DESCRIPTION_LENGTH = 4096
DISCORD_MAX_EMBED_FIELD_VALUE_LENGTH = 1024
DISCORD_MAX_CUSTOM_ID_LENGTH = 100
DISCORD_MAX_BUTTON_LABEL_LENGTH = 80

# Interaction types (https://discord.com/developers/docs/interactions/receiving-and-responding).
DISCORD_INTERACTION_PING = 1
DISCORD_INTERACTION_APPLICATION_COMMAND = 2
DISCORD_INTERACTION_MESSAGE_COMPONENT = 3

DISCORD_RESPONSE_PONG = 1
DISCORD_RESPONSE_CHANNEL_MESSAGE = 4

DISCORD_MESSAGE_FLAG_EPHEMERAL = 1 << 6
