from __future__ import annotations

from typing import Any, Optional

from ...core.time_utils import now_iso
from ...relay.builder import ColorTag, Control, RenderedMessage, StyleTag
from .constants import (
    DISCORD_MAX_BUTTON_LABEL_LENGTH,
    DISCORD_MAX_CUSTOM_ID_LENGTH,
    DISCORD_MAX_EMBED_DESCRIPTION_LENGTH,
    DISCORD_MAX_EMBED_FIELD_VALUE_LENGTH,
    DISCORD_MAX_EMBED_TITLE_LENGTH,
)

DISCORD_BUTTON_STYLE_PRIMARY = 1
DISCORD_BUTTON_STYLE_SECONDARY = 2
DISCORD_BUTTON_STYLE_SUCCESS = 3

_BUTTON_STYLES = {
    StyleTag.PRIMARY: DISCORD_BUTTON_STYLE_PRIMARY,
    StyleTag.SECONDARY: DISCORD_BUTTON_STYLE_SECONDARY,
    StyleTag.SUCCESS: DISCORD_BUTTON_STYLE_SUCCESS,
}

EMBED_COLORS = {
    ColorTag.TURN: 0x4ECDC4,
    ColorTag.MUTED: 0x95A5A6,
    ColorTag.ROUND: 0x9B59B6,
    ColorTag.COMBAT: 0xE74C3C,
}


def build_action_row(components: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "type": 1,
        "components": components,
    }


def build_button(
    label: str,
    custom_id: str,
    *,
    style: int = DISCORD_BUTTON_STYLE_SECONDARY,
    emoji: Optional[str] = None,
    disabled: bool = False,
) -> dict[str, Any]:
    button: dict[str, Any] = {
        "type": 2,
        "style": style,
        "label": label[:DISCORD_MAX_BUTTON_LABEL_LENGTH],
        "custom_id": custom_id[:DISCORD_MAX_CUSTOM_ID_LENGTH],
        "disabled": disabled,
    }
    if emoji:
        button["emoji"] = {"name": emoji}
    return button


def build_control_button(control: Control) -> dict[str, Any]:
    return build_button(
        control.label,
        control.id_token,
        style=_BUTTON_STYLES.get(control.style_tag, DISCORD_BUTTON_STYLE_SECONDARY),
        emoji=control.icon,
    )


def build_embed(
    message: RenderedMessage, *, timestamp: Optional[str] = None
) -> dict[str, Any]:
    embed: dict[str, Any] = {
        "title": message.title[:DISCORD_MAX_EMBED_TITLE_LENGTH],
        "color": EMBED_COLORS.get(message.color_tag, EMBED_COLORS[ColorTag.TURN]),
        "timestamp": timestamp or now_iso(),
    }
    if message.body:
        embed["description"] = message.body[:DISCORD_MAX_EMBED_DESCRIPTION_LENGTH]
    if message.fields:
        embed["fields"] = [
            {
                "name": name,
                "value": value[:DISCORD_MAX_EMBED_FIELD_VALUE_LENGTH],
                "inline": True,
            }
            for name, value in message.fields
        ]
    return embed


def rendered_message_payload(
    message: RenderedMessage, *, timestamp: Optional[str] = None
) -> dict[str, Any]:
    """Channel message body: one embed plus an action row per control group."""
    return {
        "embeds": [build_embed(message, timestamp=timestamp)],
        "components": [
            build_action_row([build_control_button(c) for c in group.controls])
            for group in message.control_groups
            if group.controls
        ],
    }
