from __future__ import annotations

from rollcloud_relay.integrations.discord.components import (
    DISCORD_BUTTON_STYLE_PRIMARY,
    DISCORD_BUTTON_STYLE_SECONDARY,
    DISCORD_BUTTON_STYLE_SUCCESS,
    EMBED_COLORS,
    build_button,
    rendered_message_payload,
)
from rollcloud_relay.integrations.discord.constants import (
    DISCORD_MAX_BUTTON_LABEL_LENGTH,
    DISCORD_MAX_CUSTOM_ID_LENGTH,
)
from rollcloud_relay.relay.builder import ColorTag, RenderedMessage, render
from rollcloud_relay.relay.events import ActionKind, AvailableAction, TurnStart

TIMESTAMP = "2026-01-01T00:00:00.000000Z"


def test_turn_start_payload_has_embed_and_action_rows() -> None:
    message = render(
        TurnStart(
            actor_name="Thorin",
            round_number=1,
            available_actions=(
                AvailableAction("Greataxe", ActionKind.ACTION, roll="1d12+3"),
                AvailableAction("Shield", ActionKind.SPELL, level=1),
            ),
        )
    )

    payload = rendered_message_payload(message, timestamp=TIMESTAMP)

    (embed,) = payload["embeds"]
    assert embed["title"] == "🎲 Thorin's Turn!"
    assert embed["color"] == EMBED_COLORS[ColorTag.TURN]
    assert embed["timestamp"] == TIMESTAMP
    assert embed["description"].startswith("**Action Economy:**")
    assert embed["fields"] == [{"name": "Round", "value": "1", "inline": True}]

    content_row, end_row = payload["components"]
    assert content_row["type"] == 1
    greataxe, shield = content_row["components"]
    assert greataxe == {
        "type": 2,
        "style": DISCORD_BUTTON_STYLE_PRIMARY,
        "label": "Greataxe",
        "custom_id": "rollcloud:roll:Greataxe:1d12+3",
        "disabled": False,
        "emoji": {"name": "⚔️"},
    }
    assert shield["style"] == DISCORD_BUTTON_STYLE_SUCCESS
    assert shield["custom_id"] == "rollcloud:use_ability:Shield:spell:1"
    (end_turn,) = end_row["components"]
    assert end_turn["style"] == DISCORD_BUTTON_STYLE_SECONDARY
    assert end_turn["custom_id"] == "rollcloud:end_turn:Thorin"


def test_plain_message_has_no_description_or_components() -> None:
    payload = rendered_message_payload(
        RenderedMessage(title="⏸️ Gimli's Turn Ended", color_tag=ColorTag.MUTED),
        timestamp=TIMESTAMP,
    )
    (embed,) = payload["embeds"]
    assert "description" not in embed
    assert "fields" not in embed
    assert embed["color"] == EMBED_COLORS[ColorTag.MUTED]
    assert payload["components"] == []


def test_build_button_enforces_discord_limits() -> None:
    button = build_button("L" * 120, "c" * 150)
    assert len(button["label"]) == DISCORD_MAX_BUTTON_LABEL_LENGTH
    assert len(button["custom_id"]) == DISCORD_MAX_CUSTOM_ID_LENGTH
    assert "emoji" not in button
