"""Turn events to platform-neutral messages with bounded control groups."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator, Mapping, Optional

from ..core.dice import parse_dice, within_limits
from .control_ids import (
    ControlIdTooLong,
    end_turn_control_id,
    roll_control_id,
    spell_control_id,
    truncate_label,
)
from .events import (
    ActionKind,
    AvailableAction,
    CombatStart,
    OtherEvent,
    RoundChange,
    TurnEnd,
    TurnEvent,
    TurnStart,
    parse_turn_event,
)

MAX_CONTROLS_PER_GROUP = 5
MAX_GROUPS_PER_MESSAGE = 5
MAX_ACTION_CONTROLS = 3
MAX_SPELL_CONTROLS = 2
DEFAULT_ACTION_ROLL = "1d20"
END_TURN_LABEL = "End Turn"
GENERIC_TITLE = "Combat Update"


class StyleTag(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    SUCCESS = "success"


class ColorTag(str, Enum):
    TURN = "turn"
    MUTED = "muted"
    ROUND = "round"
    COMBAT = "combat"


@dataclass(frozen=True)
class Control:
    id_token: str
    label: str
    style_tag: StyleTag
    icon: Optional[str] = None


@dataclass(frozen=True)
class ControlGroup:
    controls: tuple[Control, ...]


@dataclass(frozen=True)
class RenderedMessage:
    title: str
    body: Optional[str] = None
    color_tag: ColorTag = ColorTag.TURN
    fields: tuple[tuple[str, str], ...] = field(default_factory=tuple)
    control_groups: tuple[ControlGroup, ...] = field(default_factory=tuple)

    def iter_controls(self) -> Iterator[Control]:
        for group in self.control_groups:
            yield from group.controls


def _icon(available: bool) -> str:
    return "✅" if available else "❌"


def _action_roll(action: AvailableAction) -> Optional[str]:
    """Notation for an action's button, or None when it cannot be offered.

    Only a missing roll falls back to the default; a roll that does not
    parse, or is over the dice limits, gets no button at all.
    """
    if action.roll is None:
        return DEFAULT_ACTION_ROLL
    parsed = parse_dice(action.roll)
    if parsed is None or not within_limits(parsed):
        return None
    return str(parsed)


def _end_turn_control(actor_name: str) -> Control:
    return Control(
        id_token=end_turn_control_id(actor_name),
        label=END_TURN_LABEL,
        style_tag=StyleTag.SECONDARY,
        icon="⏭️",
    )


def _attack_control(action: AvailableAction) -> Optional[Control]:
    roll = _action_roll(action)
    if roll is None:
        return None
    try:
        id_token = roll_control_id(action.name, roll)
    except ControlIdTooLong:
        return None
    return Control(
        id_token=id_token,
        label=truncate_label(action.name),
        style_tag=StyleTag.PRIMARY,
        icon="⚔️",
    )


def _spell_control(spell: AvailableAction) -> Optional[Control]:
    try:
        id_token = spell_control_id(spell.name, spell.level)
    except ControlIdTooLong:
        return None
    return Control(
        id_token=id_token,
        label=truncate_label(spell.name),
        style_tag=StyleTag.SUCCESS,
        icon="🔮",
    )


def _first(controls: Iterable[Optional[Control]], limit: int) -> list[Control]:
    kept: list[Control] = []
    for control in controls:
        if control is None:
            continue
        kept.append(control)
        if len(kept) >= limit:
            break
    return kept


def _action_controls(actions: tuple[AvailableAction, ...]) -> list[Control]:
    attacks = (
        _attack_control(a)
        for a in actions
        if a.kind is ActionKind.ACTION and not a.builtin
    )
    spells = (_spell_control(a) for a in actions if a.kind is ActionKind.SPELL)
    return _first(attacks, MAX_ACTION_CONTROLS) + _first(spells, MAX_SPELL_CONTROLS)


def build_control_groups(
    actions: tuple[AvailableAction, ...], actor_name: str
) -> tuple[ControlGroup, ...]:
    """Pack action/spell controls into groups and close with End Turn.

    Content groups that would push the message past the group limit are
    dropped; the End Turn group is always kept.
    """
    end_turn = ControlGroup(controls=(_end_turn_control(actor_name),))
    controls = _action_controls(actions)
    groups = [
        ControlGroup(controls=tuple(controls[i : i + MAX_CONTROLS_PER_GROUP]))
        for i in range(0, len(controls), MAX_CONTROLS_PER_GROUP)
    ]
    groups = groups[: MAX_GROUPS_PER_MESSAGE - 1]
    groups.append(end_turn)
    return tuple(groups)


def _render_turn_start(event: TurnStart) -> RenderedMessage:
    body = (
        "**Action Economy:**\n"
        f"Action: {_icon(event.action_available)} | "
        f"Bonus: {_icon(event.bonus_available)} | "
        f"Move: {_icon(event.movement_available)} | "
        f"Reaction: {_icon(event.reaction_available)}"
    )
    fields: list[tuple[str, str]] = []
    if event.round_number is not None:
        fields.append(("Round", str(event.round_number)))
    if event.initiative is not None:
        fields.append(("Initiative", str(event.initiative)))
    return RenderedMessage(
        title=f"🎲 {event.actor_name}'s Turn!",
        body=body,
        color_tag=ColorTag.TURN,
        fields=tuple(fields),
        control_groups=build_control_groups(
            event.available_actions, event.actor_name
        ),
    )


def render(event: TurnEvent) -> RenderedMessage:
    if isinstance(event, TurnStart):
        return _render_turn_start(event)
    if isinstance(event, TurnEnd):
        return RenderedMessage(
            title=f"⏸️ {event.actor_name}'s Turn Ended", color_tag=ColorTag.MUTED
        )
    if isinstance(event, RoundChange):
        round_label = "" if event.round_number is None else f" {event.round_number}"
        return RenderedMessage(
            title=f"🔄 Round{round_label}",
            body=(
                f"Current turn: **{event.actor_name}**"
                if event.actor_name
                else "New round begins!"
            ),
            color_tag=ColorTag.ROUND,
        )
    if isinstance(event, CombatStart):
        return RenderedMessage(
            title="⚔️ Combat Started!",
            body=(
                f"First up: **{event.actor_name}**"
                if event.actor_name
                else "Roll for initiative!"
            ),
            color_tag=ColorTag.COMBAT,
        )
    if isinstance(event, OtherEvent):
        return RenderedMessage(
            title=f"🎲 {event.actor_name or GENERIC_TITLE}",
            body=event.tag,
            color_tag=ColorTag.TURN,
        )
    return RenderedMessage(
        title=f"🎲 {GENERIC_TITLE}", body=type(event).__name__, color_tag=ColorTag.TURN
    )


def render_row(event_type: Any, payload: Optional[Mapping[str, Any]]) -> RenderedMessage:
    return render(parse_turn_event(event_type, payload))
