"""Typed turn events parsed from mailbox rows.

The remote client writes loosely typed rows; ``parse_turn_event`` turns
them into one of a closed set of variants and never raises. Unknown tags
become ``OtherEvent`` so the renderer always has something to show.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Union


class TurnEventType(str, Enum):
    TURN_START = "turn_start"
    TURN_END = "turn_end"
    ROUND_CHANGE = "round_change"
    COMBAT_START = "combat_start"


class ActionKind(str, Enum):
    ACTION = "action"
    SPELL = "spell"


@dataclass(frozen=True)
class AvailableAction:
    name: str
    kind: ActionKind
    roll: Optional[str] = None
    level: Optional[int] = None
    builtin: bool = False


@dataclass(frozen=True)
class TurnStart:
    actor_name: str
    round_number: Optional[int] = None
    initiative: Optional[int] = None
    action_available: bool = True
    bonus_available: bool = True
    movement_available: bool = True
    reaction_available: bool = True
    available_actions: tuple[AvailableAction, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class TurnEnd:
    actor_name: str


@dataclass(frozen=True)
class RoundChange:
    round_number: Optional[int] = None
    actor_name: Optional[str] = None


@dataclass(frozen=True)
class CombatStart:
    actor_name: Optional[str] = None


@dataclass(frozen=True)
class OtherEvent:
    tag: str
    actor_name: Optional[str] = None


TurnEvent = Union[TurnStart, TurnEnd, RoundChange, CombatStart, OtherEvent]

UNKNOWN_ACTOR = "Unknown"


def _opt_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _opt_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _flag(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y", "on"}
    return default


def parse_available_action(raw: Any) -> Optional[AvailableAction]:
    if not isinstance(raw, Mapping):
        return None
    name = _opt_text(raw.get("name"))
    kind_raw = _opt_text(raw.get("kind") or raw.get("type"))
    if name is None or kind_raw is None:
        return None
    try:
        kind = ActionKind(kind_raw.lower())
    except ValueError:
        return None
    return AvailableAction(
        name=name,
        kind=kind,
        roll=_opt_text(raw.get("roll")),
        level=_opt_int(raw.get("level")) if kind is ActionKind.SPELL else None,
        builtin=_flag(raw.get("builtin"), default=False),
    )


def _parse_actions(raw: Any) -> tuple[AvailableAction, ...]:
    if not isinstance(raw, (list, tuple)):
        return ()
    parsed = (parse_available_action(item) for item in raw)
    return tuple(action for action in parsed if action is not None)


def parse_turn_event(event_type: Any, payload: Any) -> TurnEvent:
    data: Mapping[str, Any] = payload if isinstance(payload, Mapping) else {}
    tag = str(event_type or "").strip()
    actor = _opt_text(data.get("character_name") or data.get("actor_name"))

    if tag == TurnEventType.TURN_START.value:
        return TurnStart(
            actor_name=actor or UNKNOWN_ACTOR,
            round_number=_opt_int(data.get("round_number")),
            initiative=_opt_int(data.get("initiative")),
            action_available=_flag(data.get("action_available")),
            bonus_available=_flag(data.get("bonus_available")),
            movement_available=_flag(data.get("movement_available")),
            reaction_available=_flag(data.get("reaction_available")),
            available_actions=_parse_actions(data.get("available_actions")),
        )
    if tag == TurnEventType.TURN_END.value:
        return TurnEnd(actor_name=actor or UNKNOWN_ACTOR)
    if tag == TurnEventType.ROUND_CHANGE.value:
        return RoundChange(
            round_number=_opt_int(data.get("round_number")), actor_name=actor
        )
    if tag == TurnEventType.COMBAT_START.value:
        return CombatStart(actor_name=actor)
    return OtherEvent(tag=tag or "unknown", actor_name=actor)
