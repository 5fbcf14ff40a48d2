"""Turn relay, command relay and the message builder they share."""

from .builder import (
    ColorTag,
    Control,
    ControlGroup,
    RenderedMessage,
    StyleTag,
    build_control_groups,
    render,
    render_row,
)
from .commands import CommandRelay, CommandResult
from .control_ids import ControlAction, ControlKind, parse_control_id
from .events import (
    AvailableAction,
    CombatStart,
    OtherEvent,
    RoundChange,
    TurnEnd,
    TurnEvent,
    TurnStart,
    parse_turn_event,
)
from .scheduler import DestinationClient, PollReport, RelayScheduler

__all__ = [
    "AvailableAction",
    "ColorTag",
    "CombatStart",
    "CommandRelay",
    "CommandResult",
    "Control",
    "ControlAction",
    "ControlGroup",
    "ControlKind",
    "DestinationClient",
    "OtherEvent",
    "PollReport",
    "RelayScheduler",
    "RenderedMessage",
    "RoundChange",
    "StyleTag",
    "TurnEnd",
    "TurnEvent",
    "TurnStart",
    "build_control_groups",
    "parse_control_id",
    "parse_turn_event",
    "render",
    "render_row",
]
