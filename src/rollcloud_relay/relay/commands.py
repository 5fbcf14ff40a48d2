"""Command relay: bot-side requests written as pending command rows.

Nothing here waits for the remote client. A successful enqueue returns the
new row id so callers can correlate later if they care; the client is
expected to dedupe by that id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..core.dice import DiceRoll, validate_dice
from ..core.exceptions import DiceValidationError, StoreError
from ..core.logging_utils import log_event
from ..mailbox.models import NewMailboxRow, Pairing, QueueKind
from ..mailbox.pairing import PairingRegistry
from ..mailbox.store import MailboxStore
from .control_ids import ControlAction, ControlKind, parse_control_id

COMMAND_ROLL_HERE = "roll_here"

REASON_NOT_CONNECTED = "not connected"
REASON_STORE_UNAVAILABLE = "store unavailable"
REASON_INVALID_CONTROL = "invalid control"

NOT_CONNECTED_MESSAGE = (
    "❌ No active RollCloud connection. Use `/rollcloud <code>` to connect first."
)
CHANNEL_NOT_CONNECTED_MESSAGE = (
    "❌ RollCloud is not connected to this channel. "
    "Use `/rollcloud <code>` to connect."
)
STORE_UNAVAILABLE_MESSAGE = "❌ Failed to send the command. Please try again."
INVALID_CONTROL_MESSAGE = "❌ This button is no longer valid."


@dataclass(frozen=True)
class CommandResult:
    ok: bool
    reason: Optional[str] = None
    row_id: Optional[str] = None
    user_message: Optional[str] = None


def _control_ack(action: ControlAction) -> str:
    if action.kind is ControlKind.ROLL:
        return f"🎲 Rolling **{action.name}**..."
    if action.kind is ControlKind.USE_ABILITY:
        return f"🔮 Using **{action.name}**..."
    return "⏭️ Ending turn..."


class CommandRelay:
    def __init__(
        self,
        store: MailboxStore,
        registry: PairingRegistry,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._logger = logger or logging.getLogger(__name__)

    async def enqueue_roll_here(
        self,
        caller_identity: str,
        notation: str,
        display_name: Optional[str] = None,
        actor_name: Optional[str] = None,
        check_type: Optional[str] = None,
    ) -> CommandResult:
        try:
            roll = validate_dice(notation)
        except DiceValidationError as exc:
            return CommandResult(
                ok=False, reason=exc.reason, user_message=f"❌ {exc.user_message}"
            )

        pairing = await self._registry.resolve_by_owner(caller_identity)
        if pairing is None:
            log_event(
                self._logger,
                logging.INFO,
                "relay.commands.not_connected",
                caller_identity=caller_identity,
            )
            return CommandResult(
                ok=False,
                reason=REASON_NOT_CONNECTED,
                user_message=NOT_CONNECTED_MESSAGE,
            )

        name = (display_name or "").strip() or f"Roll {roll}"
        payload: dict[str, Any] = {
            "command_kind": COMMAND_ROLL_HERE,
            "roll_string": str(roll),
            "computed": roll.to_dict(),
            "display_name": name,
            "actor_name": actor_name,
            "check_type": check_type,
            "caller_identity": caller_identity,
        }
        result = await self._insert(pairing, COMMAND_ROLL_HERE, payload)
        if not result.ok:
            return result
        return CommandResult(
            ok=True,
            row_id=result.row_id,
            user_message=f"🎲 Rolling **{name}** (`{roll}`) in RollCloud...",
        )

    async def enqueue_control_command(
        self,
        channel_id: str,
        caller_identity: str,
        custom_id: str,
        message_id: Optional[str] = None,
    ) -> CommandResult:
        """Turn a ``rollcloud:*`` button click into a command row."""
        action = parse_control_id(custom_id)
        if action is None:
            return CommandResult(
                ok=False,
                reason=REASON_INVALID_CONTROL,
                user_message=INVALID_CONTROL_MESSAGE,
            )

        roll: Optional[DiceRoll] = None
        if action.kind is ControlKind.ROLL:
            try:
                roll = validate_dice(action.roll)
            except DiceValidationError as exc:
                return CommandResult(
                    ok=False, reason=exc.reason, user_message=f"❌ {exc.user_message}"
                )

        pairing = await self._registry.resolve_by_destination(channel_id)
        if pairing is None:
            return CommandResult(
                ok=False,
                reason=REASON_NOT_CONNECTED,
                user_message=CHANNEL_NOT_CONNECTED_MESSAGE,
            )

        payload: dict[str, Any] = {
            "command_kind": action.kind.value,
            "display_name": action.name,
            "caller_identity": caller_identity,
            "channel_id": channel_id,
            "message_id": message_id,
        }
        if roll is not None:
            payload["roll_string"] = str(roll)
            payload["computed"] = roll.to_dict()
        if action.kind is ControlKind.USE_ABILITY:
            payload["ability_type"] = "spell"
            payload["spell_level"] = action.level
        if action.kind is ControlKind.END_TURN:
            payload["actor_name"] = action.name

        result = await self._insert(pairing, action.kind.value, payload)
        if not result.ok:
            return result
        return CommandResult(
            ok=True, row_id=result.row_id, user_message=_control_ack(action)
        )

    async def _insert(
        self, pairing: Pairing, command_kind: str, payload: dict[str, Any]
    ) -> CommandResult:
        try:
            row = await self._store.insert(
                QueueKind.COMMANDS,
                NewMailboxRow(
                    pairing_id=pairing.pairing_id,
                    event_type=command_kind,
                    payload=payload,
                ),
            )
        except StoreError as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "relay.commands.enqueue_failed",
                pairing_id=pairing.pairing_id,
                command_kind=command_kind,
                exc=exc,
            )
            return CommandResult(
                ok=False,
                reason=REASON_STORE_UNAVAILABLE,
                user_message=STORE_UNAVAILABLE_MESSAGE,
            )
        log_event(
            self._logger,
            logging.INFO,
            "relay.commands.enqueued",
            row_id=row.row_id,
            pairing_id=pairing.pairing_id,
            command_kind=command_kind,
        )
        return CommandResult(ok=True, row_id=row.row_id)
