from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class QueueKind(str, Enum):
    TURNS = "turns"
    COMMANDS = "commands"


class RowStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    POSTED = "posted"
    DELIVERED = "delivered"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {RowStatus.POSTED, RowStatus.DELIVERED, RowStatus.FAILED}
)


class PairingStatus(str, Enum):
    PENDING = "pending"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class Destination:
    channel_id: str
    guild_id: Optional[str] = None


@dataclass(frozen=True)
class Pairing:
    pairing_id: str
    code: str
    client_identity: Optional[str]
    status: PairingStatus
    created_at: str
    destination: Optional[Destination] = None
    client_name: Optional[str] = None
    owner_id: Optional[str] = None
    connected_at: Optional[str] = None
    expires_at: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self.status is PairingStatus.CONNECTED


@dataclass(frozen=True)
class NewMailboxRow:
    """A row as written by a producer; the store assigns id and timestamps."""

    pairing_id: str
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MailboxRow:
    row_id: str
    queue: QueueKind
    pairing_id: Optional[str]
    event_type: str
    payload: dict[str, Any]
    status: RowStatus
    created_at: str
    claimed_at: Optional[str] = None
    terminal_at: Optional[str] = None
    terminal_ref: Optional[str] = None
    failure_reason: Optional[str] = None
    pairing: Optional[Pairing] = None


# Status words the remote client writes for rows it consumes.
_ROW_STATUS_ALIASES = {
    "processing": RowStatus.IN_PROGRESS,
    "completed": RowStatus.DELIVERED,
    "expired": RowStatus.FAILED,
}


def coerce_row_status(value: object) -> RowStatus:
    text = str(value).strip().lower()
    alias = _ROW_STATUS_ALIASES.get(text)
    if alias is not None:
        return alias
    try:
        return RowStatus(text)
    except ValueError:
        return RowStatus.FAILED


def coerce_pairing_status(value: object) -> PairingStatus:
    try:
        return PairingStatus(str(value).strip().lower())
    except ValueError:
        return PairingStatus.DISCONNECTED
