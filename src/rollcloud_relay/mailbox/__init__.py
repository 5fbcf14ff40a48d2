"""Mailbox queues and the pairing registry."""

from .models import (
    TERMINAL_STATUSES,
    Destination,
    MailboxRow,
    NewMailboxRow,
    Pairing,
    PairingStatus,
    QueueKind,
    RowStatus,
)
from .pairing import PairingRegistry, generate_pairing_code, normalize_code
from .postgrest_store import PostgrestRelayStore
from .sqlite_store import SqliteRelayStore
from .store import MailboxStore, PairingStore, RelayStore

__all__ = [
    "TERMINAL_STATUSES",
    "Destination",
    "MailboxRow",
    "MailboxStore",
    "NewMailboxRow",
    "Pairing",
    "PairingRegistry",
    "PairingStatus",
    "PairingStore",
    "PostgrestRelayStore",
    "QueueKind",
    "RelayStore",
    "RowStatus",
    "SqliteRelayStore",
    "generate_pairing_code",
    "normalize_code",
]
