"""Store contracts shared by the relay directions.

Two backends implement both protocols: ``SqliteRelayStore`` (local file)
and ``PostgrestRelayStore`` (hosted Supabase tables).
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from .models import (
    Destination,
    MailboxRow,
    NewMailboxRow,
    Pairing,
    PairingStatus,
    QueueKind,
    RowStatus,
)


@runtime_checkable
class MailboxStore(Protocol):
    async def insert(self, queue: QueueKind, row: NewMailboxRow) -> MailboxRow: ...

    async def fetch_pending(self, queue: QueueKind, limit: int) -> list[MailboxRow]:
        """Pending rows, oldest ``created_at`` first, with their pairing joined."""
        ...

    async def claim(self, queue: QueueKind, row_id: str) -> bool:
        """Move one row ``pending`` -> ``in_progress``; False if another poller won."""
        ...

    async def mark_terminal(
        self,
        queue: QueueKind,
        row_id: str,
        status: RowStatus,
        *,
        terminal_ref: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> bool:
        """Set a terminal status once; already terminal rows are left untouched."""
        ...

    async def release_stale_claims(
        self, queue: QueueKind, older_than_seconds: float
    ) -> int: ...

    async def get_row(self, queue: QueueKind, row_id: str) -> Optional[MailboxRow]: ...

    async def list_failed(self, queue: QueueKind, limit: int) -> list[MailboxRow]: ...


@runtime_checkable
class PairingStore(Protocol):
    async def insert_pairing(self, pairing: Pairing) -> Pairing: ...

    async def find_pairing(
        self,
        *,
        pairing_id: Optional[str] = None,
        code: Optional[str] = None,
        client_identity: Optional[str] = None,
        owner_id: Optional[str] = None,
        channel_id: Optional[str] = None,
        status: Optional[PairingStatus] = None,
    ) -> Optional[Pairing]:
        """Newest pairing matching every given filter."""
        ...

    async def connect_pairing(
        self,
        code: str,
        *,
        destination: Destination,
        owner_id: Optional[str],
        now: str,
    ) -> Optional[Pairing]:
        """Conditionally move an unexpired ``pending`` pairing to ``connected``."""
        ...

    async def set_pairing_status(
        self, pairing_id: str, status: PairingStatus
    ) -> bool: ...

    async def delete_expired_pairings(self, now: str) -> int: ...


class RelayStore(MailboxStore, PairingStore, Protocol):
    async def initialize(self) -> None: ...

    async def close(self) -> None: ...
