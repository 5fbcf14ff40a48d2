from __future__ import annotations

import asyncio
import json
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Optional

from ..core.exceptions import StoreError
from ..core.sqlite_utils import connect_sqlite
from ..core.time_utils import format_iso, now_iso, now_utc
from .models import (
    Destination,
    MailboxRow,
    NewMailboxRow,
    Pairing,
    PairingStatus,
    QueueKind,
    RowStatus,
    coerce_pairing_status,
    coerce_row_status,
)

RELAY_STATE_SCHEMA_VERSION = 1

_QUEUE_TABLES = {
    QueueKind.TURNS: "turns",
    QueueKind.COMMANDS: "commands",
}

_PAIRING_COLUMNS = (
    "pairing_id",
    "code",
    "client_identity",
    "client_name",
    "channel_id",
    "guild_id",
    "owner_id",
    "status",
    "created_at",
    "connected_at",
    "expires_at",
)

_NOT_TERMINAL = (RowStatus.PENDING.value, RowStatus.IN_PROGRESS.value)


def _table(queue: QueueKind) -> str:
    return _QUEUE_TABLES[QueueKind(queue)]


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text or None


class SqliteRelayStore:
    """Mailbox queues and the pairing registry in one local SQLite file.

    All access goes through a single worker thread, so the connection is
    only ever touched from that thread.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="relay-state"
        )
        self._connection: Optional[sqlite3.Connection] = None

    @property
    def path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        await self._run(self._ensure_initialized_sync)

    async def close(self) -> None:
        await self._run(self._close_sync)
        self._executor.shutdown(wait=True)

    # Mailbox rows

    async def insert(self, queue: QueueKind, row: NewMailboxRow) -> MailboxRow:
        return await self._run(self._insert_sync, QueueKind(queue), row)

    async def fetch_pending(self, queue: QueueKind, limit: int) -> list[MailboxRow]:
        return await self._run(self._fetch_pending_sync, QueueKind(queue), limit)

    async def claim(self, queue: QueueKind, row_id: str) -> bool:
        return await self._run(self._claim_sync, QueueKind(queue), row_id)

    async def mark_terminal(
        self,
        queue: QueueKind,
        row_id: str,
        status: RowStatus,
        *,
        terminal_ref: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> bool:
        status = RowStatus(status)
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        return await self._run(
            self._mark_terminal_sync,
            QueueKind(queue),
            row_id,
            status,
            terminal_ref,
            failure_reason,
        )

    async def release_stale_claims(
        self, queue: QueueKind, older_than_seconds: float
    ) -> int:
        return await self._run(
            self._release_stale_claims_sync, QueueKind(queue), older_than_seconds
        )

    async def get_row(self, queue: QueueKind, row_id: str) -> Optional[MailboxRow]:
        return await self._run(self._get_row_sync, QueueKind(queue), row_id)

    async def list_failed(self, queue: QueueKind, limit: int) -> list[MailboxRow]:
        return await self._run(self._list_failed_sync, QueueKind(queue), limit)

    # Pairings

    async def insert_pairing(self, pairing: Pairing) -> Pairing:
        return await self._run(self._insert_pairing_sync, pairing)

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
        filters: dict[str, str] = {}
        if pairing_id is not None:
            filters["pairing_id"] = pairing_id
        if code is not None:
            filters["code"] = code
        if client_identity is not None:
            filters["client_identity"] = client_identity
        if owner_id is not None:
            filters["owner_id"] = owner_id
        if channel_id is not None:
            filters["channel_id"] = channel_id
        if status is not None:
            filters["status"] = PairingStatus(status).value
        return await self._run(self._find_pairing_sync, filters)

    async def connect_pairing(
        self,
        code: str,
        *,
        destination: Destination,
        owner_id: Optional[str],
        now: str,
    ) -> Optional[Pairing]:
        return await self._run(
            self._connect_pairing_sync, code, destination, owner_id, now
        )

    async def set_pairing_status(
        self, pairing_id: str, status: PairingStatus
    ) -> bool:
        return await self._run(
            self._set_pairing_status_sync, pairing_id, PairingStatus(status)
        )

    async def delete_expired_pairings(self, now: str) -> int:
        return await self._run(self._delete_expired_pairings_sync, now)

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, func, *args)
        except sqlite3.Error as exc:
            raise StoreError(f"sqlite store error: {exc}") from exc

    def _connection_sync(self) -> sqlite3.Connection:
        if self._connection is None:
            self._connection = connect_sqlite(self._db_path)
            self._ensure_schema(self._connection)
        return self._connection

    def _ensure_initialized_sync(self) -> None:
        self._connection_sync()

    def _close_sync(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        with conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_info (
                    version INTEGER NOT NULL
                )
                """
            )
            row = conn.execute(
                "SELECT version FROM schema_info ORDER BY version DESC LIMIT 1"
            ).fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO schema_info(version) VALUES (?)",
                    (RELAY_STATE_SCHEMA_VERSION,),
                )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS pairings (
                    pairing_id TEXT PRIMARY KEY,
                    code TEXT NOT NULL UNIQUE,
                    client_identity TEXT,
                    client_name TEXT,
                    channel_id TEXT,
                    guild_id TEXT,
                    owner_id TEXT,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    connected_at TEXT,
                    expires_at TEXT
                )
                """
            )
            for table in _QUEUE_TABLES.values():
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        row_id INTEGER PRIMARY KEY AUTOINCREMENT,
                        pairing_id TEXT,
                        event_type TEXT NOT NULL,
                        payload_json TEXT NOT NULL,
                        status TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        claimed_at TEXT,
                        terminal_at TEXT,
                        terminal_ref TEXT,
                        failure_reason TEXT
                    )
                    """
                )
                conn.execute(
                    f"""
                    CREATE INDEX IF NOT EXISTS idx_{table}_pending
                        ON {table}(status, created_at)
                    """
                )

    def _pairing_from_row(
        self, row: sqlite3.Row, prefix: str = ""
    ) -> Optional[Pairing]:
        pairing_id = row[f"{prefix}pairing_id"]
        if pairing_id is None:
            return None
        channel_id = _opt_str(row[f"{prefix}channel_id"])
        destination = (
            Destination(channel_id=channel_id, guild_id=_opt_str(row[f"{prefix}guild_id"]))
            if channel_id
            else None
        )
        return Pairing(
            pairing_id=str(pairing_id),
            code=str(row[f"{prefix}code"]),
            client_identity=_opt_str(row[f"{prefix}client_identity"]),
            client_name=_opt_str(row[f"{prefix}client_name"]),
            status=coerce_pairing_status(row[f"{prefix}status"]),
            created_at=str(row[f"{prefix}created_at"]),
            destination=destination,
            owner_id=_opt_str(row[f"{prefix}owner_id"]),
            connected_at=_opt_str(row[f"{prefix}connected_at"]),
            expires_at=_opt_str(row[f"{prefix}expires_at"]),
        )

    def _mailbox_from_row(
        self, queue: QueueKind, row: sqlite3.Row, *, joined: bool = False
    ) -> MailboxRow:
        payload: dict[str, Any] = {}
        raw_payload = row["payload_json"]
        if isinstance(raw_payload, str) and raw_payload:
            try:
                data = json.loads(raw_payload)
                if isinstance(data, dict):
                    payload = data
            except json.JSONDecodeError:
                payload = {}
        return MailboxRow(
            row_id=str(row["row_id"]),
            queue=queue,
            pairing_id=_opt_str(row["pairing_id"]),
            event_type=str(row["event_type"]),
            payload=payload,
            status=coerce_row_status(row["status"]),
            created_at=str(row["created_at"]),
            claimed_at=_opt_str(row["claimed_at"]),
            terminal_at=_opt_str(row["terminal_at"]),
            terminal_ref=_opt_str(row["terminal_ref"]),
            failure_reason=_opt_str(row["failure_reason"]),
            pairing=self._pairing_from_row(row, prefix="p_") if joined else None,
        )

    def _insert_sync(self, queue: QueueKind, row: NewMailboxRow) -> MailboxRow:
        conn = self._connection_sync()
        table = _table(queue)
        with conn:
            cursor = conn.execute(
                f"""
                INSERT INTO {table} (
                    pairing_id,
                    event_type,
                    payload_json,
                    status,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    row.pairing_id,
                    row.event_type,
                    json.dumps(row.payload),
                    RowStatus.PENDING.value,
                    now_iso(),
                ),
            )
        inserted = self._get_row_sync(queue, str(cursor.lastrowid))
        if inserted is None:
            raise StoreError(f"inserted {table} row vanished")
        return inserted

    def _fetch_pending_sync(self, queue: QueueKind, limit: int) -> list[MailboxRow]:
        conn = self._connection_sync()
        table = _table(queue)
        pairing_select = ", ".join(f"p.{col} AS p_{col}" for col in _PAIRING_COLUMNS)
        rows = conn.execute(
            f"""
            SELECT r.*, {pairing_select}
            FROM {table} AS r
            LEFT JOIN pairings AS p ON p.pairing_id = r.pairing_id
            WHERE r.status = ?
            ORDER BY r.created_at ASC, r.row_id ASC
            LIMIT ?
            """,
            (RowStatus.PENDING.value, max(int(limit), 0)),
        ).fetchall()
        return [self._mailbox_from_row(queue, row, joined=True) for row in rows]

    def _claim_sync(self, queue: QueueKind, row_id: str) -> bool:
        conn = self._connection_sync()
        with conn:
            cursor = conn.execute(
                f"""
                UPDATE {_table(queue)}
                SET status = ?, claimed_at = ?
                WHERE row_id = ? AND status = ?
                """,
                (
                    RowStatus.IN_PROGRESS.value,
                    now_iso(),
                    row_id,
                    RowStatus.PENDING.value,
                ),
            )
        return cursor.rowcount == 1

    def _mark_terminal_sync(
        self,
        queue: QueueKind,
        row_id: str,
        status: RowStatus,
        terminal_ref: Optional[str],
        failure_reason: Optional[str],
    ) -> bool:
        conn = self._connection_sync()
        reason = None
        if status is RowStatus.FAILED:
            reason = str(failure_reason or "unknown error")[:500]
        with conn:
            cursor = conn.execute(
                f"""
                UPDATE {_table(queue)}
                SET status = ?,
                    terminal_at = ?,
                    terminal_ref = ?,
                    failure_reason = ?
                WHERE row_id = ? AND status IN (?, ?)
                """,
                (
                    status.value,
                    now_iso(),
                    terminal_ref,
                    reason,
                    row_id,
                    *_NOT_TERMINAL,
                ),
            )
        return cursor.rowcount == 1

    def _release_stale_claims_sync(
        self, queue: QueueKind, older_than_seconds: float
    ) -> int:
        conn = self._connection_sync()
        cutoff = format_iso(now_utc() - timedelta(seconds=older_than_seconds))
        with conn:
            cursor = conn.execute(
                f"""
                UPDATE {_table(queue)}
                SET status = ?, claimed_at = NULL
                WHERE status = ? AND claimed_at IS NOT NULL AND claimed_at < ?
                """,
                (RowStatus.PENDING.value, RowStatus.IN_PROGRESS.value, cutoff),
            )
        return int(cursor.rowcount or 0)

    def _get_row_sync(self, queue: QueueKind, row_id: str) -> Optional[MailboxRow]:
        conn = self._connection_sync()
        row = conn.execute(
            f"SELECT * FROM {_table(queue)} WHERE row_id = ?",
            (row_id,),
        ).fetchone()
        if row is None:
            return None
        return self._mailbox_from_row(queue, row)

    def _list_failed_sync(self, queue: QueueKind, limit: int) -> list[MailboxRow]:
        conn = self._connection_sync()
        rows = conn.execute(
            f"""
            SELECT * FROM {_table(queue)}
            WHERE status = ?
            ORDER BY terminal_at DESC, row_id DESC
            LIMIT ?
            """,
            (RowStatus.FAILED.value, max(int(limit), 0)),
        ).fetchall()
        return [self._mailbox_from_row(queue, row) for row in rows]

    def _insert_pairing_sync(self, pairing: Pairing) -> Pairing:
        conn = self._connection_sync()
        destination = pairing.destination
        with conn:
            conn.execute(
                """
                INSERT INTO pairings (
                    pairing_id,
                    code,
                    client_identity,
                    client_name,
                    channel_id,
                    guild_id,
                    owner_id,
                    status,
                    created_at,
                    connected_at,
                    expires_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    pairing.pairing_id,
                    pairing.code,
                    pairing.client_identity,
                    pairing.client_name,
                    destination.channel_id if destination else None,
                    destination.guild_id if destination else None,
                    pairing.owner_id,
                    pairing.status.value,
                    pairing.created_at,
                    pairing.connected_at,
                    pairing.expires_at,
                ),
            )
        return pairing

    def _find_pairing_sync(self, filters: dict[str, str]) -> Optional[Pairing]:
        conn = self._connection_sync()
        clauses = [f"{column} = ?" for column in filters]
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        row = conn.execute(
            f"""
            SELECT * FROM pairings
            {where}
            ORDER BY COALESCE(connected_at, created_at) DESC
            LIMIT 1
            """,
            tuple(filters.values()),
        ).fetchone()
        if row is None:
            return None
        return self._pairing_from_row(row)

    def _connect_pairing_sync(
        self,
        code: str,
        destination: Destination,
        owner_id: Optional[str],
        now: str,
    ) -> Optional[Pairing]:
        conn = self._connection_sync()
        with conn:
            cursor = conn.execute(
                """
                UPDATE pairings
                SET status = ?,
                    channel_id = ?,
                    guild_id = ?,
                    owner_id = ?,
                    connected_at = ?
                WHERE code = ?
                  AND status = ?
                  AND (expires_at IS NULL OR expires_at > ?)
                """,
                (
                    PairingStatus.CONNECTED.value,
                    destination.channel_id,
                    destination.guild_id,
                    owner_id,
                    now,
                    code,
                    PairingStatus.PENDING.value,
                    now,
                ),
            )
        if cursor.rowcount != 1:
            return None
        return self._find_pairing_sync({"code": code})

    def _set_pairing_status_sync(self, pairing_id: str, status: PairingStatus) -> bool:
        conn = self._connection_sync()
        with conn:
            cursor = conn.execute(
                "UPDATE pairings SET status = ? WHERE pairing_id = ?",
                (status.value, pairing_id),
            )
        return cursor.rowcount == 1

    def _delete_expired_pairings_sync(self, now: str) -> int:
        conn = self._connection_sync()
        with conn:
            cursor = conn.execute(
                """
                DELETE FROM pairings
                WHERE status = ? AND expires_at IS NOT NULL AND expires_at < ?
                """,
                (PairingStatus.PENDING.value, now),
            )
        return int(cursor.rowcount or 0)
