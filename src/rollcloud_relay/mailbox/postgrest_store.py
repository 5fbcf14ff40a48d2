from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping, Optional

import httpx

from ..core.exceptions import StoreError, StorePermanentError, StoreTransientError
from ..core.retry import retry_transient
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


_RETURN_ROWS = {"Prefer": "return=representation"}


@dataclass(frozen=True)
class _TableLayout:
    suffix: str
    event_column: str
    terminal_at_column: str
    terminal_ref_column: Optional[str]
    payload_column: Optional[str] = None
    promoted: tuple[tuple[str, str], ...] = ()

    def meta_columns(self, pairings_table: str) -> frozenset[str]:
        columns = {
            "id",
            "pairing_id",
            "status",
            "created_at",
            "claimed_at",
            "error_message",
            "expires_at",
            self.event_column,
            self.terminal_at_column,
            pairings_table,
        }
        if self.terminal_ref_column:
            columns.add(self.terminal_ref_column)
        if self.payload_column:
            columns.add(self.payload_column)
        columns.update(column for _key, column in self.promoted)
        return frozenset(columns)


# Turn rows keep their payload as top-level columns; command rows nest it in
# a JSON column and copy a few fields out into columns the table declares.
_LAYOUTS = {
    QueueKind.TURNS: _TableLayout(
        suffix="turns",
        event_column="event_type",
        terminal_at_column="posted_at",
        terminal_ref_column="discord_message_id",
    ),
    QueueKind.COMMANDS: _TableLayout(
        suffix="commands",
        event_column="command_type",
        terminal_at_column="processed_at",
        terminal_ref_column=None,
        payload_column="command_data",
        promoted=(
            ("display_name", "action_name"),
            ("caller_identity", "discord_user_id"),
            ("message_id", "discord_message_id"),
        ),
    ),
}


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text or None


class PostgrestRelayStore:
    """Relay tables hosted behind a Supabase/PostgREST endpoint."""

    def __init__(
        self,
        *,
        base_url: str,
        service_key: str,
        table_prefix: str = "rollcloud",
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/rest/v1",
            timeout=timeout_seconds,
            transport=transport,
            headers={
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
            },
        )
        self._prefix = table_prefix
        self._pairings_table = f"{table_prefix}_pairings"

    async def initialize(self) -> None:
        return None

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "PostgrestRelayStore":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    def _table(self, queue: QueueKind) -> tuple[str, _TableLayout]:
        layout = _LAYOUTS[QueueKind(queue)]
        return f"/{self._prefix}_{layout.suffix}", layout

    @retry_transient()
    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, str]] = None,
        payload: Optional[dict[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method, path, params=params, json=payload, headers=headers
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            body_preview = (exc.response.text or "").strip().replace("\n", " ")[:200]
            message = (
                f"store request failed for {method} {path}: "
                f"status={status_code} body={body_preview!r}"
            )
            if status_code == 429 or 500 <= status_code < 600:
                raise StoreTransientError(message) from exc
            raise StorePermanentError(message) from exc
        except httpx.TransportError as exc:
            raise StoreTransientError(
                f"store network error for {method} {path}: {exc}"
            ) from exc
        except httpx.HTTPError as exc:
            raise StoreError(f"store request error for {method} {path}: {exc}") from exc

        if not response.content:
            return []
        try:
            return response.json()
        except ValueError as exc:
            raise StorePermanentError(
                f"store returned non-JSON response for {method} {path}"
            ) from exc

    async def _rows(self, *args: Any, **kwargs: Any) -> list[dict[str, Any]]:
        data = await self._request(*args, **kwargs)
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]

    # Mailbox rows

    async def insert(self, queue: QueueKind, row: NewMailboxRow) -> MailboxRow:
        path, layout = self._table(queue)
        body: dict[str, Any] = {
            "pairing_id": row.pairing_id,
            layout.event_column: row.event_type,
            "status": RowStatus.PENDING.value,
            "created_at": now_iso(),
        }
        if layout.payload_column:
            body[layout.payload_column] = dict(row.payload)
        else:
            reserved = layout.meta_columns(self._pairings_table)
            body.update(
                {key: value for key, value in row.payload.items() if key not in reserved}
            )
        for key, column in layout.promoted:
            if row.payload.get(key) is not None:
                body[column] = row.payload[key]
        created = await self._rows("POST", path, payload=body, headers=_RETURN_ROWS)
        if not created:
            raise StorePermanentError(f"store did not return the inserted {path} row")
        return self._mailbox_from_record(QueueKind(queue), created[0])

    async def fetch_pending(self, queue: QueueKind, limit: int) -> list[MailboxRow]:
        path, _layout = self._table(queue)
        records = await self._rows(
            "GET",
            path,
            params={
                "status": f"eq.{RowStatus.PENDING.value}",
                "order": "created_at.asc,id.asc",
                "limit": str(max(int(limit), 0)),
                "select": f"*,{self._pairings_table}(*)",
            },
        )
        return [self._mailbox_from_record(QueueKind(queue), rec) for rec in records]

    async def claim(self, queue: QueueKind, row_id: str) -> bool:
        path, _layout = self._table(queue)
        updated = await self._rows(
            "PATCH",
            path,
            params={"id": f"eq.{row_id}", "status": f"eq.{RowStatus.PENDING.value}"},
            payload={"status": RowStatus.IN_PROGRESS.value, "claimed_at": now_iso()},
            headers=_RETURN_ROWS,
        )
        return len(updated) == 1

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
        path, layout = self._table(queue)
        body: dict[str, Any] = {
            "status": status.value,
            layout.terminal_at_column: now_iso(),
        }
        if layout.terminal_ref_column and terminal_ref is not None:
            body[layout.terminal_ref_column] = terminal_ref
        if status is RowStatus.FAILED:
            body["error_message"] = str(failure_reason or "unknown error")[:500]
        updated = await self._rows(
            "PATCH",
            path,
            params={
                "id": f"eq.{row_id}",
                "status": (
                    f"in.({RowStatus.PENDING.value},{RowStatus.IN_PROGRESS.value})"
                ),
            },
            payload=body,
            headers=_RETURN_ROWS,
        )
        return len(updated) == 1

    async def release_stale_claims(
        self, queue: QueueKind, older_than_seconds: float
    ) -> int:
        path, _layout = self._table(queue)
        cutoff = format_iso(now_utc() - timedelta(seconds=older_than_seconds))
        released = await self._rows(
            "PATCH",
            path,
            params={
                "status": f"eq.{RowStatus.IN_PROGRESS.value}",
                "claimed_at": f"lt.{cutoff}",
            },
            payload={"status": RowStatus.PENDING.value, "claimed_at": None},
            headers=_RETURN_ROWS,
        )
        return len(released)

    async def get_row(self, queue: QueueKind, row_id: str) -> Optional[MailboxRow]:
        path, _layout = self._table(queue)
        records = await self._rows(
            "GET", path, params={"id": f"eq.{row_id}", "select": "*", "limit": "1"}
        )
        if not records:
            return None
        return self._mailbox_from_record(QueueKind(queue), records[0])

    async def list_failed(self, queue: QueueKind, limit: int) -> list[MailboxRow]:
        path, layout = self._table(queue)
        records = await self._rows(
            "GET",
            path,
            params={
                "status": f"eq.{RowStatus.FAILED.value}",
                "order": f"{layout.terminal_at_column}.desc.nullslast",
                "limit": str(max(int(limit), 0)),
                "select": "*",
            },
        )
        return [self._mailbox_from_record(QueueKind(queue), rec) for rec in records]

    # Pairings

    async def insert_pairing(self, pairing: Pairing) -> Pairing:
        created = await self._rows(
            "POST",
            f"/{self._pairings_table}",
            payload=self._pairing_to_record(pairing),
            headers=_RETURN_ROWS,
        )
        if not created:
            return pairing
        return self._pairing_from_record(created[0]) or pairing

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
        params: dict[str, str] = {
            "select": "*",
            "order": "connected_at.desc.nullslast,created_at.desc",
            "limit": "1",
        }
        filters = {
            "id": pairing_id,
            "pairing_code": code,
            "dicecloud_user_id": client_identity,
            "discord_user_id": owner_id,
            "discord_channel_id": channel_id,
            "status": PairingStatus(status).value if status is not None else None,
        }
        for column, value in filters.items():
            if value is not None:
                params[column] = f"eq.{value}"
        records = await self._rows("GET", f"/{self._pairings_table}", params=params)
        if not records:
            return None
        return self._pairing_from_record(records[0])

    async def connect_pairing(
        self,
        code: str,
        *,
        destination: Destination,
        owner_id: Optional[str],
        now: str,
    ) -> Optional[Pairing]:
        updated = await self._rows(
            "PATCH",
            f"/{self._pairings_table}",
            params={
                "pairing_code": f"eq.{code}",
                "status": f"eq.{PairingStatus.PENDING.value}",
                "or": f"(expires_at.is.null,expires_at.gt.{now})",
            },
            payload={
                "status": PairingStatus.CONNECTED.value,
                "discord_channel_id": destination.channel_id,
                "discord_guild_id": destination.guild_id,
                "discord_user_id": owner_id,
                "connected_at": now,
            },
            headers=_RETURN_ROWS,
        )
        if len(updated) != 1:
            return None
        return self._pairing_from_record(updated[0])

    async def set_pairing_status(
        self, pairing_id: str, status: PairingStatus
    ) -> bool:
        updated = await self._rows(
            "PATCH",
            f"/{self._pairings_table}",
            params={"id": f"eq.{pairing_id}"},
            payload={"status": PairingStatus(status).value},
            headers=_RETURN_ROWS,
        )
        return len(updated) == 1

    async def delete_expired_pairings(self, now: str) -> int:
        deleted = await self._rows(
            "DELETE",
            f"/{self._pairings_table}",
            params={
                "status": f"eq.{PairingStatus.PENDING.value}",
                "expires_at": f"lt.{now}",
            },
            headers=_RETURN_ROWS,
        )
        return len(deleted)

    def _pairing_to_record(self, pairing: Pairing) -> dict[str, Any]:
        destination = pairing.destination
        return {
            "id": pairing.pairing_id,
            "pairing_code": pairing.code,
            "dicecloud_user_id": pairing.client_identity,
            "dicecloud_username": pairing.client_name,
            "discord_channel_id": destination.channel_id if destination else None,
            "discord_guild_id": destination.guild_id if destination else None,
            "discord_user_id": pairing.owner_id,
            "status": pairing.status.value,
            "created_at": pairing.created_at,
            "connected_at": pairing.connected_at,
            "expires_at": pairing.expires_at,
        }

    def _pairing_from_record(self, record: Any) -> Optional[Pairing]:
        if not isinstance(record, dict) or record.get("id") is None:
            return None
        channel_id = _opt_str(record.get("discord_channel_id"))
        return Pairing(
            pairing_id=str(record["id"]),
            code=str(record.get("pairing_code") or ""),
            client_identity=_opt_str(record.get("dicecloud_user_id")),
            client_name=_opt_str(record.get("dicecloud_username")),
            status=coerce_pairing_status(record.get("status")),
            created_at=str(record.get("created_at") or ""),
            destination=(
                Destination(
                    channel_id=channel_id,
                    guild_id=_opt_str(record.get("discord_guild_id")),
                )
                if channel_id
                else None
            ),
            owner_id=_opt_str(record.get("discord_user_id")),
            connected_at=_opt_str(record.get("connected_at")),
            expires_at=_opt_str(record.get("expires_at")),
        )

    def _mailbox_from_record(
        self, queue: QueueKind, record: dict[str, Any]
    ) -> MailboxRow:
        layout = _LAYOUTS[queue]
        if layout.payload_column:
            raw_payload = record.get(layout.payload_column)
            payload = dict(raw_payload) if isinstance(raw_payload, dict) else {}
        else:
            reserved = layout.meta_columns(self._pairings_table)
            payload = {
                key: value for key, value in record.items() if key not in reserved
            }
        return MailboxRow(
            row_id=str(record.get("id")),
            queue=queue,
            pairing_id=_opt_str(record.get("pairing_id")),
            event_type=str(record.get(layout.event_column) or ""),
            payload=payload,
            status=coerce_row_status(record.get("status")),
            created_at=str(record.get("created_at") or ""),
            claimed_at=_opt_str(record.get("claimed_at")),
            terminal_at=_opt_str(record.get(layout.terminal_at_column)),
            terminal_ref=(
                _opt_str(record.get(layout.terminal_ref_column))
                if layout.terminal_ref_column
                else None
            ),
            failure_reason=_opt_str(record.get("error_message")),
            pairing=self._pairing_from_record(record.get(self._pairings_table)),
        )
