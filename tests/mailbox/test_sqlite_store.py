from __future__ import annotations

from pathlib import Path

import pytest

from rollcloud_relay.core.time_utils import iso_after, now_iso
from rollcloud_relay.mailbox.models import (
    Destination,
    NewMailboxRow,
    Pairing,
    PairingStatus,
    QueueKind,
    RowStatus,
)
from rollcloud_relay.mailbox.sqlite_store import SqliteRelayStore


def _pairing(
    pairing_id: str = "pair-1",
    *,
    code: str = "ABC234",
    status: PairingStatus = PairingStatus.CONNECTED,
    channel_id: str = "chan-1",
    expires_at: str | None = None,
) -> Pairing:
    return Pairing(
        pairing_id=pairing_id,
        code=code,
        client_identity=f"client-{pairing_id}",
        status=status,
        created_at=now_iso(),
        destination=Destination(channel_id=channel_id, guild_id="guild-1"),
        owner_id="user-1",
        expires_at=expires_at,
    )


@pytest.mark.anyio
async def test_insert_and_fetch_pending_joins_pairing(
    sqlite_store: SqliteRelayStore,
) -> None:
    await sqlite_store.insert_pairing(_pairing())
    first = await sqlite_store.insert(
        QueueKind.TURNS,
        NewMailboxRow("pair-1", "turn_start", {"character_name": "Thorin"}),
    )
    second = await sqlite_store.insert(
        QueueKind.TURNS, NewMailboxRow("missing", "turn_end", {})
    )

    rows = await sqlite_store.fetch_pending(QueueKind.TURNS, 10)

    assert [row.row_id for row in rows] == [first.row_id, second.row_id]
    assert rows[0].status is RowStatus.PENDING
    assert rows[0].payload == {"character_name": "Thorin"}
    assert rows[0].pairing is not None
    assert rows[0].pairing.destination == Destination("chan-1", "guild-1")
    assert rows[1].pairing is None
    assert await sqlite_store.fetch_pending(QueueKind.COMMANDS, 10) == []


@pytest.mark.anyio
async def test_fetch_pending_respects_limit(sqlite_store: SqliteRelayStore) -> None:
    for index in range(4):
        await sqlite_store.insert(
            QueueKind.TURNS, NewMailboxRow("pair-1", "turn_end", {"i": index})
        )
    rows = await sqlite_store.fetch_pending(QueueKind.TURNS, 3)
    assert [row.payload["i"] for row in rows] == [0, 1, 2]


@pytest.mark.anyio
async def test_claim_is_exclusive(sqlite_store: SqliteRelayStore) -> None:
    row = await sqlite_store.insert(
        QueueKind.TURNS, NewMailboxRow("pair-1", "turn_end", {})
    )

    assert await sqlite_store.claim(QueueKind.TURNS, row.row_id) is True
    assert await sqlite_store.claim(QueueKind.TURNS, row.row_id) is False

    claimed = await sqlite_store.get_row(QueueKind.TURNS, row.row_id)
    assert claimed is not None
    assert claimed.status is RowStatus.IN_PROGRESS
    assert claimed.claimed_at is not None
    assert await sqlite_store.fetch_pending(QueueKind.TURNS, 10) == []


@pytest.mark.anyio
async def test_terminal_status_is_set_exactly_once(
    sqlite_store: SqliteRelayStore,
) -> None:
    row = await sqlite_store.insert(
        QueueKind.TURNS, NewMailboxRow("pair-1", "turn_end", {})
    )
    await sqlite_store.claim(QueueKind.TURNS, row.row_id)

    assert await sqlite_store.mark_terminal(
        QueueKind.TURNS, row.row_id, RowStatus.POSTED, terminal_ref="msg-1"
    )
    assert not await sqlite_store.mark_terminal(
        QueueKind.TURNS, row.row_id, RowStatus.FAILED, failure_reason="late"
    )

    stored = await sqlite_store.get_row(QueueKind.TURNS, row.row_id)
    assert stored is not None
    assert stored.status is RowStatus.POSTED
    assert stored.terminal_ref == "msg-1"
    assert stored.terminal_at is not None
    assert stored.failure_reason is None


@pytest.mark.anyio
async def test_failure_reason_only_recorded_for_failed(
    sqlite_store: SqliteRelayStore,
) -> None:
    row = await sqlite_store.insert(
        QueueKind.TURNS, NewMailboxRow("pair-1", "turn_end", {})
    )
    assert await sqlite_store.mark_terminal(
        QueueKind.TURNS, row.row_id, RowStatus.FAILED, failure_reason="x" * 900
    )
    failed = await sqlite_store.list_failed(QueueKind.TURNS, 5)
    assert [item.row_id for item in failed] == [row.row_id]
    assert failed[0].failure_reason == "x" * 500

    other = await sqlite_store.insert(
        QueueKind.COMMANDS, NewMailboxRow("pair-1", "roll_here", {})
    )
    await sqlite_store.mark_terminal(
        QueueKind.COMMANDS,
        other.row_id,
        RowStatus.DELIVERED,
        failure_reason="ignored",
    )
    delivered = await sqlite_store.get_row(QueueKind.COMMANDS, other.row_id)
    assert delivered is not None
    assert delivered.failure_reason is None


@pytest.mark.anyio
async def test_mark_terminal_rejects_non_terminal_status(
    sqlite_store: SqliteRelayStore,
) -> None:
    with pytest.raises(ValueError):
        await sqlite_store.mark_terminal(QueueKind.TURNS, "1", RowStatus.PENDING)


@pytest.mark.anyio
async def test_release_stale_claims_requeues_in_progress_rows(
    sqlite_store: SqliteRelayStore,
) -> None:
    row = await sqlite_store.insert(
        QueueKind.TURNS, NewMailboxRow("pair-1", "turn_end", {})
    )
    done = await sqlite_store.insert(
        QueueKind.TURNS, NewMailboxRow("pair-1", "turn_end", {})
    )
    await sqlite_store.claim(QueueKind.TURNS, row.row_id)
    await sqlite_store.claim(QueueKind.TURNS, done.row_id)
    await sqlite_store.mark_terminal(QueueKind.TURNS, done.row_id, RowStatus.POSTED)

    assert await sqlite_store.release_stale_claims(QueueKind.TURNS, 3600) == 0
    assert await sqlite_store.release_stale_claims(QueueKind.TURNS, -1) == 1

    pending = await sqlite_store.fetch_pending(QueueKind.TURNS, 10)
    assert [item.row_id for item in pending] == [row.row_id]
    posted = await sqlite_store.get_row(QueueKind.TURNS, done.row_id)
    assert posted is not None and posted.status is RowStatus.POSTED


@pytest.mark.anyio
async def test_pairing_lookup_connect_and_expiry(
    sqlite_store: SqliteRelayStore,
) -> None:
    await sqlite_store.insert_pairing(
        _pairing(
            "pending-1",
            code="PEND22",
            status=PairingStatus.PENDING,
            expires_at=iso_after(600),
        )
    )
    await sqlite_store.insert_pairing(
        _pairing(
            "stale-1",
            code="OLD333",
            status=PairingStatus.PENDING,
            expires_at=iso_after(-600),
        )
    )

    assert (
        await sqlite_store.find_pairing(code="PEND22", status=PairingStatus.CONNECTED)
        is None
    )
    assert (
        await sqlite_store.connect_pairing(
            "OLD333",
            destination=Destination("chan-9"),
            owner_id="user-9",
            now=now_iso(),
        )
        is None
    )

    connected = await sqlite_store.connect_pairing(
        "PEND22",
        destination=Destination("chan-2", "guild-2"),
        owner_id="user-2",
        now=now_iso(),
    )
    assert connected is not None
    assert connected.status is PairingStatus.CONNECTED
    assert connected.destination == Destination("chan-2", "guild-2")
    assert connected.owner_id == "user-2"
    assert connected.connected_at is not None

    assert await sqlite_store.delete_expired_pairings(now_iso()) == 1
    assert await sqlite_store.find_pairing(pairing_id="stale-1") is None
    assert await sqlite_store.find_pairing(pairing_id="pending-1") is not None


@pytest.mark.anyio
async def test_set_pairing_status(sqlite_store: SqliteRelayStore) -> None:
    await sqlite_store.insert_pairing(_pairing())
    assert await sqlite_store.set_pairing_status("pair-1", PairingStatus.DISCONNECTED)
    assert not await sqlite_store.set_pairing_status("nope", PairingStatus.DISCONNECTED)
    found = await sqlite_store.find_pairing(pairing_id="pair-1")
    assert found is not None and found.status is PairingStatus.DISCONNECTED


@pytest.mark.anyio
async def test_rows_survive_reopen(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "relay.sqlite3"
    store = SqliteRelayStore(path)
    await store.initialize()
    row = await store.insert(QueueKind.TURNS, NewMailboxRow("p", "turn_end", {}))
    await store.close()

    reopened = SqliteRelayStore(path)
    try:
        await reopened.initialize()
        again = await reopened.get_row(QueueKind.TURNS, row.row_id)
        assert again is not None and again.status is RowStatus.PENDING
    finally:
        await reopened.close()
