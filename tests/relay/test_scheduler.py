from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import pytest

from rollcloud_relay.core.exceptions import DeliveryError, StoreTransientError
from rollcloud_relay.mailbox.models import (
    Destination,
    NewMailboxRow,
    Pairing,
    QueueKind,
    RowStatus,
)
from rollcloud_relay.mailbox.pairing import PairingRegistry
from rollcloud_relay.mailbox.sqlite_store import SqliteRelayStore
from rollcloud_relay.relay.builder import RenderedMessage
from rollcloud_relay.relay.scheduler import NO_DESTINATION_REASON, RelayScheduler

LOGGER = logging.getLogger("test.relay.scheduler")


class FakeDestinationClient:
    def __init__(
        self,
        *,
        missing: Optional[set[str]] = None,
        fail_on: Optional[set[str]] = None,
    ) -> None:
        self.missing = missing or set()
        self.fail_on = fail_on or set()
        self.delivered: list[tuple[str, RenderedMessage]] = []

    async def resolve_destination(self, destination: Destination) -> Optional[Any]:
        if destination.channel_id in self.missing:
            return None
        return {"id": destination.channel_id}

    async def deliver(self, channel: Any, message: RenderedMessage) -> str:
        if message.title in self.fail_on:
            raise DeliveryError("Missing Access")
        self.delivered.append((channel["id"], message))
        return f"msg-{len(self.delivered)}"


class LosingClaimStore:
    """Delegates to a real store but loses every claim race."""

    def __init__(self, inner: SqliteRelayStore) -> None:
        self._inner = inner

    def __getattr__(self, name: str) -> Any:
        return getattr(self._inner, name)

    async def claim(self, queue: QueueKind, row_id: str) -> bool:
        return False


class BrokenStore:
    async def release_stale_claims(self, queue: QueueKind, older_than: float) -> int:
        raise StoreTransientError("store unreachable")


async def _turn(
    store: SqliteRelayStore, pairing_id: str, event_type: str, **payload: Any
) -> str:
    row = await store.insert(
        QueueKind.TURNS, NewMailboxRow(pairing_id, event_type, payload)
    )
    return row.row_id


@pytest.mark.anyio
async def test_poll_delivers_rows_in_order_and_marks_posted(
    sqlite_store: SqliteRelayStore, connected_pairing: Pairing
) -> None:
    first = await _turn(
        sqlite_store, connected_pairing.pairing_id, "combat_start", actor_name="Thorin"
    )
    second = await _turn(
        sqlite_store,
        connected_pairing.pairing_id,
        "turn_start",
        character_name="Thorin",
        round_number=1,
    )
    client = FakeDestinationClient()
    scheduler = RelayScheduler(sqlite_store, logger=LOGGER)

    report = await scheduler.poll_once(client)

    assert (report.fetched, report.posted, report.failed) == (2, 2, 0)
    assert [msg.title for _, msg in client.delivered] == [
        "⚔️ Combat Started!",
        "🎲 Thorin's Turn!",
    ]
    assert {channel for channel, _ in client.delivered} == {"chan-1"}
    for row_id, ref in ((first, "msg-1"), (second, "msg-2")):
        row = await sqlite_store.get_row(QueueKind.TURNS, row_id)
        assert row is not None
        assert row.status is RowStatus.POSTED
        assert row.terminal_ref == ref
        assert row.terminal_at is not None

    again = await scheduler.poll_once(client)
    assert again.fetched == 0
    assert len(client.delivered) == 2


@pytest.mark.anyio
async def test_rows_without_a_connected_pairing_fail(
    sqlite_store: SqliteRelayStore,
) -> None:
    registry = PairingRegistry(sqlite_store)
    pending = await registry.create_pairing("dicecloud-2")
    orphan = await _turn(sqlite_store, "no-such-pairing", "turn_end")
    unredeemed = await _turn(sqlite_store, pending.pairing_id, "turn_end")
    client = FakeDestinationClient()

    report = await RelayScheduler(
        sqlite_store, logger=LOGGER, registry=registry
    ).poll_once(client)

    assert report.failed == 2
    assert client.delivered == []
    for row_id in (orphan, unredeemed):
        row = await sqlite_store.get_row(QueueKind.TURNS, row_id)
        assert row is not None
        assert row.status is RowStatus.FAILED
        assert row.failure_reason == NO_DESTINATION_REASON


@pytest.mark.anyio
async def test_missing_channel_and_delivery_errors_fail_only_that_row(
    sqlite_store: SqliteRelayStore, connected_pairing: Pairing
) -> None:
    broken = await _turn(
        sqlite_store, connected_pairing.pairing_id, "turn_end", actor_name="Gimli"
    )
    fine = await _turn(
        sqlite_store, connected_pairing.pairing_id, "turn_end", actor_name="Legolas"
    )
    client = FakeDestinationClient(fail_on={"⏸️ Gimli's Turn Ended"})

    report = await RelayScheduler(sqlite_store, logger=LOGGER).poll_once(client)

    assert (report.posted, report.failed) == (1, 1)
    failed_row = await sqlite_store.get_row(QueueKind.TURNS, broken)
    assert failed_row is not None
    assert failed_row.status is RowStatus.FAILED
    assert failed_row.failure_reason == "Missing Access"
    posted_row = await sqlite_store.get_row(QueueKind.TURNS, fine)
    assert posted_row is not None and posted_row.status is RowStatus.POSTED

    gone = await _turn(sqlite_store, connected_pairing.pairing_id, "turn_end")
    await RelayScheduler(sqlite_store, logger=LOGGER).poll_once(
        FakeDestinationClient(missing={"chan-1"})
    )
    gone_row = await sqlite_store.get_row(QueueKind.TURNS, gone)
    assert gone_row is not None
    assert gone_row.failure_reason == NO_DESTINATION_REASON


@pytest.mark.anyio
async def test_lost_claims_are_skipped(
    sqlite_store: SqliteRelayStore, connected_pairing: Pairing
) -> None:
    row_id = await _turn(sqlite_store, connected_pairing.pairing_id, "turn_end")
    client = FakeDestinationClient()

    report = await RelayScheduler(
        LosingClaimStore(sqlite_store), logger=LOGGER  # type: ignore[arg-type]
    ).poll_once(client)

    assert (report.fetched, report.skipped, report.posted) == (1, 1, 0)
    assert client.delivered == []
    row = await sqlite_store.get_row(QueueKind.TURNS, row_id)
    assert row is not None and row.status is RowStatus.PENDING


@pytest.mark.anyio
async def test_store_failures_abort_the_cycle(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger=LOGGER.name)
    scheduler = RelayScheduler(BrokenStore(), logger=LOGGER)  # type: ignore[arg-type]

    report = await scheduler.poll_once(FakeDestinationClient())

    assert report.aborted
    assert report.fetched == 0
    assert "relay.poll.failed" in caplog.text


@pytest.mark.anyio
async def test_poll_without_client_is_an_error(
    sqlite_store: SqliteRelayStore,
) -> None:
    with pytest.raises(RuntimeError):
        await RelayScheduler(sqlite_store, logger=LOGGER).poll_once()


@pytest.mark.anyio
async def test_start_and_stop_are_idempotent(
    sqlite_store: SqliteRelayStore,
    connected_pairing: Pairing,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO, logger=LOGGER.name)
    await _turn(sqlite_store, connected_pairing.pairing_id, "round_change", round_number=1)
    client = FakeDestinationClient()
    scheduler = RelayScheduler(sqlite_store, logger=LOGGER, poll_interval_seconds=0.05)

    scheduler.start(client)
    scheduler.start(client)
    assert scheduler.running
    assert "relay.scheduler.already_running" in caplog.text

    for _ in range(100):
        if client.delivered:
            break
        await asyncio.sleep(0.02)
    assert [msg.title for _, msg in client.delivered] == ["🔄 Round 1"]

    scheduler.stop()
    scheduler.stop()
    await scheduler.wait_stopped()
    assert not scheduler.running
