"""Turn relay: drains pending turn rows into chat messages.

Each cycle releases stale claims, fetches the oldest pending rows and
processes them one at a time: claim, resolve the destination, render,
deliver, mark terminal. Failures are recorded on the row and never
retried by the relay.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from ..core.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CLAIM_TIMEOUT_SECONDS,
    DEFAULT_POLL_INTERVAL_SECONDS,
)
from ..core.exceptions import StoreError
from ..core.logging_utils import log_event
from ..mailbox.models import Destination, MailboxRow, QueueKind, RowStatus
from ..mailbox.pairing import PairingRegistry
from ..mailbox.store import MailboxStore
from .builder import RenderedMessage, render_row

NO_DESTINATION_REASON = "no destination"


class DestinationClient(Protocol):
    async def resolve_destination(self, destination: Destination) -> Optional[Any]:
        """Platform channel handle, or None when the channel is gone."""
        ...

    async def deliver(self, channel: Any, message: RenderedMessage) -> str:
        """Send and return the platform message id; failures raise."""
        ...


@dataclass
class PollReport:
    fetched: int = 0
    posted: int = 0
    failed: int = 0
    skipped: int = 0
    released: int = 0
    aborted: bool = False


class RelayScheduler:
    def __init__(
        self,
        store: MailboxStore,
        *,
        logger: logging.Logger,
        registry: Optional[PairingRegistry] = None,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        claim_timeout_seconds: float = DEFAULT_CLAIM_TIMEOUT_SECONDS,
    ) -> None:
        self._store = store
        self._logger = logger
        self._registry = registry
        self._poll_interval_seconds = max(poll_interval_seconds, 0.05)
        self._batch_size = max(batch_size, 1)
        self._claim_timeout_seconds = claim_timeout_seconds
        self._client: Optional[DestinationClient] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, client: DestinationClient) -> None:
        if self.running:
            log_event(self._logger, logging.INFO, "relay.scheduler.already_running")
            return
        self._client = client
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop())
        log_event(
            self._logger,
            logging.INFO,
            "relay.scheduler.started",
            poll_interval_seconds=self._poll_interval_seconds,
            batch_size=self._batch_size,
        )

    def stop(self) -> None:
        if not self.running or self._stop_event is None:
            return
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        log_event(self._logger, logging.INFO, "relay.scheduler.stopping")

    async def wait_stopped(self) -> None:
        task = self._task
        if task is None:
            return
        await task
        log_event(self._logger, logging.INFO, "relay.scheduler.stopped")

    async def _run_loop(self) -> None:
        stop_event = self._stop_event
        assert stop_event is not None
        while not stop_event.is_set():
            try:
                await self.poll_once()
            except Exception as exc:
                log_event(
                    self._logger, logging.WARNING, "relay.poll.crashed", exc=exc
                )
            try:
                await asyncio.wait_for(
                    stop_event.wait(), timeout=self._poll_interval_seconds
                )
            except asyncio.TimeoutError:
                continue

    async def poll_once(self, client: Optional[DestinationClient] = None) -> PollReport:
        client = client or self._client
        if client is None:
            raise RuntimeError("poll_once needs a destination client")
        report = PollReport()
        try:
            report.released = await self._store.release_stale_claims(
                QueueKind.TURNS, self._claim_timeout_seconds
            )
            if report.released:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "relay.turns.claims_released",
                    count=report.released,
                )
            rows = await self._store.fetch_pending(QueueKind.TURNS, self._batch_size)
            report.fetched = len(rows)
            for row in rows:
                await self._process_row(client, row, report)
        except StoreError as exc:
            report.aborted = True
            log_event(self._logger, logging.WARNING, "relay.poll.failed", exc=exc)
        return report

    async def _process_row(
        self, client: DestinationClient, row: MailboxRow, report: PollReport
    ) -> None:
        if not await self._store.claim(QueueKind.TURNS, row.row_id):
            report.skipped += 1
            log_event(
                self._logger,
                logging.DEBUG,
                "relay.turns.claim_lost",
                row_id=row.row_id,
            )
            return

        destination = await self._destination_for(row)
        channel = None
        try:
            if destination is not None:
                channel = await client.resolve_destination(destination)
            if channel is None:
                await self._fail(row, NO_DESTINATION_REASON, report)
                return
            message = render_row(row.event_type, row.payload)
            message_id = await client.deliver(channel, message)
        except StoreError:
            raise
        except Exception as exc:
            await self._fail(row, str(exc) or type(exc).__name__, report, exc=exc)
            return

        await self._store.mark_terminal(
            QueueKind.TURNS,
            row.row_id,
            RowStatus.POSTED,
            terminal_ref=str(message_id) if message_id is not None else None,
        )
        report.posted += 1
        log_event(
            self._logger,
            logging.INFO,
            "relay.turns.posted",
            row_id=row.row_id,
            pairing_id=row.pairing_id,
            event_type=row.event_type,
            message_id=message_id,
        )

    async def _destination_for(self, row: MailboxRow) -> Optional[Destination]:
        pairing = row.pairing
        if pairing is None and self._registry is not None and row.pairing_id:
            pairing = await self._registry.resolve_by_id(row.pairing_id)
        if pairing is None or not pairing.is_connected:
            return None
        return pairing.destination

    async def _fail(
        self,
        row: MailboxRow,
        reason: str,
        report: PollReport,
        *,
        exc: Optional[BaseException] = None,
    ) -> None:
        await self._store.mark_terminal(
            QueueKind.TURNS, row.row_id, RowStatus.FAILED, failure_reason=reason
        )
        report.failed += 1
        log_event(
            self._logger,
            logging.WARNING,
            "relay.turns.failed",
            row_id=row.row_id,
            pairing_id=row.pairing_id,
            reason=reason,
            exc=exc,
        )
