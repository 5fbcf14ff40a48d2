from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional

from ..core.config import RelayConfig, StoreConfig
from ..core.exceptions import RelayConfigError, StoreError
from ..core.logging_utils import log_event
from ..integrations.discord.destination import DiscordDestinationClient
from ..integrations.discord.interactions import InteractionRouter
from ..integrations.discord.rest import DiscordRestClient
from ..mailbox.pairing import PairingRegistry
from ..mailbox.postgrest_store import PostgrestRelayStore
from ..mailbox.sqlite_store import SqliteRelayStore
from ..mailbox.store import RelayStore
from .commands import CommandRelay
from .scheduler import DestinationClient, RelayScheduler

PAIRING_EXPIRY_INTERVAL_SECONDS = 60.0


def build_store(config: StoreConfig) -> RelayStore:
    if config.backend == "postgrest":
        if not config.url or not config.service_key:
            raise RelayConfigError(
                f"postgrest store needs {config.url_env} and {config.key_env} set"
            )
        return PostgrestRelayStore(
            base_url=config.url,
            service_key=config.service_key,
            table_prefix=config.table_prefix,
            timeout_seconds=config.timeout_seconds,
        )
    return SqliteRelayStore(config.sqlite_path)


class RelayService:
    """Owns one store, the turn scheduler and the Discord-facing pieces."""

    def __init__(
        self,
        config: RelayConfig,
        *,
        logger: logging.Logger,
        store: Optional[RelayStore] = None,
        rest_client: Optional[DiscordRestClient] = None,
        destination_client: Optional[DestinationClient] = None,
    ) -> None:
        self._config = config
        self._logger = logger
        self._store = store if store is not None else build_store(config.store)
        self._rest = rest_client
        if destination_client is None:
            if self._rest is None:
                self._rest = DiscordRestClient(
                    bot_token=config.require_discord_token()
                )
            destination_client = DiscordDestinationClient(self._rest)
        self._destination: DestinationClient = destination_client
        self.registry = PairingRegistry(
            self._store,
            logger=logger,
            ttl_seconds=config.relay.pairing_ttl_seconds,
        )
        self.commands = CommandRelay(self._store, self.registry, logger=logger)
        self.scheduler = RelayScheduler(
            self._store,
            logger=logger,
            registry=self.registry,
            poll_interval_seconds=config.relay.poll_interval_seconds,
            batch_size=config.relay.batch_size,
            claim_timeout_seconds=config.relay.claim_timeout_seconds,
        )
        self.router = InteractionRouter(
            self.registry, self.commands, logger=logger, rest=self._rest
        )
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def store(self) -> RelayStore:
        return self._store

    async def run_forever(self) -> None:
        await self._store.initialize()
        self._stop_event = asyncio.Event()
        self.scheduler.start(self._destination)
        expiry_task = asyncio.create_task(self._expire_pairings_loop())
        log_event(
            self._logger,
            logging.INFO,
            "relay.service.started",
            backend=self._config.store.backend,
        )
        try:
            await self._stop_event.wait()
        finally:
            expiry_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await expiry_task
            self.scheduler.stop()
            await self.scheduler.wait_stopped()
            await self._shutdown()

    def request_stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    async def _expire_pairings_loop(self) -> None:
        while True:
            try:
                await self.registry.expire_pending()
            except StoreError as exc:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "relay.pairing.expire_failed",
                    exc=exc,
                )
            await asyncio.sleep(PAIRING_EXPIRY_INTERVAL_SECONDS)

    async def _shutdown(self) -> None:
        if self._rest is not None:
            await self._rest.close()
        await self._store.close()
        log_event(self._logger, logging.INFO, "relay.service.stopped")


def create_relay_service(
    config: RelayConfig,
    *,
    logger: logging.Logger,
) -> RelayService:
    return RelayService(config, logger=logger)
