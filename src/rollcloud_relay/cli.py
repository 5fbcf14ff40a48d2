from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, NoReturn, Optional, TypeVar

import typer

from .core.config import RelayConfig, load_config
from .core.exceptions import RelayError
from .core.logging_utils import setup_logger
from .mailbox.models import Destination, MailboxRow, NewMailboxRow, QueueKind, RowStatus
from .mailbox.pairing import PairingRegistry
from .mailbox.store import RelayStore
from .relay.commands import CommandRelay
from .relay.service import build_store, create_relay_service

app = typer.Typer(add_completion=False, help="RollCloud <-> Discord relay.")
pair_app = typer.Typer(add_completion=False, help="Manage client pairings.")
app.add_typer(pair_app, name="pair")

LOGGER_NAME = "rollcloud_relay"

T = TypeVar("T")

_PATH_OPTION = typer.Option(
    None, "--path", help="Config file or directory holding rollcloud-relay.yml"
)


def raise_exit(message: str, *, cause: Optional[BaseException] = None) -> NoReturn:
    typer.echo(message, err=True)
    if cause is not None:
        raise typer.Exit(code=1) from cause
    raise typer.Exit(code=1)


def _load(path: Optional[Path]) -> RelayConfig:
    try:
        return load_config(path)
    except RelayError as exc:
        raise_exit(str(exc), cause=exc)


def _logger(config: RelayConfig) -> logging.Logger:
    return setup_logger(
        LOGGER_NAME,
        level=config.log.level,
        path=config.log.path,
        max_bytes=config.log.max_bytes,
        backup_count=config.log.backup_count,
    )


@asynccontextmanager
async def _open_store(config: RelayConfig) -> AsyncIterator[RelayStore]:
    store = build_store(config.store)
    await store.initialize()
    try:
        yield store
    finally:
        await store.close()


def _run(
    config: RelayConfig, coro_factory: Callable[[RelayStore], Awaitable[T]]
) -> T:
    async def _with_store() -> T:
        async with _open_store(config) as store:
            return await coro_factory(store)

    try:
        return asyncio.run(_with_store())
    except RelayError as exc:
        raise_exit(exc.user_message or str(exc), cause=exc)


def _row_summary(row: MailboxRow) -> dict[str, Any]:
    return {
        "row_id": row.row_id,
        "queue": row.queue.value,
        "pairing_id": row.pairing_id,
        "event_type": row.event_type,
        "status": row.status.value,
        "created_at": row.created_at,
        "terminal_at": row.terminal_at,
        "failure_reason": row.failure_reason,
    }


@app.command("run")
def relay_run(path: Optional[Path] = _PATH_OPTION) -> None:
    """Poll the turn queue and deliver to Discord until interrupted."""
    config = _load(path)
    try:
        service = create_relay_service(config, logger=_logger(config))
        asyncio.run(service.run_forever())
    except RelayError as exc:
        raise_exit(str(exc), cause=exc)
    except KeyboardInterrupt:
        typer.echo("Relay stopped.")


@pair_app.command("create")
def pair_create(
    client_identity: str = typer.Argument(..., help="Remote client user id"),
    client_name: Optional[str] = typer.Option(None, "--name", help="Display name"),
    path: Optional[Path] = _PATH_OPTION,
) -> None:
    config = _load(path)
    logger = _logger(config)

    async def _create(store: RelayStore) -> Any:
        registry = PairingRegistry(
            store, logger=logger, ttl_seconds=config.relay.pairing_ttl_seconds
        )
        await registry.expire_pending()
        return await registry.create_pairing(client_identity, client_name=client_name)

    pairing = _run(config, _create)
    typer.echo(f"Pairing code: {pairing.code} (expires {pairing.expires_at})")
    typer.echo(f"Pairing id: {pairing.pairing_id}")


@pair_app.command("redeem")
def pair_redeem(
    code: str = typer.Argument(..., help="Code shown by the client"),
    channel_id: str = typer.Option(..., "--channel", help="Discord channel id"),
    guild_id: Optional[str] = typer.Option(None, "--guild", help="Discord guild id"),
    owner_id: Optional[str] = typer.Option(
        None, "--owner", help="Discord user id redeeming the code"
    ),
    path: Optional[Path] = _PATH_OPTION,
) -> None:
    config = _load(path)
    logger = _logger(config)

    async def _redeem(store: RelayStore) -> Any:
        registry = PairingRegistry(store, logger=logger)
        return await registry.redeem_code(
            code,
            destination=Destination(channel_id=channel_id, guild_id=guild_id),
            owner_id=owner_id,
        )

    pairing = _run(config, _redeem)
    typer.echo(f"Connected pairing {pairing.pairing_id} to channel {channel_id}.")


@pair_app.command("disconnect")
def pair_disconnect(
    pairing_id: str = typer.Argument(...),
    path: Optional[Path] = _PATH_OPTION,
) -> None:
    config = _load(path)
    logger = _logger(config)

    async def _disconnect(store: RelayStore) -> bool:
        return await PairingRegistry(store, logger=logger).disconnect(pairing_id)

    if not _run(config, _disconnect):
        raise_exit(f"No pairing {pairing_id} to disconnect.")
    typer.echo(f"Disconnected pairing {pairing_id}.")


@app.command("roll-here")
def roll_here(
    caller_identity: str = typer.Argument(..., help="Discord user id of the caller"),
    notation: str = typer.Argument(..., help="Dice notation, e.g. 1d20+5"),
    display_name: Optional[str] = typer.Option(None, "--name"),
    actor_name: Optional[str] = typer.Option(None, "--actor"),
    check_type: Optional[str] = typer.Option(None, "--check"),
    path: Optional[Path] = _PATH_OPTION,
) -> None:
    """Queue a roll_here command for the caller's connected client."""
    config = _load(path)
    logger = _logger(config)

    async def _enqueue(store: RelayStore) -> Any:
        relay = CommandRelay(store, PairingRegistry(store, logger=logger), logger=logger)
        return await relay.enqueue_roll_here(
            caller_identity,
            notation,
            display_name=display_name,
            actor_name=actor_name,
            check_type=check_type,
        )

    result = _run(config, _enqueue)
    if not result.ok:
        raise_exit(result.user_message or str(result.reason))
    typer.echo(f"Queued command {result.row_id}.")


@app.command("failed")
def list_failed(
    queue: QueueKind = typer.Option(QueueKind.TURNS, "--queue"),
    limit: int = typer.Option(20, "--limit", min=1),
    output_json: bool = typer.Option(False, "--json"),
    path: Optional[Path] = _PATH_OPTION,
) -> None:
    """Show rows that ended in ``failed``, newest first."""
    config = _load(path)

    async def _list(store: RelayStore) -> list[MailboxRow]:
        return await store.list_failed(queue, limit)

    rows = _run(config, _list)
    if output_json:
        typer.echo(json.dumps([_row_summary(row) for row in rows], indent=2))
        return
    if not rows:
        typer.echo("No failed rows.")
        return
    for row in rows:
        typer.echo(
            f"{row.row_id} {row.event_type} {row.terminal_at or '-'} "
            f"{row.failure_reason or ''}".rstrip()
        )


@app.command("resubmit")
def resubmit(
    row_id: str = typer.Argument(...),
    queue: QueueKind = typer.Option(QueueKind.TURNS, "--queue"),
    path: Optional[Path] = _PATH_OPTION,
) -> None:
    """Queue a fresh pending copy of a failed row."""
    config = _load(path)

    async def _resubmit(store: RelayStore) -> Optional[MailboxRow]:
        row = await store.get_row(queue, row_id)
        if row is None or row.status is not RowStatus.FAILED:
            return None
        if not row.pairing_id:
            return None
        return await store.insert(
            queue,
            NewMailboxRow(
                pairing_id=row.pairing_id,
                event_type=row.event_type,
                payload=dict(row.payload),
            ),
        )

    created = _run(config, _resubmit)
    if created is None:
        raise_exit(f"Row {row_id} is not a failed {queue.value} row.")
    typer.echo(f"Resubmitted {row_id} as {created.row_id}.")


def main() -> None:
    app()
