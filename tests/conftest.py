"""Test harness configuration.

This repo uses a `src/` layout. Ensure tests always import the in-repo code
rather than an older installed `rollcloud_relay`.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import AsyncIterator

import pytest

DEFAULT_NON_INTEGRATION_TIMEOUT_SECONDS = 60


def pytest_configure() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src_path = str(repo_root / "src")
    if sys.path[:1] != [src_path] and src_path not in sys.path:
        sys.path.insert(0, src_path)


def pytest_collection_modifyitems(
    session: pytest.Session, config: pytest.Config, items: list[pytest.Item]
) -> None:
    """
    Apply a default per-test timeout to non-integration tests.

    This relies on `pytest-timeout`; without it the marker is inert.
    """
    _ = session, config
    for item in items:
        if item.get_closest_marker("integration") is not None:
            continue
        item.add_marker(pytest.mark.timeout(DEFAULT_NON_INTEGRATION_TIMEOUT_SECONDS))


@pytest.fixture()
async def sqlite_store(tmp_path: Path) -> AsyncIterator[object]:
    # Import lazily so `pytest_configure()` can prepend the local src/ directory
    # before any `rollcloud_relay` modules are loaded.
    from rollcloud_relay.mailbox.sqlite_store import SqliteRelayStore

    store = SqliteRelayStore(tmp_path / "relay.sqlite3")
    await store.initialize()
    try:
        yield store
    finally:
        await store.close()


@pytest.fixture()
async def connected_pairing(sqlite_store: object) -> object:
    from rollcloud_relay.mailbox.models import Destination
    from rollcloud_relay.mailbox.pairing import PairingRegistry

    registry = PairingRegistry(sqlite_store)  # type: ignore[arg-type]
    pairing = await registry.create_pairing("dicecloud-1", client_name="Gandalf")
    return await registry.redeem_code(
        pairing.code,
        destination=Destination("chan-1", "guild-1"),
        owner_id="discord-1",
    )


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    # The code under test is built on asyncio; don't parametrize over other
    # anyio backends that merely happen to be installed.
    return "asyncio"
