from __future__ import annotations

import logging
import secrets
import uuid
from typing import Optional

from ..core.config import DEFAULT_PAIRING_TTL_SECONDS
from ..core.exceptions import (
    PairingAlreadyConnectedError,
    PairingNotFoundError,
    StoreError,
)
from ..core.logging_utils import log_event
from ..core.time_utils import iso_after, now_iso
from .models import Destination, Pairing, PairingStatus
from .store import PairingStore

PAIRING_CODE_LENGTH = 6
# No 0/O or 1/I/L: codes are read off one screen and typed into another.
PAIRING_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
_MAX_CODE_ATTEMPTS = 8


def normalize_code(code: str) -> str:
    return code.strip().upper()


def generate_pairing_code() -> str:
    return "".join(
        secrets.choice(PAIRING_CODE_ALPHABET) for _ in range(PAIRING_CODE_LENGTH)
    )


class PairingRegistry:
    """Resolves pairings for both relay directions.

    Every ``resolve_*`` lookup only sees ``connected`` pairings; a pending
    code is invisible to the relay until someone redeems it in chat.
    """

    def __init__(
        self,
        store: PairingStore,
        *,
        logger: Optional[logging.Logger] = None,
        ttl_seconds: float = DEFAULT_PAIRING_TTL_SECONDS,
    ) -> None:
        self._store = store
        self._logger = logger or logging.getLogger(__name__)
        self._ttl_seconds = ttl_seconds

    async def resolve_by_id(self, pairing_id: str) -> Optional[Pairing]:
        return await self._store.find_pairing(
            pairing_id=pairing_id, status=PairingStatus.CONNECTED
        )

    async def resolve_by_code(self, code: str) -> Optional[Pairing]:
        return await self._store.find_pairing(
            code=normalize_code(code), status=PairingStatus.CONNECTED
        )

    async def resolve_by_client_identity(
        self, client_identity: str
    ) -> Optional[Pairing]:
        return await self._store.find_pairing(
            client_identity=client_identity, status=PairingStatus.CONNECTED
        )

    async def resolve_by_owner(self, owner_id: str) -> Optional[Pairing]:
        return await self._store.find_pairing(
            owner_id=owner_id, status=PairingStatus.CONNECTED
        )

    async def resolve_by_destination(self, channel_id: str) -> Optional[Pairing]:
        return await self._store.find_pairing(
            channel_id=channel_id, status=PairingStatus.CONNECTED
        )

    async def create_pairing(
        self, client_identity: str, *, client_name: Optional[str] = None
    ) -> Pairing:
        for _attempt in range(_MAX_CODE_ATTEMPTS):
            code = generate_pairing_code()
            if await self._store.find_pairing(code=code) is not None:
                continue
            pairing = await self._store.insert_pairing(
                Pairing(
                    pairing_id=str(uuid.uuid4()),
                    code=code,
                    client_identity=client_identity,
                    client_name=client_name,
                    status=PairingStatus.PENDING,
                    created_at=now_iso(),
                    expires_at=iso_after(self._ttl_seconds),
                )
            )
            log_event(
                self._logger,
                logging.INFO,
                "relay.pairing.created",
                pairing_id=pairing.pairing_id,
                client_identity=client_identity,
                expires_at=pairing.expires_at,
            )
            return pairing
        raise StoreError("could not allocate a unique pairing code")

    async def redeem_code(
        self,
        code: str,
        *,
        destination: Destination,
        owner_id: Optional[str] = None,
    ) -> Pairing:
        normalized = normalize_code(code)
        now = now_iso()
        connected = await self._store.connect_pairing(
            normalized, destination=destination, owner_id=owner_id, now=now
        )
        if connected is not None:
            log_event(
                self._logger,
                logging.INFO,
                "relay.pairing.connected",
                pairing_id=connected.pairing_id,
                channel_id=destination.channel_id,
                guild_id=destination.guild_id,
                owner_id=owner_id,
            )
            return connected

        existing = await self._store.find_pairing(code=normalized)
        if existing is not None and existing.status is PairingStatus.CONNECTED:
            raise PairingAlreadyConnectedError(
                f"pairing code {normalized} was already redeemed",
                user_message=(
                    "This code has already been used. Generate a new code in "
                    "the extension to reconnect."
                ),
            )
        raise PairingNotFoundError(
            f"pairing code {normalized} is unknown or expired",
            user_message=f"The code **{normalized}** was not found or has expired.",
        )

    async def disconnect(self, pairing_id: str) -> bool:
        changed = await self._store.set_pairing_status(
            pairing_id, PairingStatus.DISCONNECTED
        )
        if changed:
            log_event(
                self._logger,
                logging.INFO,
                "relay.pairing.disconnected",
                pairing_id=pairing_id,
            )
        return changed

    async def expire_pending(self) -> int:
        removed = await self._store.delete_expired_pairings(now_iso())
        if removed:
            log_event(
                self._logger,
                logging.INFO,
                "relay.pairing.expired",
                removed=removed,
            )
        return removed

