"""Shared error hierarchy for the relay.

Every failure the relay can observe is scoped to one mailbox row or one
command call. Errors carry an optional ``user_message`` that chat-facing
surfaces may show verbatim; the exception message itself is for logs.
"""

from __future__ import annotations

from typing import Optional


class RelayError(Exception):
    """Base relay error."""

    recoverable = True
    severity = "warning"

    def __init__(self, message: str, *, user_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.user_message = user_message


class TransientError(RelayError):
    """Failure that may succeed if the same call is repeated."""


class PermanentError(RelayError):
    """Failure that will keep failing until something external changes."""

    recoverable = False
    severity = "error"


class ValidationError(PermanentError):
    """Caller input was rejected before anything was written."""


class DiceValidationError(ValidationError):
    """Roll notation is malformed or outside the allowed dice limits."""

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message, user_message=message)
        self.reason = reason


class ResolutionError(PermanentError):
    """No connected pairing exists for a destination or caller."""


class PairingNotFoundError(ResolutionError):
    """Pairing code is unknown or has expired."""


class PairingAlreadyConnectedError(ResolutionError):
    """Pairing code was already redeemed."""


class DeliveryError(RelayError):
    """Chat platform refused or failed to deliver a rendered message."""


class StoreError(RelayError):
    """Mailbox or pairing store request failed."""


class StoreTransientError(StoreError, TransientError):
    """Retryable store failure (network issues, 5xx responses)."""


class StorePermanentError(StoreError, PermanentError):
    """Non-retryable store failure (auth, malformed request)."""

    recoverable = PermanentError.recoverable
    severity = PermanentError.severity


class RelayConfigError(PermanentError):
    """Relay configuration is invalid."""
