from __future__ import annotations

from typing import Optional

from ...core.exceptions import DeliveryError, PermanentError, TransientError


class DiscordAPIError(DeliveryError):
    """Discord API request error."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
        user_message: Optional[str] = None,
    ) -> None:
        if user_message is None:
            user_message = "Discord API error. Please try again."
        super().__init__(message, user_message=user_message)
        self.status_code = status_code
        self.retry_after = retry_after


class DiscordTransientError(DiscordAPIError, TransientError):
    """Retryable Discord API error (rate limits, network issues)."""


class DiscordPermanentError(DiscordAPIError, PermanentError):
    """Non-retryable Discord API error (bad token, missing access, invalid payload)."""

    recoverable = PermanentError.recoverable
    severity = PermanentError.severity
