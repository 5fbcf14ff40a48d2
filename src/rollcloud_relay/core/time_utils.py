from datetime import datetime, timedelta, timezone
from typing import Optional

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def format_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(ISO_FORMAT)


def now_iso() -> str:
    return format_iso(now_utc())


def iso_after(seconds: float, *, start: Optional[datetime] = None) -> str:
    base = start or now_utc()
    return format_iso(base + timedelta(seconds=seconds))


__all__ = ["ISO_FORMAT", "format_iso", "iso_after", "now_iso", "now_utc"]
