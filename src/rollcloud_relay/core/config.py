from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .exceptions import RelayConfigError

CONFIG_FILENAME = "rollcloud-relay.yml"

DEFAULT_SQLITE_PATH = ".rollcloud/relay.sqlite3"
DEFAULT_STORE_URL_ENV = "SUPABASE_URL"
DEFAULT_STORE_KEY_ENV = "SUPABASE_SERVICE_KEY"
DEFAULT_TABLE_PREFIX = "rollcloud"
DEFAULT_STORE_TIMEOUT_SECONDS = 10.0
DEFAULT_BOT_TOKEN_ENV = "ROLLCLOUD_DISCORD_BOT_TOKEN"

DEFAULT_POLL_INTERVAL_SECONDS = 1.5
DEFAULT_BATCH_SIZE = 10
DEFAULT_CLAIM_TIMEOUT_SECONDS = 300.0
DEFAULT_PAIRING_TTL_SECONDS = 30 * 60

DEFAULT_LOG_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_LOG_BACKUP_COUNT = 3

STORE_BACKENDS = ("sqlite", "postgrest")


@dataclass(frozen=True)
class StoreConfig:
    backend: str = "sqlite"
    sqlite_path: Path = Path(DEFAULT_SQLITE_PATH)
    url_env: str = DEFAULT_STORE_URL_ENV
    key_env: str = DEFAULT_STORE_KEY_ENV
    url: Optional[str] = None
    service_key: Optional[str] = None
    table_prefix: str = DEFAULT_TABLE_PREFIX
    timeout_seconds: float = DEFAULT_STORE_TIMEOUT_SECONDS


@dataclass(frozen=True)
class DiscordConfig:
    bot_token_env: str = DEFAULT_BOT_TOKEN_ENV
    bot_token: Optional[str] = None


@dataclass(frozen=True)
class RelaySettings:
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    batch_size: int = DEFAULT_BATCH_SIZE
    claim_timeout_seconds: float = DEFAULT_CLAIM_TIMEOUT_SECONDS
    pairing_ttl_seconds: float = DEFAULT_PAIRING_TTL_SECONDS


@dataclass(frozen=True)
class LogConfig:
    level: int = logging.INFO
    path: Optional[Path] = None
    max_bytes: int = DEFAULT_LOG_MAX_BYTES
    backup_count: int = DEFAULT_LOG_BACKUP_COUNT


@dataclass(frozen=True)
class RelayConfig:
    root: Path
    store: StoreConfig = field(default_factory=StoreConfig)
    discord: DiscordConfig = field(default_factory=DiscordConfig)
    relay: RelaySettings = field(default_factory=RelaySettings)
    log: LogConfig = field(default_factory=LogConfig)

    @classmethod
    def from_raw(cls, *, root: Path, raw: Any) -> "RelayConfig":
        cfg: dict[str, Any] = raw if isinstance(raw, dict) else {}
        return cls(
            root=root,
            store=_parse_store(root, _section(cfg, "store")),
            discord=_parse_discord(_section(cfg, "discord")),
            relay=_parse_relay(_section(cfg, "relay")),
            log=_parse_log(root, _section(cfg, "log")),
        )

    def require_discord_token(self) -> str:
        if not self.discord.bot_token:
            raise RelayConfigError(
                f"Discord bot token env var {self.discord.bot_token_env} is unset"
            )
        return self.discord.bot_token


def load_config(path: Optional[Path] = None) -> RelayConfig:
    """Load ``rollcloud-relay.yml`` from ``path`` (a file or directory).

    A missing file yields the defaults rooted at the directory given.
    """
    target = path or Path.cwd()
    if target.is_dir():
        root = target
        config_path = target / CONFIG_FILENAME
    else:
        root = target.parent
        config_path = target
    raw = _load_yaml_dict(config_path)
    return RelayConfig.from_raw(root=root.resolve(), raw=raw)


def _load_yaml_dict(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise RelayConfigError(f"Invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise RelayConfigError(f"Failed to read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise RelayConfigError(f"Config file must be a mapping: {path}")
    return data


def _section(cfg: dict[str, Any], key: str) -> dict[str, Any]:
    value = cfg.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise RelayConfigError(f"{key} must be a mapping")
    return value


def _parse_store(root: Path, cfg: dict[str, Any]) -> StoreConfig:
    backend = str(cfg.get("backend", "sqlite")).strip().lower()
    if backend not in STORE_BACKENDS:
        raise RelayConfigError(
            f"store.backend must be one of {', '.join(STORE_BACKENDS)}"
        )
    sqlite_path_value = cfg.get("sqlite_path", DEFAULT_SQLITE_PATH)
    if not isinstance(sqlite_path_value, str) or not sqlite_path_value.strip():
        raise RelayConfigError("store.sqlite_path must be a string path")
    url_env = _parse_env_name(cfg.get("url_env"), DEFAULT_STORE_URL_ENV, "store.url_env")
    key_env = _parse_env_name(cfg.get("key_env"), DEFAULT_STORE_KEY_ENV, "store.key_env")
    table_prefix = str(cfg.get("table_prefix", DEFAULT_TABLE_PREFIX)).strip()
    if not table_prefix:
        raise RelayConfigError("store.table_prefix must be non-empty")

    url = os.environ.get(url_env) or None
    service_key = os.environ.get(key_env) or None
    if backend == "postgrest":
        if not url:
            raise RelayConfigError(
                f"store.backend is postgrest but env var {url_env} is unset"
            )
        if not service_key:
            raise RelayConfigError(
                f"store.backend is postgrest but env var {key_env} is unset"
            )

    return StoreConfig(
        backend=backend,
        sqlite_path=(root / sqlite_path_value).resolve(),
        url_env=url_env,
        key_env=key_env,
        url=url.rstrip("/") if url else None,
        service_key=service_key,
        table_prefix=table_prefix,
        timeout_seconds=_parse_positive_float(
            cfg.get("timeout_seconds"),
            default=DEFAULT_STORE_TIMEOUT_SECONDS,
            key="store.timeout_seconds",
        ),
    )


def _parse_discord(cfg: dict[str, Any]) -> DiscordConfig:
    token_env = _parse_env_name(
        cfg.get("bot_token_env"), DEFAULT_BOT_TOKEN_ENV, "discord.bot_token_env"
    )
    return DiscordConfig(
        bot_token_env=token_env,
        bot_token=os.environ.get(token_env) or None,
    )


def _parse_relay(cfg: dict[str, Any]) -> RelaySettings:
    return RelaySettings(
        poll_interval_seconds=_parse_positive_float(
            cfg.get("poll_interval_seconds"),
            default=DEFAULT_POLL_INTERVAL_SECONDS,
            key="relay.poll_interval_seconds",
        ),
        batch_size=_parse_positive_int(
            cfg.get("batch_size"),
            default=DEFAULT_BATCH_SIZE,
            key="relay.batch_size",
        ),
        claim_timeout_seconds=_parse_positive_float(
            cfg.get("claim_timeout_seconds"),
            default=DEFAULT_CLAIM_TIMEOUT_SECONDS,
            key="relay.claim_timeout_seconds",
        ),
        pairing_ttl_seconds=_parse_positive_float(
            cfg.get("pairing_ttl_seconds"),
            default=DEFAULT_PAIRING_TTL_SECONDS,
            key="relay.pairing_ttl_seconds",
        ),
    )


def _parse_log(root: Path, cfg: dict[str, Any]) -> LogConfig:
    level_raw = str(cfg.get("level", "INFO")).strip().upper()
    level = logging.getLevelName(level_raw)
    if not isinstance(level, int):
        raise RelayConfigError(f"log.level is not a logging level: {level_raw}")
    path_value = cfg.get("path")
    if path_value is not None and (
        not isinstance(path_value, str) or not path_value.strip()
    ):
        raise RelayConfigError("log.path must be a string path")
    return LogConfig(
        level=level,
        path=(root / path_value).resolve() if path_value else None,
        max_bytes=_parse_positive_int(
            cfg.get("max_bytes"), default=DEFAULT_LOG_MAX_BYTES, key="log.max_bytes"
        ),
        backup_count=_parse_positive_int(
            cfg.get("backup_count"),
            default=DEFAULT_LOG_BACKUP_COUNT,
            key="log.backup_count",
        ),
    )


def _parse_env_name(value: Any, default: str, key: str) -> str:
    if value is None:
        return default
    name = str(value).strip()
    if not name:
        raise RelayConfigError(f"{key} must be non-empty")
    return name


def _parse_positive_int(value: Any, *, default: int, key: str) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise RelayConfigError(f"{key} must be an integer")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise RelayConfigError(f"{key} must be an integer") from exc
    if parsed <= 0:
        raise RelayConfigError(f"{key} must be > 0")
    return parsed


def _parse_positive_float(value: Any, *, default: float, key: str) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        raise RelayConfigError(f"{key} must be a number")
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise RelayConfigError(f"{key} must be a number") from exc
    if not math.isfinite(parsed) or parsed <= 0:
        raise RelayConfigError(f"{key} must be a finite number > 0")
    return parsed
