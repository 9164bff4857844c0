from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

DEFAULT_CONFIG_PATH = "/etc/influxdb-gateway.toml"
DEFAULT_WORKER_COUNT = 4
DEFAULT_QUEUE_SIZE = 1000

_TRUTHY = frozenset({"1", "true", "yes", "on"})


@dataclass(frozen=True)
class Settings:
    """Process-level knobs; the relay itself is described by the TOML file."""

    config_path: str
    writer_workers: int
    writer_queue_size: int
    strict_close: bool
    log_level: str
    log_file_path: Optional[str]


def _env(name: str) -> Optional[str]:
    """Return the stripped value of ``name``, or None when unset or blank."""
    value = os.getenv(name)
    if value is None:
        return None
    return value.strip() or None


def _from_env(name: str, parse: Callable[[str], T], default: T) -> T:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return parse(raw)
    except ValueError:
        return default


def _positive_int(raw: str) -> int:
    value = int(raw)
    if value <= 0:
        raise ValueError(raw)
    return value


def _flag(raw: str) -> bool:
    return raw.lower() in _TRUTHY


@lru_cache
def get_settings() -> Settings:
    return Settings(
        config_path=_env("GATEWAY_CONFIG_PATH") or DEFAULT_CONFIG_PATH,
        writer_workers=_from_env("GATEWAY_WORKER_COUNT", _positive_int, DEFAULT_WORKER_COUNT),
        writer_queue_size=_from_env("GATEWAY_QUEUE_SIZE", _positive_int, DEFAULT_QUEUE_SIZE),
        strict_close=_from_env("GATEWAY_STRICT_CLOSE", _flag, False),
        log_level=_from_env("LOG_LEVEL", str.upper, "INFO"),
        log_file_path=_env("LOG_FILE_PATH"),
    )
