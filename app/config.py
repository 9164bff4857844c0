"""Relay configuration: pydantic models and the TOML loader."""

from __future__ import annotations

import re
import tomllib
from pathlib import Path
from typing import Annotated, List, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from models.points import ConsistencyLevel, Precision
from services.errors import ConfigError

_DURATION_PATTERN = re.compile(r"(\d+(?:\.\d+)?)(ns|us|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def _dashed(name: str) -> str:
    return name.replace("_", "-")


def _parse_duration(value: Union[str, int, float]) -> float:
    """Accept plain seconds or Go-style durations such as ``"1s"`` or ``"1m30s"``."""
    if isinstance(value, (int, float)):
        return float(value)
    candidate = value.strip()
    try:
        return float(candidate)
    except ValueError:
        pass
    matches = list(_DURATION_PATTERN.finditer(candidate))
    if not matches or "".join(match.group(0) for match in matches) != candidate:
        raise ValueError(f"invalid duration {value!r}")
    return sum(float(match.group(1)) * _DURATION_UNITS[match.group(2)] for match in matches)


def _empty_to_none(value: object) -> object:
    if isinstance(value, str) and not value.strip():
        return None
    return value


_OptionalPrecision = Annotated[Optional[Precision], BeforeValidator(_empty_to_none)]
_OptionalConsistency = Annotated[Optional[ConsistencyLevel], BeforeValidator(_empty_to_none)]


class _Section(BaseModel):
    model_config = ConfigDict(
        alias_generator=_dashed,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )


class UDPListenerConfig(_Section):
    """One ``[[sender.udp]]`` block."""

    enabled: bool = False
    bind_address: str = ":8089"
    database: str = "udp"
    retention_policy: str = ""
    precision: _OptionalPrecision = None
    batch_size: int = Field(default=5000, ge=1)
    batch_timeout: float = Field(default=1.0, gt=0)
    read_buffer: int = Field(default=0, ge=0)

    @field_validator("batch_timeout", mode="before")
    @classmethod
    def parse_batch_timeout(cls, value: Union[str, int, float]) -> float:
        return _parse_duration(value)


class HTTPListenerConfig(_Section):
    """One ``[[sender.http]]`` block."""

    enabled: bool = False
    bind_address: str = ":8186"
    database: str = ""
    retention_policy: str = ""
    max_body_size: int = Field(default=25 * 1024 * 1024, ge=0)


class SenderConfig(_Section):
    """Destination and transport settings for the sender.

    Optional settings left empty are filled in by the sender itself.
    """

    addr: str
    username: str = ""
    password: str = ""
    user_agent: str = ""
    timeout: int = Field(default=0, ge=0)
    gzip: bool = False
    insecure_skip_verify: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "insecure-skip-verify", "insucure-skip-verify", "insecure_skip_verify"
        ),
    )
    precision: _OptionalPrecision = None
    consistency: _OptionalConsistency = None
    udp: List[UDPListenerConfig] = Field(default_factory=list)
    http: List[HTTPListenerConfig] = Field(default_factory=list)


class GatewayConfig(_Section):
    sender: SenderConfig


def load_config(path: Union[str, Path]) -> GatewayConfig:
    """Read and validate a TOML configuration file."""
    config_path = Path(path)
    try:
        with config_path.open("rb") as handle:
            data = tomllib.load(handle)
    except OSError as exc:
        raise ConfigError(f"cannot read config file {config_path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"malformed config file {config_path}: {exc}") from exc

    try:
        return GatewayConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid config file {config_path}: {exc}") from exc
