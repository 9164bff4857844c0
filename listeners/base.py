"""Contract shared by every ingestion listener."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from models.points import ConsistencyLevel, Point


class PointsWriter(Protocol):
    """Anything that accepts a batch of points, such as the sender."""

    def write_points(
        self,
        database: str,
        retention_policy: str,
        consistency_level: Optional[ConsistencyLevel],
        points: Sequence[Point],
    ) -> None: ...


@dataclass(frozen=True)
class DatabaseInfo:
    name: str


class MetaClient(Protocol):
    def create_database(self, name: str) -> Optional[DatabaseInfo]: ...


class NoopMetaClient:
    """Catalog client that provisions nothing; the destination owns its databases."""

    def create_database(self, name: str) -> Optional[DatabaseInfo]:
        return None


class Listener(Protocol):
    """A source of points with a start/stop lifecycle.

    Listeners are constructed with a ``PointsWriter`` and a ``MetaClient``
    and forward everything they receive to the writer.
    """

    name: str

    def open(self) -> None: ...

    def close(self) -> None: ...


def split_host_port(address: str) -> tuple[str, int]:
    """Split ``"host:port"`` (or ``":port"``) into its parts."""
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"address {address!r} is missing a port")
    try:
        number = int(port)
    except ValueError as exc:
        raise ValueError(f"address {address!r} has an invalid port") from exc
    if not 0 <= number <= 65535:
        raise ValueError(f"address {address!r} has an out-of-range port")
    return host.strip("[]"), number
