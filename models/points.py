"""Domain models shared across the sender, the gateway and the listeners."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Sequence, Union

FieldValue = Union[bool, int, float, str]


class Precision(str, Enum):
    """Time unit used to render a point's timestamp."""

    ns = "ns"
    us = "us"
    ms = "ms"
    s = "s"

    @property
    def factor(self) -> int:
        """Number of nanoseconds in one unit of this precision."""
        return _PRECISION_FACTORS[self]

    def scale(self, timestamp_ns: int) -> int:
        """Convert nanoseconds to this unit, truncating toward zero."""
        if timestamp_ns < 0:
            return -(-timestamp_ns // self.factor)
        return timestamp_ns // self.factor

    def to_nanoseconds(self, value: int) -> int:
        return value * self.factor


_PRECISION_FACTORS = {
    Precision.ns: 1,
    Precision.us: 1_000,
    Precision.ms: 1_000_000,
    Precision.s: 1_000_000_000,
}


class ConsistencyLevel(str, Enum):
    """How many replicas must acknowledge a write on the destination."""

    any = "any"
    one = "one"
    quorum = "quorum"
    all = "all"


def now_ns() -> int:
    return time.time_ns()


@dataclass(frozen=True, slots=True)
class Point:
    """A single measurement observation.

    ``timestamp`` is expressed in nanoseconds since the Unix epoch; the tag
    and field mappings are frozen on construction.
    """

    measurement: str
    fields: Mapping[str, FieldValue]
    tags: Mapping[str, str] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ns)

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))


@dataclass(frozen=True, slots=True)
class WriteRequest:
    """One call's worth of points bound for a database/retention policy."""

    database: str
    retention_policy: str
    consistency: ConsistencyLevel | None
    points: Sequence[Point]
