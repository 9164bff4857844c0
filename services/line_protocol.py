"""Rendering and parsing of the InfluxDB line protocol.

One point per line::

    measurement[,tag=value...] field=value[,field=value...] [timestamp]

Tags and fields are rendered in key order so that the same point always
produces the same bytes.
"""

from __future__ import annotations

import math
import re
from typing import Iterable, List, Mapping, Optional

from models.points import FieldValue, Point, Precision, now_ns
from services.errors import EncodingError, LineProtocolError

_MEASUREMENT_ESCAPES = str.maketrans({",": r"\,", " ": r"\ "})
_KEY_ESCAPES = str.maketrans({",": r"\,", "=": r"\=", " ": r"\ "})
_STRING_ESCAPES = str.maketrans({'"': r"\"", "\\": r"\\"})

_KEY_UNESCAPE = re.compile(r"\\([,= ])")
_MEASUREMENT_UNESCAPE = re.compile(r"\\([, ])")
_STRING_UNESCAPE = re.compile(r"\\([\"\\])")
_FLOAT_PATTERN = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")
_INT_PATTERN = re.compile(r"[+-]?\d+")
_TRUE_VALUES = {"t", "T", "true", "True", "TRUE"}
_FALSE_VALUES = {"f", "F", "false", "False", "FALSE"}


def _check_text(kind: str, value: object) -> None:
    if not isinstance(value, str):
        raise EncodingError(f"{kind} {value!r} is not a string")
    if "\n" in value or "\r" in value:
        raise EncodingError(f"{kind} {value!r} contains a line break")


def _format_field_value(key: str, value: FieldValue) -> str:
    # bool is a subclass of int, so it has to be checked first.
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"{value}i"
    if isinstance(value, float):
        if not math.isfinite(value):
            raise EncodingError(f"field {key!r} has non-finite value {value!r}")
        return repr(value)
    if isinstance(value, str):
        _check_text("field value", value)
        return f'"{value.translate(_STRING_ESCAPES)}"'
    raise EncodingError(
        f"field {key!r} has unsupported type {type(value).__name__}"
    )


def format_point(point: Point, precision: Precision = Precision.ns) -> str:
    """Render a point as a single line, without the trailing newline."""
    _check_text("measurement", point.measurement)
    if not point.measurement:
        raise EncodingError("point has an empty measurement name")
    if not point.fields:
        raise EncodingError(f"point {point.measurement!r} has no fields")
    if isinstance(point.timestamp, bool) or not isinstance(point.timestamp, int):
        raise EncodingError(f"point {point.measurement!r} has a non-integer timestamp")
    # Keys must all be strings before they can be sorted.
    for key, value in point.tags.items():
        _check_text("tag", key)
        _check_text("tag value", value)
    for key in point.fields:
        _check_text("field", key)

    parts = [point.measurement.translate(_MEASUREMENT_ESCAPES)]
    for key in sorted(point.tags):
        value = point.tags[key]
        if not value:
            continue
        if not key:
            raise EncodingError(f"point {point.measurement!r} has an empty tag key")
        parts.append(f",{key.translate(_KEY_ESCAPES)}={value.translate(_KEY_ESCAPES)}")

    fields = []
    for key in sorted(point.fields):
        if not key:
            raise EncodingError(f"point {point.measurement!r} has an empty field key")
        fields.append(
            f"{key.translate(_KEY_ESCAPES)}={_format_field_value(key, point.fields[key])}"
        )

    return f"{''.join(parts)} {','.join(fields)} {precision.scale(point.timestamp)}"


def format_points(points: Iterable[Point], precision: Precision = Precision.ns) -> str:
    return "".join(f"{format_point(point, precision)}\n" for point in points)


def _split_unescaped(text: str, separator: str, respect_quotes: bool = False) -> List[str]:
    parts: List[str] = []
    current: List[str] = []
    in_quotes = False
    index = 0
    while index < len(text):
        char = text[index]
        if char == "\\" and index + 1 < len(text):
            current.append(text[index : index + 2])
            index += 2
            continue
        if respect_quotes and char == '"':
            in_quotes = not in_quotes
        elif char == separator and not in_quotes:
            parts.append("".join(current))
            current = []
            index += 1
            continue
        current.append(char)
        index += 1
    parts.append("".join(current))
    return parts


def _split_sections(line: str, line_number: int) -> List[str]:
    sections: List[str] = []
    current: List[str] = []
    in_quotes = False
    index = 0
    while index < len(line):
        char = line[index]
        if char == "\\" and index + 1 < len(line):
            current.append(line[index : index + 2])
            index += 2
            continue
        # Quotes only delimit string values in the field section.
        if char == '"' and len(sections) == 1:
            in_quotes = not in_quotes
        elif char == " " and not in_quotes:
            if current:
                sections.append("".join(current))
                current = []
            index += 1
            continue
        current.append(char)
        index += 1
    if in_quotes:
        raise LineProtocolError("unterminated string field value", line_number)
    if current:
        sections.append("".join(current))
    if len(sections) < 2:
        raise LineProtocolError("missing fields", line_number)
    if len(sections) > 3:
        raise LineProtocolError("unexpected data after timestamp", line_number)
    return sections


def _unescape_key(text: str) -> str:
    return _KEY_UNESCAPE.sub(r"\1", text)


def _parse_field_value(raw: str, line_number: int) -> FieldValue:
    if raw.startswith('"'):
        if len(raw) < 2 or not raw.endswith('"'):
            raise LineProtocolError(f"invalid string value {raw!r}", line_number)
        return _STRING_UNESCAPE.sub(r"\1", raw[1:-1])
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    if raw[-1:] in {"i", "u"} and _INT_PATTERN.fullmatch(raw[:-1]):
        return int(raw[:-1])
    if _FLOAT_PATTERN.fullmatch(raw):
        value = float(raw)
        if math.isfinite(value):
            return value
    raise LineProtocolError(f"invalid field value {raw!r}", line_number)


def _parse_fields(section: str, line_number: int) -> Mapping[str, FieldValue]:
    fields: dict[str, FieldValue] = {}
    for item in _split_unescaped(section, ",", respect_quotes=True):
        pieces = _split_unescaped(item, "=", respect_quotes=True)
        if len(pieces) != 2 or not pieces[0] or not pieces[1]:
            raise LineProtocolError(f"invalid field {item!r}", line_number)
        fields[_unescape_key(pieces[0])] = _parse_field_value(pieces[1], line_number)
    return fields


def parse_line(
    line: str,
    precision: Precision = Precision.ns,
    default_time: Optional[int] = None,
    line_number: int = 1,
) -> Point:
    """Parse one line; a missing timestamp falls back to ``default_time``."""
    sections = _split_sections(line, line_number)
    key_parts = _split_unescaped(sections[0], ",")
    measurement = _MEASUREMENT_UNESCAPE.sub(r"\1", key_parts[0])
    if not measurement:
        raise LineProtocolError("missing measurement", line_number)

    tags: dict[str, str] = {}
    for item in key_parts[1:]:
        pieces = _split_unescaped(item, "=")
        if len(pieces) != 2 or not pieces[0] or not pieces[1]:
            raise LineProtocolError(f"invalid tag {item!r}", line_number)
        tags[_unescape_key(pieces[0])] = _unescape_key(pieces[1])

    fields = _parse_fields(sections[1], line_number)

    if len(sections) == 3:
        if not _INT_PATTERN.fullmatch(sections[2]):
            raise LineProtocolError(f"invalid timestamp {sections[2]!r}", line_number)
        timestamp = precision.to_nanoseconds(int(sections[2]))
    else:
        timestamp = default_time if default_time is not None else now_ns()

    return Point(measurement=measurement, tags=tags, fields=fields, timestamp=timestamp)


def parse_points(
    text: str,
    precision: Precision = Precision.ns,
    default_time: Optional[int] = None,
) -> List[Point]:
    """Parse a block of line protocol, skipping blank lines and ``#`` comments.

    Every point without an explicit timestamp shares the same default, so a
    batch received together is stamped together.
    """
    stamp = default_time if default_time is not None else now_ns()
    points: List[Point] = []
    for line_number, raw in enumerate(text.split("\n"), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        points.append(parse_line(line, precision, stamp, line_number))
    return points
