"""Serialization of point batches into write request bodies."""

from __future__ import annotations

import gzip
import io
from typing import Iterable

from models.points import Point, Precision
from services.errors import EncodingError
from services.line_protocol import format_point


def encode_points(
    points: Iterable[Point],
    precision: Precision = Precision.ns,
    compress: bool = False,
) -> bytes:
    """Render ``points`` as newline-terminated line protocol.

    The whole batch is built in memory; if any point fails to render or the
    compressor fails, ``EncodingError`` is raised and nothing is returned.
    """
    buffer = io.BytesIO()
    try:
        if compress:
            with gzip.GzipFile(fileobj=buffer, mode="wb") as writer:
                _write_lines(writer, points, precision)
        else:
            _write_lines(buffer, points, precision)
    except EncodingError:
        raise
    except (OSError, ValueError) as exc:
        raise EncodingError(f"failed to encode points: {exc}") from exc
    return buffer.getvalue()


def _write_lines(stream: io.BufferedIOBase, points: Iterable[Point], precision: Precision) -> None:
    for point in points:
        stream.write(format_point(point, precision).encode("utf-8"))
        stream.write(b"\n")
