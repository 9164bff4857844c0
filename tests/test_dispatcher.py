from __future__ import annotations

import threading
from typing import List, Optional, Sequence

import pytest

from models.points import ConsistencyLevel, Point, WriteRequest
from services.dispatcher import WriteDispatcher
from services.errors import WriteError, WriteQueueFullError


class RecordingWriter:
    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def write_points(
        self,
        database: str,
        retention_policy: str,
        consistency_level: Optional[ConsistencyLevel],
        points: Sequence[Point],
    ) -> None:
        with self._lock:
            self.calls.append((database, retention_policy, consistency_level, tuple(points)))


class FailingWriter:
    def write_points(self, database, retention_policy, consistency_level, points) -> None:
        raise WriteError(500, "boom")


class BlockingWriter:
    def __init__(self) -> None:
        self.release = threading.Event()
        self.started = threading.Event()

    def write_points(self, database, retention_policy, consistency_level, points) -> None:
        self.started.set()
        self.release.wait(timeout=5)


def _point(value: int) -> Point:
    return Point(measurement="m", fields={"v": value}, timestamp=value)


@pytest.fixture()
def recording() -> RecordingWriter:
    return RecordingWriter()


def test_write_is_forwarded_in_background(recording: RecordingWriter) -> None:
    dispatcher = WriteDispatcher(recording, workers=2, queue_size=10)
    points = [_point(1), _point(2), _point(3)]
    try:
        dispatcher.write_points("db", "rp", ConsistencyLevel.all, points)
        assert dispatcher.drain(timeout=5)
    finally:
        dispatcher.shutdown(wait=True)

    assert recording.calls == [("db", "rp", ConsistencyLevel.all, tuple(points))]
    stats = dispatcher.stats
    assert stats.submitted == 1
    assert stats.succeeded == 1
    assert stats.points_written == 3
    assert stats.failed == 0


def test_failures_are_counted_and_reported() -> None:
    reported: List[tuple[WriteRequest, BaseException]] = []
    dispatcher = WriteDispatcher(
        FailingWriter(),
        workers=1,
        queue_size=10,
        on_error=lambda request, exc: reported.append((request, exc)),
    )
    try:
        dispatcher.write_points("db", "", None, [_point(1)])
        assert dispatcher.drain(timeout=5)
    finally:
        dispatcher.shutdown(wait=True)

    assert dispatcher.stats.failed == 1
    assert dispatcher.stats.succeeded == 0
    [(request, exc)] = reported
    assert request.database == "db"
    assert isinstance(exc, WriteError)
    assert exc.body == "boom"


def test_full_queue_rejects_without_blocking() -> None:
    writer = BlockingWriter()
    dispatcher = WriteDispatcher(writer, workers=1, queue_size=1)
    try:
        dispatcher.write_points("db", "", None, [_point(1)])
        assert writer.started.wait(timeout=5)

        with pytest.raises(WriteQueueFullError):
            dispatcher.write_points("db", "", None, [_point(2)])
        assert dispatcher.stats.rejected == 1

        writer.release.set()
        assert dispatcher.drain(timeout=5)
        dispatcher.write_points("db", "", None, [_point(3)])
        assert dispatcher.drain(timeout=5)
    finally:
        writer.release.set()
        dispatcher.shutdown(wait=True)

    assert dispatcher.stats.submitted == 2
    assert dispatcher.stats.succeeded == 2


def test_closed_dispatcher_rejects_writes(recording: RecordingWriter) -> None:
    dispatcher = WriteDispatcher(recording, workers=1, queue_size=1)
    dispatcher.shutdown(wait=True)

    with pytest.raises(WriteQueueFullError):
        dispatcher.write_points("db", "", None, [_point(1)])
    assert recording.calls == []
