from __future__ import annotations

import socket
import threading
from typing import List

import pytest

from app.config import UDPListenerConfig
from listeners.udp import UDPListener
from services.errors import ListenerError, WriteQueueFullError


class RecordingWriter:
    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.received = threading.Event()

    def write_points(self, database, retention_policy, consistency_level, points) -> None:
        self.calls.append((database, retention_policy, consistency_level, list(points)))
        self.received.set()


class RejectingWriter:
    def write_points(self, database, retention_policy, consistency_level, points) -> None:
        raise WriteQueueFullError("queue full")


class RecordingMetaClient:
    def __init__(self) -> None:
        self.created: List[str] = []

    def create_database(self, name: str):
        self.created.append(name)
        return None


def _listener(writer, **overrides) -> UDPListener:
    config = UDPListenerConfig(enabled=True, bind_address="127.0.0.1:0", **overrides)
    return UDPListener(config, writer, RecordingMetaClient())


def test_full_batches_are_flushed_in_chunks() -> None:
    writer = RecordingWriter()
    listener = _listener(writer, batch_size=2, database="metrics", retention_policy="short")

    listener.handle_datagram(b"cpu value=1 1\ncpu value=2 2\ncpu value=3 3\n")

    assert [len(call[3]) for call in writer.calls] == [2, 1]
    database, retention_policy, consistency, points = writer.calls[0]
    assert (database, retention_policy, consistency) == ("metrics", "short", None)
    assert [point.timestamp for point in points] == [1, 2]
    assert listener.stats.batches_written == 2


def test_partial_batch_waits_for_flush() -> None:
    writer = RecordingWriter()
    listener = _listener(writer, batch_size=10, precision="ms")

    listener.handle_datagram(b"cpu value=1 5")
    assert writer.calls == []

    listener.flush()

    [(_db, _rp, _cl, points)] = writer.calls
    assert points[0].timestamp == 5_000_000


def test_malformed_datagram_is_dropped() -> None:
    writer = RecordingWriter()
    listener = _listener(writer, batch_size=1)

    listener.handle_datagram(b"cpu")
    listener.handle_datagram(b"\xff\xfe")

    assert writer.calls == []
    assert listener.stats.parse_errors == 2


def test_writer_failure_drops_batch() -> None:
    listener = _listener(RejectingWriter(), batch_size=1)

    listener.handle_datagram(b"cpu value=1 1")

    assert listener.stats.points_dropped == 1
    assert listener.stats.batches_written == 0


def test_counters_are_exact_under_concurrent_flushes() -> None:
    listener = _listener(RejectingWriter(), batch_size=1)
    barrier = threading.Barrier(8)

    def feed() -> None:
        barrier.wait()
        for _ in range(250):
            listener.handle_datagram(b"cpu value=1 1")

    threads = [threading.Thread(target=feed) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert listener.stats.datagrams == 2000
    assert listener.stats.points_received == 2000
    assert listener.stats.points_dropped == 2000
    assert listener.stats.batches_written == 0


def test_socket_round_trip() -> None:
    writer = RecordingWriter()
    meta_client = RecordingMetaClient()
    config = UDPListenerConfig(
        enabled=True, bind_address="127.0.0.1:0", database="udp", batch_timeout=0.05
    )
    listener = UDPListener(config, writer, meta_client)

    listener.open()
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as client:
            client.sendto(b"mem,host=b used=42i 7", listener.address)
        assert writer.received.wait(timeout=5)
    finally:
        listener.close()

    assert meta_client.created == ["udp"]
    [(database, _rp, _cl, points)] = writer.calls
    assert database == "udp"
    assert points[0].fields["used"] == 42
    assert dict(points[0].tags) == {"host": "b"}


def test_open_rejects_bad_address() -> None:
    config = UDPListenerConfig(enabled=True, bind_address="no-port-here")
    listener = UDPListener(config, RecordingWriter(), RecordingMetaClient())

    with pytest.raises(ListenerError):
        listener.open()


def test_close_without_open_is_harmless() -> None:
    listener = _listener(RecordingWriter())

    listener.close()
