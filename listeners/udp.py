"""UDP listener: line protocol datagrams, batched by size and age."""

from __future__ import annotations

import logging
import socket
import threading
import time
from dataclasses import dataclass
from typing import List, Optional

from app.config import UDPListenerConfig
from listeners.base import MetaClient, PointsWriter, split_host_port
from models.points import Point, Precision
from services.errors import GatewayError, LineProtocolError, ListenerError
from services.line_protocol import parse_points

logger = logging.getLogger(__name__)

MAX_DATAGRAM_SIZE = 64 * 1024
_POLL_INTERVAL = 0.25


@dataclass
class UDPStats:
    datagrams: int = 0
    points_received: int = 0
    parse_errors: int = 0
    batches_written: int = 0
    points_dropped: int = 0


class UDPListener:
    """Receives datagrams on one socket and forwards parsed points in batches.

    A batch is handed to the writer once it holds ``batch_size`` points or
    its oldest point has waited ``batch_timeout`` seconds.
    """

    def __init__(
        self,
        config: UDPListenerConfig,
        writer: PointsWriter,
        meta_client: MetaClient,
        name: Optional[str] = None,
    ) -> None:
        self.config = config
        self.writer = writer
        self.meta_client = meta_client
        self.name = name or f"udp:{config.bind_address}"
        self.precision = config.precision or Precision.ns
        self.stats = UDPStats()
        self._stats_lock = threading.Lock()
        self._socket: Optional[socket.socket] = None
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self._batch: List[Point] = []
        self._batch_started: Optional[float] = None
        self._batch_lock = threading.Lock()

    @property
    def address(self) -> tuple[str, int]:
        if self._socket is None:
            raise ListenerError(f"{self.name} is not open")
        host, port = self._socket.getsockname()[:2]
        return host, port

    def open(self) -> None:
        if self._socket is not None:
            raise ListenerError(f"{self.name} is already open")
        try:
            host, port = split_host_port(self.config.bind_address)
        except ValueError as exc:
            raise ListenerError(f"{self.name}: {exc}") from exc

        self.meta_client.create_database(self.config.database)

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            if self.config.read_buffer:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, self.config.read_buffer)
            sock.bind((host or "0.0.0.0", port))
        except OSError as exc:
            sock.close()
            raise ListenerError(f"{self.name}: cannot bind {self.config.bind_address}: {exc}") from exc
        sock.settimeout(_POLL_INTERVAL)
        self._socket = sock
        self._stop.clear()

        self._threads = [
            threading.Thread(target=self._receive_loop, name=f"{self.name}-recv", daemon=True),
            threading.Thread(target=self._flush_loop, name=f"{self.name}-flush", daemon=True),
        ]
        for thread in self._threads:
            thread.start()
        logger.info(
            "UDP listener started",
            extra={"listener": self.name, "address": "%s:%d" % self.address},
        )

    def close(self) -> None:
        if self._socket is None:
            return
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=_POLL_INTERVAL * 8)
        self._threads = []
        self._socket.close()
        self._socket = None
        self.flush()
        logger.info("UDP listener stopped", extra={"listener": self.name})

    def handle_datagram(self, data: bytes) -> None:
        """Parse one datagram and add its points to the current batch."""
        self._count(datagrams=1)
        try:
            points = parse_points(data.decode("utf-8"), self.precision)
        except (UnicodeDecodeError, LineProtocolError) as exc:
            self._count(parse_errors=1)
            logger.warning(
                "Dropping malformed datagram",
                extra={"listener": self.name, "reason": str(exc)},
            )
            return
        if not points:
            return

        self._count(points_received=len(points))
        with self._batch_lock:
            if not self._batch:
                self._batch_started = time.monotonic()
            self._batch.extend(points)
            full = len(self._batch) >= self.config.batch_size
        if full:
            self.flush()

    def flush(self) -> None:
        """Hand everything buffered so far to the writer."""
        with self._batch_lock:
            batch, self._batch = self._batch, []
            self._batch_started = None

        size = self.config.batch_size
        for start in range(0, len(batch), size):
            chunk = batch[start : start + size]
            try:
                self.writer.write_points(
                    self.config.database,
                    self.config.retention_policy,
                    None,
                    chunk,
                )
            except GatewayError as exc:
                self._count(points_dropped=len(chunk))
                logger.error(
                    "Failed to forward batch: %s",
                    exc,
                    extra={
                        "listener": self.name,
                        "database": self.config.database,
                        "points": len(chunk),
                    },
                )
                continue
            self._count(batches_written=1)

    def _count(self, **deltas: int) -> None:
        with self._stats_lock:
            for name, delta in deltas.items():
                setattr(self.stats, name, getattr(self.stats, name) + delta)

    def _batch_due(self) -> bool:
        with self._batch_lock:
            if self._batch_started is None:
                return False
            return time.monotonic() - self._batch_started >= self.config.batch_timeout

    def _receive_loop(self) -> None:
        sock = self._socket
        assert sock is not None
        while not self._stop.is_set():
            try:
                data, _peer = sock.recvfrom(MAX_DATAGRAM_SIZE)
            except socket.timeout:
                continue
            except OSError as exc:
                if self._stop.is_set():
                    break
                logger.error(
                    "UDP receive failed",
                    extra={"listener": self.name, "reason": str(exc)},
                )
                continue
            self.handle_datagram(data)

    def _flush_loop(self) -> None:
        interval = max(min(self.config.batch_timeout / 2, _POLL_INTERVAL), 0.01)
        while not self._stop.wait(interval):
            if self._batch_due():
                self.flush()
