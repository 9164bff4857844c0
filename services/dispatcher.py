"""Bounded background dispatch of write batches."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from threading import BoundedSemaphore, Lock
from typing import Callable, Optional, Sequence, Set

from listeners.base import PointsWriter
from models.points import ConsistencyLevel, Point, WriteRequest
from services.errors import WriteQueueFullError

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[WriteRequest, BaseException], None]


@dataclass
class DispatchStats:
    """Counters describing what happened to submitted batches."""

    submitted: int = 0
    succeeded: int = 0
    failed: int = 0
    rejected: int = 0
    points_written: int = 0


class WriteDispatcher:
    """Runs writes on a worker pool so listeners never wait on the network.

    At most ``queue_size`` batches may be queued or in flight. Beyond that,
    ``write_points`` raises ``WriteQueueFullError`` instead of queueing more.
    A failed write is logged, counted and handed to ``on_error``; it is not
    retried.
    """

    def __init__(
        self,
        writer: PointsWriter,
        workers: int = 4,
        queue_size: int = 1000,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self.writer = writer
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="writer")
        self.queue_size = queue_size
        self.on_error = on_error
        self._slots = BoundedSemaphore(queue_size)
        self._stats = DispatchStats()
        self._stats_lock = Lock()
        self._pending: Set[Future[None]] = set()
        self._closed = False

    @property
    def stats(self) -> DispatchStats:
        with self._stats_lock:
            return DispatchStats(**vars(self._stats))

    def write_points(
        self,
        database: str,
        retention_policy: str,
        consistency_level: Optional[ConsistencyLevel],
        points: Sequence[Point],
    ) -> None:
        """Queue a batch and return without waiting for the send."""
        if self._closed:
            raise WriteQueueFullError("write dispatcher is closed")
        if not self._slots.acquire(blocking=False):
            with self._stats_lock:
                self._stats.rejected += 1
            logger.warning(
                "Write queue full, batch rejected",
                extra={"database": database, "points": len(points)},
            )
            raise WriteQueueFullError(
                f"{self.queue_size} writes already pending, batch of {len(points)} rejected"
            )

        request = WriteRequest(
            database=database,
            retention_policy=retention_policy,
            consistency=consistency_level,
            points=tuple(points),
        )
        try:
            future = self.executor.submit(self._send, request)
        except RuntimeError as exc:
            self._slots.release()
            raise WriteQueueFullError("write dispatcher is closed") from exc
        with self._stats_lock:
            self._stats.submitted += 1
            self._pending.add(future)
        future.add_done_callback(self._finished)

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for batches pending right now; False if some are still running."""
        with self._stats_lock:
            pending = set(self._pending)
        _done, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = False) -> None:
        """Stop accepting batches. Queued batches are still sent."""
        self._closed = True
        self.executor.shutdown(wait=wait)

    def _finished(self, future: Future[None]) -> None:
        with self._stats_lock:
            self._pending.discard(future)

    def _send(self, request: WriteRequest) -> None:
        # Free the slot before the future completes.
        try:
            self._deliver(request)
        finally:
            self._slots.release()

    def _deliver(self, request: WriteRequest) -> None:
        try:
            self.writer.write_points(
                request.database,
                request.retention_policy,
                request.consistency,
                request.points,
            )
        except Exception as exc:
            with self._stats_lock:
                self._stats.failed += 1
            logger.error(
                "Write failed: %s",
                exc,
                extra={
                    "database": request.database,
                    "retention_policy": request.retention_policy,
                    "points": len(request.points),
                    "status_code": getattr(exc, "status_code", None),
                },
            )
            if self.on_error is not None:
                try:
                    self.on_error(request, exc)
                except Exception:
                    logger.exception("Write error callback raised")
            return
        with self._stats_lock:
            self._stats.succeeded += 1
            self._stats.points_written += len(request.points)
