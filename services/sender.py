"""HTTP writer that forwards point batches to the time-series database."""

from __future__ import annotations

import logging
import time
from typing import Optional, Sequence

import httpx

from app.config import SenderConfig
from models.points import ConsistencyLevel, Point, Precision
from services.encoder import encode_points
from services.errors import SenderConfigError, SenderTransportError, WriteError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "InfluxDB-Gateway"
DEFAULT_TIMEOUT = 1
DEFAULT_PRECISION = Precision.ns
DEFAULT_CONSISTENCY = ConsistencyLevel.one

_SUCCESS_STATUSES = {httpx.codes.OK, httpx.codes.NO_CONTENT}


def _parse_base_url(addr: str) -> httpx.URL:
    try:
        url = httpx.URL(addr)
    except (httpx.InvalidURL, TypeError) as exc:
        raise SenderConfigError(f"invalid address {addr!r}: {exc}") from exc
    if url.scheme not in {"http", "https"}:
        raise SenderConfigError(
            f"Unsupported protocol scheme: {url.scheme!r}, your address "
            "must start with http:// or https://"
        )
    if not url.host:
        raise SenderConfigError(f"address {addr!r} has no host")
    return url


class Sender:
    """Encodes points and POSTs them to ``<addr>/write``.

    Every call blocks until the HTTP exchange finishes and raises on
    failure. The underlying ``httpx.Client`` is safe to share between
    threads, and nothing on the sender changes after construction.
    """

    def __init__(
        self,
        config: SenderConfig,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = _parse_base_url(config.addr)
        self.username = config.username
        self.user_agent = config.user_agent or DEFAULT_USER_AGENT
        self.timeout = config.timeout or DEFAULT_TIMEOUT
        self.gzip = config.gzip
        self.verify_tls = not config.insecure_skip_verify
        self.precision = config.precision or DEFAULT_PRECISION
        self.consistency = config.consistency or DEFAULT_CONSISTENCY

        auth = (config.username, config.password) if config.username else None
        self._client = httpx.Client(
            base_url=self.base_url,
            auth=auth,
            headers={"User-Agent": self.user_agent},
            timeout=float(self.timeout),
            verify=self.verify_tls,
            transport=transport,
        )

    def __enter__(self) -> "Sender":
        return self

    def __exit__(self, *_exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def write_points(
        self,
        database: str,
        retention_policy: str,
        consistency_level: Optional[ConsistencyLevel],
        points: Sequence[Point],
    ) -> None:
        """Send one batch. ``consistency_level=None`` uses the configured level."""
        body = encode_points(points, self.precision, compress=self.gzip)
        consistency = consistency_level or self.consistency
        params = {
            "db": database,
            "rp": retention_policy,
            "precision": self.precision.value,
            "consistency": consistency.value,
        }
        headers = {"Content-Encoding": "gzip"} if self.gzip else None

        started = time.perf_counter()
        try:
            response = self._client.post("/write", params=params, content=body, headers=headers)
        except httpx.TransportError as exc:
            raise SenderTransportError(
                f"write to {self.base_url} failed: {exc}"
            ) from exc
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        if response.status_code not in _SUCCESS_STATUSES:
            raise WriteError(response.status_code, response.text)

        logger.debug(
            "Points written",
            extra={
                "database": database,
                "retention_policy": retention_policy,
                "points": len(points),
                "status_code": response.status_code,
                "elapsed_ms": elapsed_ms,
            },
        )
