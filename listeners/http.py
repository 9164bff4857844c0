"""HTTP listener: serves the line protocol app with uvicorn on a thread."""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

import uvicorn

from app.config import HTTPListenerConfig
from app.main import create_app
from listeners.base import MetaClient, PointsWriter, split_host_port
from services.errors import ListenerError

logger = logging.getLogger(__name__)

STARTUP_TIMEOUT = 5.0
SHUTDOWN_TIMEOUT = 5.0


class HTTPListener:
    def __init__(
        self,
        config: HTTPListenerConfig,
        writer: PointsWriter,
        meta_client: MetaClient,
        name: Optional[str] = None,
    ) -> None:
        self.config = config
        self.writer = writer
        self.meta_client = meta_client
        self.name = name or f"http:{config.bind_address}"
        self.app = create_app(writer, config, name=self.name)
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> tuple[str, int]:
        if self._server is None or not self._server.started:
            raise ListenerError(f"{self.name} is not open")
        sock = self._server.servers[0].sockets[0]
        host, port = sock.getsockname()[:2]
        return host, port

    def open(self) -> None:
        if self._server is not None:
            raise ListenerError(f"{self.name} is already open")
        try:
            host, port = split_host_port(self.config.bind_address)
        except ValueError as exc:
            raise ListenerError(f"{self.name}: {exc}") from exc

        if self.config.database:
            self.meta_client.create_database(self.config.database)

        server = uvicorn.Server(
            uvicorn.Config(
                self.app,
                host=host or "0.0.0.0",
                port=port,
                lifespan="off",
                log_config=None,
                access_log=False,
            )
        )
        thread = threading.Thread(target=server.run, name=f"{self.name}-server", daemon=True)
        thread.start()

        deadline = time.monotonic() + STARTUP_TIMEOUT
        while not server.started:
            # uvicorn exits the serving thread when it cannot bind.
            if not thread.is_alive() or time.monotonic() > deadline:
                server.should_exit = True
                thread.join(timeout=SHUTDOWN_TIMEOUT)
                raise ListenerError(f"{self.name}: failed to serve on {self.config.bind_address}")
            time.sleep(0.05)

        self._server = server
        self._thread = thread
        logger.info(
            "HTTP listener started",
            extra={"listener": self.name, "address": "%s:%d" % self.address},
        )

    def close(self) -> None:
        if self._server is None:
            return
        self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=SHUTDOWN_TIMEOUT)
            if self._thread.is_alive():
                raise ListenerError(f"{self.name}: server did not stop in {SHUTDOWN_TIMEOUT}s")
        self._server = None
        self._thread = None
        logger.info("HTTP listener stopped", extra={"listener": self.name})
