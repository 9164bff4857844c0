"""Lifecycle of the sender and the listeners feeding it."""

from __future__ import annotations

import logging
from enum import Enum
from threading import Lock
from typing import Callable, Dict, List, Optional, Sequence

import httpx

from app.config import GatewayConfig, HTTPListenerConfig, UDPListenerConfig
from listeners.base import Listener, MetaClient, NoopMetaClient, PointsWriter
from listeners.http import HTTPListener
from listeners.udp import UDPListener
from services.dispatcher import DispatchStats, WriteDispatcher
from services.errors import GatewayCloseError, GatewayStateError
from services.sender import Sender
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

ListenerFactory = Callable[..., Listener]

LISTENER_FACTORIES: Dict[type, ListenerFactory] = {
    UDPListenerConfig: UDPListener,
    HTTPListenerConfig: HTTPListener,
}


class GatewayState(str, Enum):
    constructed = "constructed"
    opened = "opened"
    closed = "closed"


class Gateway:
    """Owns one sender and an ordered list of listeners writing into it.

    ``open`` starts the listeners in order and stops at the first failure,
    without stopping those already started. ``close`` stops every listener
    even when some fail; failures end up in ``close_errors`` and are only
    raised when ``strict_close`` is set.
    """

    def __init__(
        self,
        sender: Sender,
        dispatcher: Optional[WriteDispatcher] = None,
        meta_client: Optional[MetaClient] = None,
        strict_close: bool = False,
    ) -> None:
        self.sender = sender
        self.dispatcher = dispatcher
        self.meta_client: MetaClient = meta_client or NoopMetaClient()
        self.strict_close = strict_close
        self.listeners: List[Listener] = []
        self.close_errors: List[BaseException] = []
        self.state = GatewayState.constructed
        self._state_lock = Lock()

    @classmethod
    def from_config(
        cls,
        config: GatewayConfig,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> "Gateway":
        """Build the sender, the dispatcher and every enabled listener.

        A sender configuration error propagates and no gateway is returned.
        """
        settings = settings or get_settings()
        sender = Sender(config.sender, transport=transport)
        dispatcher = WriteDispatcher(
            sender,
            workers=settings.writer_workers,
            queue_size=settings.writer_queue_size,
        )
        gateway = cls(sender, dispatcher=dispatcher, strict_close=settings.strict_close)
        listener_configs: Sequence[UDPListenerConfig | HTTPListenerConfig] = [
            *config.sender.udp,
            *config.sender.http,
        ]
        for listener_config in listener_configs:
            if listener_config.enabled:
                gateway.add_listener_from_config(listener_config)
        logger.info(
            "Gateway configured with %d listener(s)",
            len(gateway.listeners),
            extra={"address": str(sender.base_url)},
        )
        return gateway

    @property
    def points_writer(self) -> PointsWriter:
        """The writer handed to listeners."""
        return self.dispatcher if self.dispatcher is not None else self.sender

    @property
    def stats(self) -> Optional[DispatchStats]:
        return self.dispatcher.stats if self.dispatcher is not None else None

    def add_listener_from_config(
        self, listener_config: UDPListenerConfig | HTTPListenerConfig
    ) -> Listener:
        factory = LISTENER_FACTORIES[type(listener_config)]
        listener = factory(listener_config, self.points_writer, self.meta_client)
        self.append_listener(listener)
        return listener

    def append_listener(self, listener: Listener) -> None:
        with self._state_lock:
            if self.state is not GatewayState.constructed:
                raise GatewayStateError(f"cannot add a listener to a {self.state.value} gateway")
            self.listeners.append(listener)

    def open(self) -> None:
        """Start listeners in order; the first failure is raised as is."""
        with self._state_lock:
            if self.state is not GatewayState.constructed:
                raise GatewayStateError(f"cannot open a {self.state.value} gateway")
            self.state = GatewayState.opened

        for listener in self.listeners:
            try:
                listener.open()
            except Exception as exc:
                logger.error(
                    "Listener failed to open",
                    extra={"listener": _name_of(listener), "reason": str(exc)},
                )
                raise
        logger.info("Gateway opened with %d listener(s)", len(self.listeners))

    def close(self) -> None:
        """Stop every listener, then stop accepting writes.

        Calling it twice, or before ``open``, does nothing. Writes already
        queued or in flight are not waited for.
        """
        with self._state_lock:
            previous = self.state
            self.state = GatewayState.closed
        if previous is not GatewayState.opened:
            return

        errors: List[BaseException] = []
        for listener in self.listeners:
            try:
                listener.close()
            except Exception as exc:
                errors.append(exc)
                logger.error(
                    "Listener failed to close",
                    extra={"listener": _name_of(listener), "reason": str(exc)},
                )
        self.close_errors = errors

        if self.dispatcher is not None:
            self.dispatcher.shutdown(wait=False)
            stats = self.dispatcher.stats
            logger.info(
                "Gateway closed",
                extra={
                    "points": stats.points_written,
                    "error_count": stats.failed + stats.rejected,
                },
            )

        if errors and self.strict_close:
            raise GatewayCloseError(errors)


def _name_of(listener: Listener) -> str:
    return getattr(listener, "name", type(listener).__name__)
