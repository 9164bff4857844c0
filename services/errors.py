"""Exception hierarchy for the gateway."""

from __future__ import annotations

from typing import Sequence


class GatewayError(Exception):
    """Base class for every error raised by the gateway."""


class ConfigError(GatewayError, ValueError):
    """The configuration file is unreadable or invalid."""


class SenderConfigError(ConfigError):
    """The sender cannot be built from its configuration."""


class EncodingError(GatewayError):
    """A batch of points could not be serialized or compressed."""


class LineProtocolError(GatewayError, ValueError):
    """Incoming line protocol text could not be parsed."""

    def __init__(self, message: str, line_number: int | None = None) -> None:
        self.line_number = line_number
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)


class SenderTransportError(GatewayError):
    """The write request never produced an HTTP response."""


class WriteError(GatewayError):
    """The destination answered a write with a non-success status."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"write failed with status {status_code}: {body}")


class WriteQueueFullError(GatewayError):
    """The write dispatcher has no room for another batch."""


class ListenerError(GatewayError):
    """A listener failed to start or stop."""


class GatewayStateError(GatewayError):
    """A lifecycle method was called in the wrong state."""


class GatewayCloseError(GatewayError):
    """One or more listeners failed to stop."""

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors = list(errors)
        detail = "; ".join(str(error) for error in self.errors)
        super().__init__(f"{len(self.errors)} listener(s) failed to close: {detail}")
