from __future__ import annotations

import base64
import gzip
from typing import Callable, List

import httpx
import pytest

from app.config import SenderConfig
from models.points import ConsistencyLevel, Point, Precision
from services.encoder import encode_points
from services.errors import SenderConfigError, SenderTransportError, WriteError
from services.sender import Sender

Handler = Callable[[httpx.Request], httpx.Response]


class RecordingHandler:
    def __init__(self, status_code: int = 204, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, text=self.body)


def _sender(handler: Handler, addr: str = "http://influx.local:8086", **overrides) -> Sender:
    config = SenderConfig(addr=addr, **overrides)
    return Sender(config, transport=httpx.MockTransport(handler))


def _points() -> list[Point]:
    return [
        Point(measurement="cpu", tags={"host": "a"}, fields={"value": 0.5}, timestamp=1_000_000_000),
        Point(measurement="cpu", tags={"host": "b"}, fields={"value": 0.7}, timestamp=2_000_000_000),
    ]


def test_empty_config_applies_defaults() -> None:
    with Sender(SenderConfig(addr="http://localhost:8086")) as sender:
        assert sender.user_agent == "InfluxDB-Gateway"
        assert sender.timeout == 1
        assert sender.precision is Precision.ns
        assert sender.consistency is ConsistencyLevel.one
        assert sender.gzip is False
        assert sender.verify_tls is True


@pytest.mark.parametrize(
    "addr",
    ["ftp://influx.local", "udp://influx.local:8089", "localhost:8086", "not a url", ""],
)
def test_rejects_unsupported_addresses(addr: str) -> None:
    with pytest.raises(SenderConfigError):
        Sender(SenderConfig(addr=addr))


@pytest.mark.parametrize(
    "addr",
    ["http://influx.local:8086", "https://influx.example.com", "https://10.0.0.5:8443/proxy"],
)
def test_accepts_http_and_https_addresses(addr: str) -> None:
    with Sender(SenderConfig(addr=addr)) as sender:
        assert sender.base_url.scheme in {"http", "https"}


def test_write_success_sends_expected_request() -> None:
    handler = RecordingHandler(status_code=204)
    points = _points()

    with _sender(handler) as sender:
        sender.write_points("metrics", "autogen", None, points)

    [request] = handler.requests
    assert request.method == "POST"
    assert request.url.path == "/write"
    assert dict(request.url.params) == {
        "db": "metrics",
        "rp": "autogen",
        "precision": "ns",
        "consistency": "one",
    }
    assert request.headers["user-agent"] == "InfluxDB-Gateway"
    assert "content-encoding" not in request.headers
    assert "authorization" not in request.headers
    assert request.content == encode_points(points)


def test_write_accepts_200() -> None:
    handler = RecordingHandler(status_code=200)

    with _sender(handler) as sender:
        sender.write_points("metrics", "", None, _points())

    assert len(handler.requests) == 1


def test_write_failure_carries_response_body() -> None:
    handler = RecordingHandler(status_code=500, body="boom")

    with _sender(handler) as sender:
        with pytest.raises(WriteError) as excinfo:
            sender.write_points("metrics", "", None, _points())

    assert excinfo.value.status_code == 500
    assert excinfo.value.body == "boom"
    assert "boom" in str(excinfo.value)


def test_gzip_auth_and_configured_settings() -> None:
    handler = RecordingHandler()
    points = _points()

    with _sender(
        handler,
        username="admin",
        password="secret",
        user_agent="relay/1.0",
        gzip=True,
        precision="s",
        consistency="all",
    ) as sender:
        sender.write_points("metrics", "", None, points)

    [request] = handler.requests
    expected_auth = base64.b64encode(b"admin:secret").decode("ascii")
    assert request.headers["authorization"] == f"Basic {expected_auth}"
    assert request.headers["content-encoding"] == "gzip"
    assert request.headers["user-agent"] == "relay/1.0"
    assert request.url.params["precision"] == "s"
    assert request.url.params["consistency"] == "all"
    assert gzip.decompress(request.content) == encode_points(points, Precision.s)


def test_explicit_consistency_overrides_default_and_empty_batch_is_sent() -> None:
    handler = RecordingHandler()

    with _sender(handler) as sender:
        sender.write_points("", "", ConsistencyLevel.quorum, [])

    [request] = handler.requests
    assert request.url.params["db"] == ""
    assert request.url.params["consistency"] == "quorum"
    assert request.content == b""


def test_base_path_is_kept_and_never_mutated() -> None:
    handler = RecordingHandler()

    with _sender(handler, addr="http://influx.local:8086/proxy") as sender:
        sender.write_points("a", "", None, _points())
        sender.write_points("b", "", None, _points())
        assert str(sender.base_url) == "http://influx.local:8086/proxy"

    assert [request.url.path for request in handler.requests] == ["/proxy/write", "/proxy/write"]
    assert [request.url.params["db"] for request in handler.requests] == ["a", "b"]


@pytest.mark.parametrize(
    "error",
    [httpx.ConnectError("connection refused"), httpx.ReadTimeout("timed out")],
)
def test_transport_failures_are_reported(error: httpx.TransportError) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise error

    with _sender(handler) as sender:
        with pytest.raises(SenderTransportError):
            sender.write_points("metrics", "", None, _points())
