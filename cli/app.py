from __future__ import annotations

import logging
import signal
import threading
from pathlib import Path
from typing import Optional

import typer

from app.config import GatewayConfig, load_config
from cli.render import render_sender, render_stats
from logging_config import configure_logging
from models.points import ConsistencyLevel, Precision
from services.errors import ConfigError, GatewayCloseError, GatewayError
from services.gateway import Gateway
from services.line_protocol import parse_points
from services.sender import Sender
from settings import get_settings

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Relay line protocol points from local listeners to an InfluxDB write endpoint.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _config_path(path: Optional[Path]) -> Path:
    return path if path is not None else Path(get_settings().config_path)


def _load(path: Optional[Path]) -> GatewayConfig:
    try:
        return load_config(_config_path(path))
    except ConfigError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


def wait_for_shutdown() -> int:
    """Block until SIGINT or SIGTERM arrives and return the signal number."""
    received = threading.Event()
    caught: list[int] = []

    def _handler(signum: int, _frame: object) -> None:
        caught.append(signum)
        received.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, _handler)
    while not received.wait(0.5):
        pass
    return caught[0]


@app.command("run")
def run_command(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Config file path (defaults to GATEWAY_CONFIG_PATH or /etc/influxdb-gateway.toml).",
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL."),
    log_file: Optional[Path] = typer.Option(
        None, "--log-file", help="Also write logs to this file, rotated by size."
    ),
) -> None:
    """Start every enabled listener and relay points until interrupted."""
    configure_logging(
        level=log_level.upper() if log_level else None,
        log_file=str(log_file) if log_file else None,
    )
    config = _load(config_path)
    try:
        gateway = Gateway.from_config(config)
    except ConfigError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    try:
        gateway.open()
    except GatewayError as exc:
        typer.secho(f"Failed to start: {exc}", fg=typer.colors.RED, err=True)
        gateway.close()
        gateway.sender.close()
        raise typer.Exit(code=1)

    logger.info("Listening for signals")
    signum = wait_for_shutdown()
    logger.info("Signal %d received, shutting down", signum)

    exit_code = 0
    try:
        gateway.close()
    except GatewayCloseError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        exit_code = 1
    finally:
        if gateway.dispatcher is not None:
            gateway.dispatcher.drain(timeout=float(gateway.sender.timeout))
        gateway.sender.close()

    if gateway.stats is not None:
        render_stats(gateway.stats)
    if exit_code:
        raise typer.Exit(code=exit_code)


@app.command("check-config")
def check_config_command(
    config_path: Optional[Path] = typer.Argument(
        None, help="Config file to validate (defaults to GATEWAY_CONFIG_PATH)."
    ),
) -> None:
    """Validate a config file and print the resolved sender settings."""
    config = _load(config_path)
    try:
        sender = Sender(config.sender)
    except ConfigError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    with sender:
        render_sender(sender, config)
    typer.secho("Configuration OK", fg=typer.colors.GREEN)


@app.command("write")
def write_command(
    file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, readable=True, help="Line protocol file to send."
    ),
    database: str = typer.Option(..., "--db", "-d", help="Target database."),
    retention_policy: str = typer.Option("", "--rp", help="Target retention policy."),
    precision: Precision = typer.Option(
        Precision.ns, "--precision", help="Timestamp unit used in the file."
    ),
    consistency: Optional[ConsistencyLevel] = typer.Option(
        None, "--consistency", help="Override the configured consistency level."
    ),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Send one file of line protocol through the configured sender and wait for the result."""
    config = _load(config_path)
    try:
        points = parse_points(file.read_text(encoding="utf-8"), precision)
    except GatewayError as exc:
        typer.secho(f"Cannot parse {file}: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    try:
        with Sender(config.sender) as sender:
            sender.write_points(database, retention_policy, consistency, points)
    except GatewayError as exc:
        typer.secho(f"Write failed: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.secho(f"Wrote {len(points)} point(s) to {database}", fg=typer.colors.GREEN)
