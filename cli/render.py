from __future__ import annotations

from typing import Any, Iterable

import typer

from app.config import GatewayConfig
from services.dispatcher import DispatchStats
from services.sender import Sender


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_sender(sender: Sender, config: GatewayConfig) -> None:
    echo_heading("Sender")
    echo_key_values(
        [
            ("addr", sender.base_url),
            ("username", sender.username or "-"),
            ("user-agent", sender.user_agent),
            ("timeout", f"{sender.timeout}s"),
            ("gzip", sender.gzip),
            ("verify-tls", sender.verify_tls),
            ("precision", sender.precision.value),
            ("consistency", sender.consistency.value),
        ]
    )

    typer.echo()
    echo_heading("Listeners")
    listeners = [("udp", item) for item in config.sender.udp] + [
        ("http", item) for item in config.sender.http
    ]
    if not listeners:
        typer.echo("No listeners configured.")
        return
    for kind, item in listeners:
        state = "enabled" if item.enabled else "disabled"
        database = item.database or "-"
        typer.echo(f"  - {kind} {item.bind_address} db={database} ({state})")


def render_stats(stats: DispatchStats) -> None:
    echo_heading("Writes")
    echo_key_values(
        [
            ("submitted", stats.submitted),
            ("succeeded", stats.succeeded),
            ("failed", stats.failed),
            ("rejected", stats.rejected),
            ("points_written", stats.points_written),
        ]
    )
