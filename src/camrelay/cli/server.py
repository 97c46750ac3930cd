"""CLI command: camrelay server — start the relay."""

from __future__ import annotations

from pathlib import Path

import click
import uvicorn
from rich.console import Console

from camrelay.config import RelayConfig

console = Console(stderr=True)


@click.command()
@click.option("--host", default=None, help="Interface to bind (default: 0.0.0.0).")
@click.option(
    "--port",
    type=int,
    default=None,
    help="Port to listen on (default: 8080).",
)
@click.option(
    "--profiles",
    "profiles_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML file overriding the capture profiles.",
)
@click.option("--trace", is_flag=True, help="Log every process, relay and request event.")
@click.pass_context
def server(
    ctx: click.Context,
    host: str | None,
    port: int | None,
    profiles_path: Path | None,
    trace: bool,
) -> None:
    """Start the camera relay HTTP service."""
    config = RelayConfig.load()
    config.verbose = ctx.obj.get("verbose", False)
    if host is not None:
        config.host = host
    if port is not None:
        config.port = port
    if profiles_path is not None:
        config.profiles_path = profiles_path
    if trace:
        config.trace = True

    from camrelay.web.app import create_app

    try:
        app = create_app(config)
    except (OSError, ValueError) as exc:
        console.print(f"[red]Cannot load capture profiles:[/red] {exc}")
        raise SystemExit(1)

    console.print(
        f"[bold]camrelay[/bold] camera relay service on "
        f"[cyan]http://{config.host}:{config.port}[/cyan]"
    )
    console.print("  [dim]/stream  /still  /status[/dim]\n")
    if config.trace:
        console.print("  [yellow]event tracing enabled[/yellow]\n")

    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level="debug" if config.verbose else "info",
    )
