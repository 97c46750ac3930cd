"""CLI command: camrelay profiles — show the capture command lines."""

from __future__ import annotations

from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from camrelay.capture.profiles import load_profiles
from camrelay.config import RelayConfig

console = Console()


@click.command()
@click.option(
    "--profiles",
    "profiles_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML file overriding the capture profiles.",
)
def profiles(profiles_path: Path | None) -> None:
    """Print the command line each capture kind runs."""
    path = profiles_path or RelayConfig.load().profiles_path
    try:
        resolved = load_profiles(path)
    except ValueError as exc:
        console.print(f"[red]Invalid profiles file:[/red] {exc}")
        raise SystemExit(1)

    table = Table(title=f"Capture profiles ({path or 'built-in'})")
    table.add_column("Kind", style="cyan")
    table.add_column("Media type")
    table.add_column("Command")
    for kind, profile in resolved.items():
        table.add_row(kind.value, profile.media_type, " ".join(profile.argv()))
    console.print(table)
