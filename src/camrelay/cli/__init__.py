"""CLI entry point — Click group with global options."""

from __future__ import annotations

import logging

import click

from camrelay import __version__


@click.group()
@click.version_option(version=__version__, prog_name="camrelay")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """camrelay — on-demand camera stream and snapshot relay."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _register_commands() -> None:
    from camrelay.cli.profiles import profiles  # noqa: F811
    from camrelay.cli.server import server  # noqa: F811

    main.add_command(server)
    main.add_command(profiles)


_register_commands()
