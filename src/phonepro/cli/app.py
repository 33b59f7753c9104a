from __future__ import annotations

from typing import Annotated

import typer

from phonepro.utils.logging import setup_logging

from . import acs as acs_cmd
from . import config as config_cmd
from . import phone as phone_cmd
from .discover import register as register_discover
from .ping import register as register_ping

app = typer.Typer(
    help="phonepro - VoIP desk phone discovery and provisioning",
    no_args_is_help=True,
)

app.add_typer(config_cmd.app, name="config")
app.add_typer(phone_cmd.app, name="phone")
app.add_typer(acs_cmd.app, name="acs")

register_discover(app)
register_ping(app)


@app.callback(invoke_without_command=True)
def main(
    version: Annotated[
        bool,
        typer.Option("--version", "-v", help="Show version and exit"),
    ] = False,
) -> None:
    """phonepro CLI."""
    setup_logging()

    if version:
        from importlib.metadata import version as get_version

        typer.echo(f"phonepro version {get_version('phonepro')}")
        raise typer.Exit()
