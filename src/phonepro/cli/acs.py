from __future__ import annotations

import asyncio
from typing import Annotated

import typer
from rich.console import Console

from phonepro.core import RemoteManagementClient, run_acs

from .common import load_settings_or_exit

app = typer.Typer(no_args_is_help=True, help="Remote management over CWMP")


@app.command("serve")
def serve(
    host: Annotated[
        str | None, typer.Option("--host", help="Listen address (config default)")
    ] = None,
    port: Annotated[
        int | None, typer.Option("--port", "-p", help="Listen port (config default)")
    ] = None,
) -> None:
    """Accept phone check-ins until interrupted."""
    console = Console()
    settings = load_settings_or_exit()
    client = RemoteManagementClient(settings.remote)
    listen_host = host or settings.remote.listen_host
    listen_port = port or settings.remote.listen_port

    console.print(f"Accepting CWMP check-ins on {listen_host}:{listen_port}...")
    console.print("Press Ctrl+C to stop.\n")
    try:
        asyncio.run(run_acs(client, listen_host, listen_port))
    except KeyboardInterrupt:
        console.print("\n[green]ACS stopped.[/green]")

    for device in client.list_devices():
        console.print(
            f"{device.serial_number}  {device.manufacturer} {device.model}  "
            f"last seen {device.last_inform:%Y-%m-%d %H:%M:%S}"
        )
