from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from phonepro.core import ReachabilityChecker

from .common import load_settings_or_exit, run_or_exit


def register(app: typer.Typer) -> None:
    @app.command()
    def ping(
        addresses: list[str] = typer.Argument(..., help="Addresses to check"),
    ) -> None:
        """Check which addresses answer an ICMP echo."""
        console = Console()
        settings = load_settings_or_exit()
        checker = ReachabilityChecker(settings.reachability)
        status = run_or_exit(console, checker.check(addresses))

        table = Table()
        table.add_column("Address", style="cyan")
        table.add_column("Reachable")
        for address in addresses:
            up = status.get(address, False)
            table.add_row(address, "[green]yes[/green]" if up else "[red]no[/red]")
        console.print(table)

        if not any(status.values()):
            raise typer.Exit(1)
