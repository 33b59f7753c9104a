from __future__ import annotations

import json
import logging
from pathlib import Path

import typer
from pydantic import TypeAdapter, ValidationError
from rich.console import Console
from rich.table import Table

from phonepro.core import DiscoveryCoordinator
from phonepro.models import RegisteredEndpoint
from phonepro.utils.redaction import Redactor

from .common import load_settings_or_exit, run_or_exit

logger = logging.getLogger(__name__)

_endpoints = TypeAdapter(list[RegisteredEndpoint])


def _load_registered(path: Path | None) -> list[RegisteredEndpoint]:
    if path is None:
        return []
    try:
        return _endpoints.validate_python(json.loads(path.read_text()))
    except (OSError, ValueError, ValidationError) as exc:
        typer.echo(f"Cannot read registered endpoints from {path}: {exc}", err=True)
        raise typer.Exit(1) from exc


def register(app: typer.Typer) -> None:
    @app.command()
    def discover(
        network: str | None = typer.Argument(
            None,
            help=(
                "Network to search (e.g., 192.168.1.0/24). "
                "Uses config default if omitted."
            ),
        ),
        lldp: bool = typer.Option(True, help="Read LLDP neighbours"),
        arp: bool = typer.Option(True, help="Read the ARP neighbour table"),
        http: bool = typer.Option(True, help="Check web interfaces for vendor"),
        deadline: float | None = typer.Option(
            None, "--deadline", help="Overall time budget in seconds"
        ),
        registered: Path | None = typer.Option(
            None,
            "--registered",
            help="JSON list of PBX registrations (extension, ip, user_agent)",
        ),
        redact: bool = typer.Option(
            False,
            "--redact",
            help="Redact sensitive values in output",
        ),
    ) -> None:
        """Find desk phones on the network."""
        console = Console()
        settings = load_settings_or_exit()
        endpoints = _load_registered(registered)

        if network is None:
            network = settings.discovery.default_network
            console.print(f"Using network from config: {network}")

        console.print(f"Discovering phones in {network}...")
        coordinator = DiscoveryCoordinator(settings)
        result = run_or_exit(
            console,
            coordinator.discover(
                network,
                registered=endpoints,
                deadline=deadline,
                lldp=lldp,
                arp=arp,
                http_enrich=http,
            ),
        )

        for source, error in sorted(result.errors.items()):
            console.print(f"[yellow]{source}:[/yellow] {error}")

        if not result.devices:
            console.print("No phones found.")
            return

        redactor = Redactor(enabled=redact)
        table = Table()
        table.add_column("IP", style="cyan")
        table.add_column("MAC Address")
        table.add_column("Vendor", style="green")
        table.add_column("Model")
        table.add_column("Serial")
        table.add_column("Source")
        table.add_column("Online")
        table.add_column("Extension", style="yellow")

        for device in result.devices:
            table.add_row(
                redactor.redact_ip(device.ip),
                redactor.redact_mac(device.mac),
                device.vendor or "?",
                device.model,
                redactor.redact_serial(device.serial),
                device.source,
                "yes" if device.online else "no",
                device.extension or "",
            )

        console.print(table)
        suffix = " (partial, deadline reached)" if result.timed_out else ""
        console.print(
            f"\n[green]Found {len(result.devices)} phone(s){suffix}[/green]"
        )
