from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from phonepro.config import Settings
from phonepro.core import PhoneSessionManager, ProvisioningOrchestrator
from phonepro.models import (
    ExtensionAccount,
    PhoneInfo,
    ProvisioningTarget,
    Session,
    SIPAccountConfig,
    TR069Config,
)

from .common import load_settings_or_exit, run_or_exit

app = typer.Typer(no_args_is_help=True, help="Manage a phone over the LAN")

Address = Annotated[str, typer.Argument(help="Phone address (host or host:port)")]
Username = Annotated[
    str | None,
    typer.Option("--user", "-u", help="Login name (config default if omitted)"),
]
Password = Annotated[
    str,
    typer.Option(
        "--password",
        "-p",
        envvar="PHONEPRO_PASSWORD",
        prompt=True,
        hide_input=True,
        help="Login password",
    ),
]


async def _login(
    manager: PhoneSessionManager,
    settings: Settings,
    address: str,
    user: str | None,
    password: str,
) -> Session:
    username = user or settings.session.default_username
    return await manager.get_or_login(address, username, password)


@app.command("info")
def info(address: Address, password: Password, user: Username = None) -> None:
    """Show model and firmware versions."""
    console = Console()
    settings = load_settings_or_exit()
    manager = PhoneSessionManager(settings.session)

    async def _run() -> tuple[PhoneInfo, SIPAccountConfig, TR069Config]:
        session = await _login(manager, settings, address, user, password)
        return (
            await manager.get_device_info(session),
            await manager.get_sip_account(session),
            await manager.get_tr069_config(session),
        )

    device, sip, tr069 = run_or_exit(console, _run())

    table = Table(show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Vendor", device.vendor_fullname or device.vendor_name)
    table.add_row("Model", device.phone_model)
    table.add_row("Program", device.prog_version)
    table.add_row("Boot", device.boot_version)
    table.add_row("Core", device.core_version)
    table.add_row("Base", device.base_version)
    table.add_row("DSP", device.dsp_version)
    account = f"{sip.sip_user_id}@{sip.sip_server}" if sip.active else "-"
    table.add_row("Account 1", account)
    table.add_row("TR-069", tr069.acs_url if tr069.enabled else "disabled")
    console.print(table)


@app.command("reboot")
def reboot(address: Address, password: Password, user: Username = None) -> None:
    """Reboot the phone."""
    console = Console()
    settings = load_settings_or_exit()
    manager = PhoneSessionManager(settings.session)

    async def _run() -> None:
        session = await _login(manager, settings, address, user, password)
        await manager.reboot(session)

    run_or_exit(console, _run())
    console.print(f"[green]Reboot requested for {address}[/green]")


@app.command("factory-reset")
def factory_reset(
    address: Address,
    password: Password,
    user: Username = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", help="Confirm wiping all settings on the phone"),
    ] = False,
) -> None:
    """Wipe the phone back to factory settings."""
    console = Console()
    settings = load_settings_or_exit()
    manager = PhoneSessionManager(settings.session)

    async def _run() -> None:
        session = await _login(manager, settings, address, user, password)
        await manager.factory_reset(session, confirm=yes)

    run_or_exit(console, _run())
    console.print(f"[green]Factory reset requested for {address}[/green]")


@app.command("provision")
def provision(
    address: Address,
    password: Password,
    extension: Annotated[str, typer.Option("--extension", "-e", help="Extension")],
    secret: Annotated[str, typer.Option("--secret", help="SIP password")],
    server: Annotated[str, typer.Option("--server", help="SIP server / PBX")],
    user: Username = None,
    name: Annotated[str, typer.Option("--name", help="Display name")] = "",
    account: Annotated[int, typer.Option("--account", help="Account slot")] = 1,
) -> None:
    """Register the phone as a PBX extension."""
    console = Console()
    settings = load_settings_or_exit()
    orchestrator = ProvisioningOrchestrator(PhoneSessionManager(settings.session))
    target = ProvisioningTarget(address=address, username=user, password=password)
    extension_account = ExtensionAccount(
        extension=extension,
        secret=secret,
        name=name,
        sip_server=server,
        account_index=account,
    )

    result = run_or_exit(
        console, orchestrator.provision_extension(target, extension_account)
    )
    console.print(
        f"[green]Extension {extension} {result.status} on {result.target}[/green]"
    )


@app.command("enable-tr069")
def enable_tr069(
    address: Address,
    password: Password,
    acs_url: Annotated[str, typer.Option("--acs-url", help="ACS URL")],
    user: Username = None,
    acs_user: Annotated[str, typer.Option("--acs-user", help="ACS username")] = "",
    acs_password: Annotated[
        str | None, typer.Option("--acs-password", help="ACS password")
    ] = None,
    interval: Annotated[
        int, typer.Option("--interval", help="Periodic inform interval (s)")
    ] = 300,
) -> None:
    """Point the phone at an ACS for management off the LAN."""
    console = Console()
    settings = load_settings_or_exit()
    manager = PhoneSessionManager(settings.session)

    async def _run() -> None:
        session = await _login(manager, settings, address, user, password)
        await manager.enable_tr069(
            session,
            acs_url,
            username=acs_user,
            password=acs_password,
            periodic_inform_interval=interval,
        )

    run_or_exit(console, _run())
    console.print(f"[green]{address} will check in with {acs_url}[/green]")
