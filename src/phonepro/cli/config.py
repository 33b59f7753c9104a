from __future__ import annotations

from typing import Annotated

import typer

from phonepro.config import Settings, render_settings_toml, write_settings

from .common import load_settings_or_exit, resolve_config_path_or_exit

SECTIONS = {
    "discovery": "default network and which discovery sources run",
    "scanning": "nmap ports, HTTP enrichment and scan limits",
    "reachability": "ping timeout and parallelism",
    "session": "phone login lifetime and default username",
    "remote": "CWMP listener and connection requests",
}

app = typer.Typer(
    no_args_is_help=True,
    help="Show or create the phonepro config file",
)


def _section_block(toml: str, name: str) -> str:
    blocks = toml.split("\n\n")
    return next(block for block in blocks if block.startswith(f"[{name}]"))


@app.command("show")
def show_config(
    section: Annotated[
        str | None,
        typer.Option(
            "--section",
            "-s",
            help=f"Only show one section ({', '.join(SECTIONS)})",
        ),
    ] = None,
) -> None:
    """Print the effective settings, from the config file or the defaults."""
    if section is not None and section not in SECTIONS:
        expected = ", ".join(SECTIONS)
        typer.echo(f"Unknown section {section!r}, expected one of: {expected}")
        raise typer.Exit(1)

    settings = load_settings_or_exit()
    path, exists = resolve_config_path_or_exit(allow_missing=True)
    typer.echo(f"Config source: {path if exists else 'defaults'}")

    toml = render_settings_toml(settings)
    if section is None:
        typer.echo(toml)
        return
    typer.echo(f"# {SECTIONS[section]}")
    typer.echo(_section_block(toml, section))


@app.command("init")
def init_config(
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite existing config"),
    ] = False,
) -> None:
    """Write the default discovery, session and CWMP settings."""
    path, exists = resolve_config_path_or_exit(allow_missing=True)

    if exists and not force:
        typer.echo(f"Config already exists at {path}")
        return

    write_settings(Settings(), path)
    typer.echo(f"Wrote default config to {path}")
    for name, description in SECTIONS.items():
        typer.echo(f"  [{name}] {description}")
