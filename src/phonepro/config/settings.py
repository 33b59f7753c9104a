from __future__ import annotations

import json
import os
import tomllib
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from .paths import default_config_path, expand_path

CONFIG_ENV_VAR = "PHONEPRO_CONFIG"

DEFAULT_PORTS = [80, 443, 5060, 5061, 8080]


class DiscoveryConfig(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    default_network: str = "192.168.1.0/24"
    lldp_enabled: bool = True
    arp_enabled: bool = True
    http_enrich: bool = True
    deadline: float = Field(default=120.0, gt=0)
    lldp_timeout: float = Field(default=15.0, gt=0)
    lldp_interface: str = ""
    arp_timeout: float = Field(default=10.0, gt=0)


class ScanningConfig(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    ports: list[int] = Field(default_factory=lambda: list(DEFAULT_PORTS))
    timeout: float = Field(default=60.0, gt=0)
    http_timeout: float = Field(default=3.0, gt=0)
    max_hosts: int = Field(default=4096, ge=1)
    parallel_requests: int = Field(default=20, ge=1, le=255)


class ReachabilityConfig(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    timeout: float = Field(default=2.0, gt=0)
    max_concurrency: int = Field(default=32, ge=1, le=1024)


class SessionConfig(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    ttl: float = Field(default=1800.0, gt=0)
    request_timeout: float = Field(default=15.0, gt=0)
    default_username: str = "admin"


class RemoteConfig(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    listen_host: str = "0.0.0.0"
    listen_port: int = Field(default=7547, ge=1, le=65535)
    freshness_window: float = Field(default=3600.0, gt=0)
    connection_request_timeout: float = Field(default=10.0, gt=0)


class Settings(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}

    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    scanning: ScanningConfig = Field(default_factory=ScanningConfig)
    reachability: ReachabilityConfig = Field(default_factory=ReachabilityConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)


def resolve_config_path(allow_missing: bool = False) -> tuple[Path, bool]:
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        path = expand_path(env_path)
        if not allow_missing and not path.exists():
            raise FileNotFoundError(f"{CONFIG_ENV_VAR} points to missing file: {path}")
        return path, path.exists()

    path = default_config_path()
    return path, path.exists()


def load_settings(path: Path) -> Settings:
    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Invalid TOML in config file: {path}\n{exc}") from exc

    try:
        return Settings.model_validate(data or {})
    except ValidationError as exc:
        raise ValueError(f"Invalid config file: {path}\n{exc}") from exc


@lru_cache
def get_settings() -> Settings:
    path, exists = resolve_config_path(allow_missing=False)
    if exists:
        return load_settings(path)
    return Settings()


def _toml_string(value: str) -> str:
    return json.dumps(value)


def _toml_bool(value: bool) -> str:
    return "true" if value else "false"


def render_settings_toml(settings: Settings) -> str:
    discovery = settings.discovery
    scanning = settings.scanning
    reachability = settings.reachability
    session = settings.session
    remote = settings.remote
    ports = ", ".join(str(port) for port in scanning.ports)
    lines = [
        "# phonepro configuration",
        "",
        "[discovery]",
        f"default_network = {_toml_string(discovery.default_network)}",
        f"lldp_enabled = {_toml_bool(discovery.lldp_enabled)}",
        f"arp_enabled = {_toml_bool(discovery.arp_enabled)}",
        f"http_enrich = {_toml_bool(discovery.http_enrich)}",
        f"deadline = {discovery.deadline}",
        f"lldp_timeout = {discovery.lldp_timeout}",
        f"lldp_interface = {_toml_string(discovery.lldp_interface)}",
        f"arp_timeout = {discovery.arp_timeout}",
        "",
        "[scanning]",
        f"ports = [{ports}]",
        f"timeout = {scanning.timeout}",
        f"http_timeout = {scanning.http_timeout}",
        f"max_hosts = {scanning.max_hosts}",
        f"parallel_requests = {scanning.parallel_requests}",
        "",
        "[reachability]",
        f"timeout = {reachability.timeout}",
        f"max_concurrency = {reachability.max_concurrency}",
        "",
        "[session]",
        f"ttl = {session.ttl}",
        f"request_timeout = {session.request_timeout}",
        f"default_username = {_toml_string(session.default_username)}",
        "",
        "[remote]",
        f"listen_host = {_toml_string(remote.listen_host)}",
        f"listen_port = {remote.listen_port}",
        f"freshness_window = {remote.freshness_window}",
        f"connection_request_timeout = {remote.connection_request_timeout}",
        "",
    ]
    return "\n".join(lines)


def write_settings(settings: Settings, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_settings_toml(settings))
