"""Device discovery models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IdentificationTier(str, Enum):
    """Where a vendor/model answer came from, highest rank first."""

    LLDP = "lldp"
    HTTP = "http"
    OUI = "oui"
    UNKNOWN = "unknown"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]


_TIER_RANK = {
    IdentificationTier.LLDP: 3,
    IdentificationTier.HTTP: 2,
    IdentificationTier.OUI: 1,
    IdentificationTier.UNKNOWN: 0,
}


class RawCandidate(BaseModel):
    """Single observation of a device from one discovery source."""

    ip: str = ""
    mac: str = ""
    hostname: str = ""
    vendor: str = ""
    model: str = ""
    port_id: str = ""
    vlan: int | None = None
    capabilities: list[str] = Field(default_factory=list)
    source: str
    vendor_tier: IdentificationTier = IdentificationTier.UNKNOWN
    serial: str = ""
    software_version: str = ""
    system_description: str = ""
    last_seen: datetime = Field(default_factory=utcnow)


class DiscoveredDevice(BaseModel):
    """Canonical, merged view of one phone on the network."""

    ip: str = ""
    mac: str = ""
    hostname: str = ""
    vendor: str = ""
    model: str = ""
    port_id: str = ""
    vlan: int | None = None
    capabilities: list[str] = Field(default_factory=list)
    source: str = ""
    vendor_tier: IdentificationTier = IdentificationTier.UNKNOWN
    serial: str = ""
    software_version: str = ""
    last_seen: datetime = Field(default_factory=utcnow)
    online: bool = False
    registered: bool = False
    extension: str | None = None
    user_agent: str | None = None


class RegisteredEndpoint(BaseModel):
    """SIP endpoint currently registered with the PBX."""

    extension: str
    ip: str
    user_agent: str = ""


class ScanHost(BaseModel):
    """Host reported by the active scanner."""

    ip: str
    open_ports: list[int] = Field(default_factory=list)
    vendor: str = ""
    model: str = ""
    http_server: str = ""
    vendor_tier: IdentificationTier = IdentificationTier.UNKNOWN


class ScanReport(BaseModel):
    """Active scan output, possibly partial."""

    network: str
    hosts: list[ScanHost] = Field(default_factory=list)
    timed_out: bool = False


class DiscoveryResult(BaseModel):
    """Outcome of one discovery run."""

    network: str
    devices: list[DiscoveredDevice] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)
    timed_out: bool = False
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None
