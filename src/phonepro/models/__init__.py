"""Data models for phonepro."""

from phonepro.models.device import (
    DiscoveredDevice,
    DiscoveryResult,
    IdentificationTier,
    RawCandidate,
    RegisteredEndpoint,
    ScanHost,
    ScanReport,
)
from phonepro.models.provisioning import (
    ExtensionAccount,
    ProvisioningResult,
    ProvisioningTarget,
)
from phonepro.models.remote import PendingRequest, RemoteDevice, RequestStatus
from phonepro.models.session import Session
from phonepro.models.sip import PhoneInfo, SIPAccountConfig, TR069Config

__all__ = [
    "DiscoveredDevice",
    "DiscoveryResult",
    "ExtensionAccount",
    "IdentificationTier",
    "PendingRequest",
    "PhoneInfo",
    "ProvisioningResult",
    "ProvisioningTarget",
    "RawCandidate",
    "RegisteredEndpoint",
    "RemoteDevice",
    "RequestStatus",
    "ScanHost",
    "ScanReport",
    "SIPAccountConfig",
    "Session",
    "TR069Config",
]
