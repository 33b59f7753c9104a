"""phonepro - find VoIP desk phones on a network and provision them."""

from __future__ import annotations

from importlib.metadata import version

from .config import Settings, get_settings
from .core import (
    DiscoveryCoordinator,
    PhoneSessionManager,
    ProvisioningOrchestrator,
    RemoteManagementClient,
    SessionStore,
)
from .errors import PhoneproError
from .models import DiscoveredDevice, DiscoveryResult, ProvisioningResult

__all__ = [
    "DiscoveredDevice",
    "DiscoveryCoordinator",
    "DiscoveryResult",
    "PhoneSessionManager",
    "PhoneproError",
    "ProvisioningOrchestrator",
    "ProvisioningResult",
    "RemoteManagementClient",
    "SessionStore",
    "Settings",
    "__version__",
    "get_settings",
]

__version__ = version("phonepro")
