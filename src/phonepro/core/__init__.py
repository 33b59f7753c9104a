"""Core discovery and provisioning logic."""

from __future__ import annotations

from .acs_server import create_acs_app, run_acs
from .discovery import DiscoveryCoordinator, merge_candidates
from .lldp import LLDPDiscoverer, LLDPNeighbor
from .phone import PhoneSessionManager
from .provisioning import ProvisioningOrchestrator
from .reachability import ReachabilityChecker
from .remote import RemoteManagementClient
from .scanner import NetworkScanner, validate_network
from .sessions import SessionStore
from .vendors import identify

__all__ = [
    "DiscoveryCoordinator",
    "LLDPDiscoverer",
    "LLDPNeighbor",
    "NetworkScanner",
    "PhoneSessionManager",
    "ProvisioningOrchestrator",
    "ReachabilityChecker",
    "RemoteManagementClient",
    "SessionStore",
    "create_acs_app",
    "identify",
    "merge_candidates",
    "run_acs",
    "validate_network",
]
