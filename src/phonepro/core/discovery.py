"""Multi-source phone discovery.

LLDP, the ARP table and an active scan run side by side; their raw candidates
are merged into one record per device (by MAC when known, else by IP) and then
annotated with reachability and PBX registration state.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timezone

from phonepro.config import Settings
from phonepro.errors import NetworkTimeout, PhoneproError
from phonepro.models import (
    DiscoveredDevice,
    DiscoveryResult,
    IdentificationTier,
    RawCandidate,
    RegisteredEndpoint,
)

from .arp import read_arp_table
from .lldp import LLDPDiscoverer
from .reachability import ReachabilityChecker
from .scanner import NetworkScanner, scan_host_to_candidate, validate_network
from .vendors import normalize_mac

logger = logging.getLogger(__name__)

SOURCE_ORDER = ("lldp", "arp", "active-scan", "http")

ArpReader = Callable[[float | None], Awaitable[list[RawCandidate]]]


def _source_tokens(source: str) -> list[str]:
    return [token for token in source.split("+") if token]


def join_sources(sources: Iterable[str]) -> str:
    tokens: list[str] = []
    for source in sources:
        for token in _source_tokens(source):
            if token not in tokens:
                tokens.append(token)
    known = [token for token in SOURCE_ORDER if token in tokens]
    extra = [token for token in tokens if token not in SOURCE_ORDER]
    return "+".join(known + extra)


def _ip_sort_key(device: DiscoveredDevice) -> tuple[int, str]:
    try:
        return int(ipaddress.IPv4Address(device.ip)), device.mac
    except ValueError:
        return 0, device.mac


def _first(values: Iterable[str]) -> str:
    return next((value for value in values if value), "")


def merge_group(group: list[RawCandidate]) -> DiscoveredDevice:
    ranked = sorted(
        (candidate for candidate in group if candidate.vendor),
        key=lambda candidate: (candidate.vendor_tier.rank, bool(candidate.model)),
        reverse=True,
    )
    vendor = ranked[0].vendor if ranked else ""
    tier = ranked[0].vendor_tier if ranked else IdentificationTier.UNKNOWN
    model = _first(c.model for c in ranked if c.vendor == vendor)

    capabilities: list[str] = []
    for candidate in group:
        for capability in candidate.capabilities:
            if capability not in capabilities:
                capabilities.append(capability)

    return DiscoveredDevice(
        ip=_first(c.ip for c in group),
        mac=_first(c.mac for c in group),
        hostname=_first(c.hostname for c in group),
        vendor=vendor,
        model=model,
        port_id=_first(c.port_id for c in group),
        vlan=next((c.vlan for c in group if c.vlan is not None), None),
        capabilities=capabilities,
        source=join_sources(c.source for c in group),
        vendor_tier=tier,
        serial=_first(c.serial for c in group),
        software_version=_first(c.software_version for c in group),
        last_seen=max(c.last_seen for c in group),
    )


def merge_candidates(candidates: Iterable[RawCandidate]) -> list[DiscoveredDevice]:
    """Group candidates by normalized MAC, else by IP, and merge each group."""
    groups: dict[str, list[RawCandidate]] = {}
    without_mac: list[RawCandidate] = []
    ip_to_key: dict[str, str] = {}

    for candidate in candidates:
        mac = normalize_mac(candidate.mac)
        if not mac:
            without_mac.append(candidate.model_copy(update={"mac": ""}))
            continue
        key = f"mac:{mac}"
        groups.setdefault(key, []).append(candidate.model_copy(update={"mac": mac}))
        if candidate.ip:
            ip_to_key.setdefault(candidate.ip, key)

    for candidate in without_mac:
        if not candidate.ip:
            continue
        key = ip_to_key.get(candidate.ip, f"ip:{candidate.ip}")
        groups.setdefault(key, []).append(candidate)

    devices = [merge_group(group) for group in groups.values()]
    devices.sort(key=_ip_sort_key)
    return devices


def _in_network(ip: str, network: ipaddress.IPv4Network) -> bool:
    try:
        return ipaddress.IPv4Address(ip) in network
    except ValueError:
        return False


def apply_registrations(
    devices: list[DiscoveredDevice], endpoints: Iterable[RegisteredEndpoint]
) -> None:
    """Mark devices the PBX knows about; never touches ``online``."""
    by_ip = {endpoint.ip: endpoint for endpoint in endpoints}
    for device in devices:
        endpoint = by_ip.get(device.ip)
        if endpoint is None:
            continue
        device.registered = True
        device.extension = endpoint.extension
        device.user_agent = endpoint.user_agent or None


class DiscoveryCoordinator:
    def __init__(
        self,
        settings: Settings,
        lldp: LLDPDiscoverer | None = None,
        scanner: NetworkScanner | None = None,
        reachability: ReachabilityChecker | None = None,
        arp_reader: ArpReader | None = None,
    ) -> None:
        self.settings = settings
        self.lldp = lldp or LLDPDiscoverer(settings.discovery)
        self.scanner = scanner or NetworkScanner(settings.scanning)
        self.reachability = reachability or ReachabilityChecker(settings.reachability)
        self.arp_reader = arp_reader or (
            lambda deadline: read_arp_table(settings.discovery, deadline)
        )

    async def _lldp_candidates(self, deadline: float) -> list[RawCandidate]:
        result = await self.lldp.discover(deadline)
        if result.error is not None and not result.neighbors:
            raise result.error
        return result.candidates()

    async def _scan_candidates(
        self, network: str, http_enrich: bool, deadline: float
    ) -> tuple[list[RawCandidate], bool]:
        report = await self.scanner.scan(network, http_enrich, deadline)
        return [scan_host_to_candidate(host) for host in report.hosts], report.timed_out

    async def discover(
        self,
        network: str,
        registered: Iterable[RegisteredEndpoint] | None = None,
        deadline: float | None = None,
        lldp: bool | None = None,
        arp: bool | None = None,
        http_enrich: bool | None = None,
    ) -> DiscoveryResult:
        config = self.settings.discovery
        net = validate_network(network, self.settings.scanning.max_hosts)
        budget = deadline or config.deadline
        loop = asyncio.get_running_loop()
        started = loop.time()
        result = DiscoveryResult(network=str(net))
        use_lldp = config.lldp_enabled if lldp is None else lldp
        use_arp = config.arp_enabled if arp is None else arp
        enrich = config.http_enrich if http_enrich is None else http_enrich

        logger.info("Discovering phones in %s", net)

        async def _source(name: str, coro: Awaitable) -> object:
            try:
                return await asyncio.wait_for(coro, timeout=budget)
            except (asyncio.TimeoutError, TimeoutError):
                result.timed_out = True
                result.errors[name] = str(NetworkTimeout(f"{name} exceeded {budget}s"))
            except PhoneproError as exc:
                if isinstance(exc, NetworkTimeout):
                    result.timed_out = True
                result.errors[name] = str(exc)
                logger.debug("Discovery source %s failed: %s", name, exc)
            return None

        jobs: dict[str, Awaitable] = {
            "scan": self._scan_candidates(str(net), enrich, budget)
        }
        if use_lldp:
            jobs["lldp"] = self._lldp_candidates(budget)
        if use_arp:
            jobs["arp"] = self.arp_reader(budget)
        outcomes = await asyncio.gather(
            *(_source(name, job) for name, job in jobs.items())
        )

        candidates: list[RawCandidate] = []
        for name, outcome in zip(jobs, outcomes):
            if outcome is None:
                continue
            if name == "scan":
                scan_candidates, timed_out = outcome
                candidates.extend(scan_candidates)
                result.timed_out = result.timed_out or timed_out
            else:
                candidates.extend(outcome)

        # MAC-only candidates may still pick up an address from another source
        candidates = [c for c in candidates if not c.ip or _in_network(c.ip, net)]
        devices = [d for d in merge_candidates(candidates) if _in_network(d.ip, net)]

        remaining = budget - (loop.time() - started)
        if devices:
            if remaining > 0:
                status = await self.reachability.check(
                    [device.ip for device in devices], deadline=remaining
                )
            else:
                result.timed_out = True
                status = {}
            for device in devices:
                device.online = status.get(device.ip, False)

        apply_registrations(devices, registered or [])

        result.devices = devices
        result.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Discovery of %s finished: %d devices%s",
            net,
            len(devices),
            " (partial)" if result.timed_out else "",
        )
        return result
