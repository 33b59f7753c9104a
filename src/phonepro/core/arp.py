from __future__ import annotations

import ipaddress
import logging
import re

from phonepro.config import DiscoveryConfig
from phonepro.errors import ExternalToolFailure
from phonepro.models import RawCandidate

from .process import run_command
from .vendors import identify, normalize_mac

logger = logging.getLogger(__name__)

# "? (192.168.1.20) at 00:0b:82:aa:bb:cc [ether] on eth0"
ARP_LINE = re.compile(
    r"^(?P<host>\S+)\s+\((?P<ip>[0-9.]+)\)\s+at\s+(?P<mac>[0-9A-Fa-f:.-]+)"
)


def parse_arp_table(output: str) -> list[RawCandidate]:
    """Parse ``arp -an`` output, keeping entries whose MAC names a phone vendor."""
    candidates = []
    for line in output.splitlines():
        match = ARP_LINE.match(line.strip())
        if not match:
            continue
        try:
            ipaddress.IPv4Address(match.group("ip"))
        except ValueError:
            continue
        mac = normalize_mac(match.group("mac"))
        if not mac:
            # "<incomplete>" entries
            continue
        result = identify(mac=mac)
        if not result.known:
            continue
        host = match.group("host")
        candidates.append(
            RawCandidate(
                ip=match.group("ip"),
                mac=mac,
                hostname="" if host == "?" else host,
                vendor=result.vendor,
                model=result.model,
                vendor_tier=result.tier,
                source="arp",
            )
        )
    return candidates


async def read_arp_table(
    config: DiscoveryConfig, deadline: float | None = None
) -> list[RawCandidate]:
    timeout = min(deadline or config.arp_timeout, config.arp_timeout)
    result = await run_command(["arp", "-an"], timeout)
    if not result.ok:
        raise ExternalToolFailure(
            f"arp -an failed (exit={result.returncode}, timed_out={result.timed_out})"
        )
    candidates = parse_arp_table(result.stdout)
    logger.debug("ARP table: %d phone-vendor entries", len(candidates))
    return candidates
