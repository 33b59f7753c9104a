from __future__ import annotations

import asyncio
import ipaddress

import pytest

from phonepro.config import Settings
from phonepro.core.discovery import (
    DiscoveryCoordinator,
    join_sources,
    merge_candidates,
)
from phonepro.core.lldp import LLDPNeighbor, LLDPReadResult
from phonepro.errors import (
    ExternalToolUnavailable,
    InputValidationError,
    NetworkTimeout,
)
from phonepro.models import (
    IdentificationTier,
    RawCandidate,
    RegisteredEndpoint,
    ScanHost,
    ScanReport,
)


class FakeLLDP:
    def __init__(self, neighbors=None, error=None):
        self.result = LLDPReadResult(neighbors=neighbors or [], error=error)

    async def discover(self, deadline=None):
        return self.result


class FakeScanner:
    def __init__(self, hosts, timed_out=False):
        self.hosts = hosts
        self.timed_out = timed_out
        self.calls = []

    async def scan(self, network, http_enrich=True, deadline=None):
        self.calls.append((network, http_enrich))
        return ScanReport(network=network, hosts=self.hosts, timed_out=self.timed_out)


class FakeReachability:
    def __init__(self, online):
        self.online = set(online)
        self.asked = []

    async def check(self, addresses, deadline=None):
        addresses = list(addresses)
        self.asked.extend(addresses)
        return {address: address in self.online for address in addresses}


def _no_arp(deadline):
    async def _read():
        return []

    return _read()


def grandstream_neighbor() -> LLDPNeighbor:
    return LLDPNeighbor(
        mac="00:0b:82:12:34:56",
        ip="192.168.1.100",
        system_name="GXP1630_000B82123456",
        system_description="GrandStream GXP1630 1.0.11.23",
        capabilities=["telephone"],
    )


def coordinator(lldp=None, scanner=None, reachability=None, arp_reader=_no_arp):
    return DiscoveryCoordinator(
        Settings(),
        lldp=lldp or FakeLLDP(),
        scanner=scanner or FakeScanner([]),
        reachability=reachability or FakeReachability([]),
        arp_reader=arp_reader,
    )


def test_candidates_sharing_mac_merge_into_one():
    devices = merge_candidates(
        [
            RawCandidate(
                mac="00:0B:82:12:34:56",
                source="lldp",
                vendor="GrandStream",
                model="GXP1630",
                vendor_tier=IdentificationTier.LLDP,
                capabilities=["telephone"],
            ),
            RawCandidate(
                ip="192.168.1.100",
                mac="00-0b-82-12-34-56",
                source="arp",
                vendor="GrandStream",
                vendor_tier=IdentificationTier.OUI,
            ),
        ]
    )

    assert len(devices) == 1
    device = devices[0]
    assert device.mac == "00:0b:82:12:34:56"
    assert device.ip == "192.168.1.100"
    assert device.model == "GXP1630"
    assert device.vendor_tier == IdentificationTier.LLDP
    assert device.source == "lldp+arp"


def test_mac_less_candidate_joins_by_ip():
    devices = merge_candidates(
        [
            RawCandidate(
                ip="192.168.1.101",
                source="active-scan+http",
                vendor="Yealink",
                vendor_tier=IdentificationTier.HTTP,
            ),
            RawCandidate(
                ip="192.168.1.101",
                mac="00:15:65:00:00:01",
                source="arp",
                vendor="Yealink",
                vendor_tier=IdentificationTier.OUI,
            ),
            RawCandidate(ip="192.168.1.99", source="active-scan"),
        ]
    )

    assert [d.ip for d in devices] == ["192.168.1.99", "192.168.1.101"]
    assert devices[1].source == "arp+active-scan+http"
    assert devices[1].vendor_tier == IdentificationTier.HTTP


def test_higher_tier_vendor_wins():
    devices = merge_candidates(
        [
            RawCandidate(
                ip="192.168.1.5",
                source="arp",
                vendor="Cisco",
                vendor_tier=IdentificationTier.OUI,
            ),
            RawCandidate(
                ip="192.168.1.5",
                source="active-scan+http",
                vendor="Polycom",
                model="VVX411",
                vendor_tier=IdentificationTier.HTTP,
            ),
        ]
    )
    assert (devices[0].vendor, devices[0].model) == ("Polycom", "VVX411")


def test_join_sources_orders_tokens():
    assert join_sources(["http", "active-scan", "lldp"]) == "lldp+active-scan+http"


def test_lldp_scenario_reaches_result():
    reach = FakeReachability(["192.168.1.100"])
    result = asyncio.run(
        coordinator(lldp=FakeLLDP([grandstream_neighbor()]), reachability=reach)
        .discover("192.168.1.0/24")
    )

    (device,) = result.devices
    assert (device.vendor, device.model) == ("GrandStream", "GXP1630")
    assert device.online is True
    assert device.registered is False
    assert result.errors == {}


def test_http_scenario_reaches_result():
    scanner = FakeScanner(
        [
            ScanHost(
                ip="192.168.1.101",
                open_ports=[5060],
                vendor="Yealink",
                vendor_tier=IdentificationTier.HTTP,
            )
        ]
    )
    result = asyncio.run(coordinator(scanner=scanner).discover("192.168.1.0/24"))

    (device,) = result.devices
    assert device.vendor == "Yealink"
    assert device.source == "active-scan+http"
    assert device.online is False


@pytest.mark.parametrize(
    "network", ["192.168.1.0/24", "192.168.1.96/28", "10.0.0.0/30"]
)
def test_devices_always_inside_requested_range(network):
    neighbor = grandstream_neighbor()
    outside = LLDPNeighbor(
        mac="00:0b:82:00:00:01",
        ip="172.16.0.9",
        system_description="GrandStream GRP2612",
    )
    mac_only = LLDPNeighbor(
        mac="00:0b:82:00:00:02", system_description="GrandStream GXP2170"
    )
    scanner = FakeScanner(
        [ScanHost(ip="192.168.1.101", open_ports=[80]), ScanHost(ip="10.0.0.1")]
    )

    result = asyncio.run(
        coordinator(lldp=FakeLLDP([neighbor, outside, mac_only]), scanner=scanner)
        .discover(network)
    )

    net = ipaddress.IPv4Network(network)
    assert all(ipaddress.IPv4Address(d.ip) in net for d in result.devices)


def test_registration_is_separate_from_reachability():
    endpoints = [
        RegisteredEndpoint(extension="200", ip="192.168.1.100", user_agent="GXP1630")
    ]
    result = asyncio.run(
        coordinator(lldp=FakeLLDP([grandstream_neighbor()])).discover(
            "192.168.1.0/24", registered=endpoints
        )
    )

    (device,) = result.devices
    assert device.registered is True
    assert device.extension == "200"
    assert device.online is False


def test_failing_source_is_reported_not_fatal():
    lldp = FakeLLDP(error=ExternalToolUnavailable("lldpctl is not installed"))
    scanner = FakeScanner([ScanHost(ip="192.168.1.101", open_ports=[5060])])

    result = asyncio.run(
        coordinator(lldp=lldp, scanner=scanner).discover("192.168.1.0/24")
    )

    assert "lldp" in result.errors
    assert [d.ip for d in result.devices] == ["192.168.1.101"]
    assert result.timed_out is False


def test_source_timeout_marks_result_partial():
    lldp = FakeLLDP(error=NetworkTimeout("lldpctl -f json0 exceeded 15.0s"))
    scanner = FakeScanner([ScanHost(ip="192.168.1.101", open_ports=[5060])])

    result = asyncio.run(
        coordinator(lldp=lldp, scanner=scanner).discover("192.168.1.0/24")
    )

    assert result.timed_out is True
    assert "exceeded" in result.errors["lldp"]
    assert [d.ip for d in result.devices] == ["192.168.1.101"]


def test_partial_scan_marks_result():
    scanner = FakeScanner([ScanHost(ip="192.168.1.101")], timed_out=True)
    result = asyncio.run(coordinator(scanner=scanner).discover("192.168.1.0/24"))
    assert result.timed_out is True


def test_invalid_network_rejected_before_any_source_runs():
    scanner = FakeScanner([])
    with pytest.raises(InputValidationError):
        asyncio.run(coordinator(scanner=scanner).discover("192.168.1.0/24;reboot"))
    assert scanner.calls == []
