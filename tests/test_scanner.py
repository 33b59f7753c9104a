from __future__ import annotations

import asyncio

import httpx
import pytest

import phonepro.core.scanner as scanner_module
from phonepro.config import ScanningConfig
from phonepro.core.process import CommandResult
from phonepro.core.scanner import (
    NetworkScanner,
    parse_grepable,
    scan_host_to_candidate,
    validate_network,
)
from phonepro.errors import ExternalToolFailure, InputValidationError

GREPABLE = """# Nmap 7.94 scan initiated as: nmap -n -Pn -p 80,5060 --open -oG -
Host: 192.168.1.100 ()\tStatus: Up
Host: 192.168.1.100 ()\tPorts: 80/open/tcp//http///, 5060/open/tcp//sip///
Host: 192.168.1.101 ()\tPorts: 5060/open/tcp//sip///\tIgnored State: closed (3)
Host: 10.9.9.9 ()\tPorts: 80/open/tcp//http///
Host: 192.168.1.102 ()\tPorts: 80/filtered/tcp//http///
# Nmap done at Sat Oct 18 10:00:00 2026 -- 256 IP addresses (3 hosts up)
"""


@pytest.mark.parametrize(
    "network",
    [
        "192.168.1.0/24; rm -rf /",
        "192.168.1.0/24 -oN /tmp/x",
        "-iL /etc/passwd",
        "192.168.1.0",
        "192.168.1.0/33",
        "300.1.1.1/24",
        "010.0.0.0/24",
        "192.168.01.0/24",
        "fe80::/64",
        "",
    ],
)
def test_validate_network_rejects_bad_input(network):
    with pytest.raises(InputValidationError):
        validate_network(network)


def test_validate_network_limits_size():
    assert str(validate_network("192.168.1.7/24")) == "192.168.1.0/24"
    with pytest.raises(InputValidationError, match="limit"):
        validate_network("10.0.0.0/8", max_hosts=4096)


def test_parse_grepable():
    assert parse_grepable(GREPABLE) == [
        ("192.168.1.100", [80, 5060]),
        ("192.168.1.101", [5060]),
        ("10.9.9.9", [80]),
    ]


def test_nmap_argv_is_a_list_without_shell():
    scanner = NetworkScanner(ScanningConfig(ports=[80, 5060]))
    argv = scanner.nmap_argv(validate_network("192.168.1.0/24"))
    assert argv[0] == "nmap"
    assert argv[-1] == "192.168.1.0/24"
    assert "80,5060" in argv


def _fake_nmap(monkeypatch, result: CommandResult) -> list[list[str]]:
    calls: list[list[str]] = []

    async def _fake_run(argv, timeout):
        calls.append(list(argv))
        return result

    monkeypatch.setattr(scanner_module, "run_command", _fake_run)
    return calls


def test_scan_keeps_only_hosts_in_range(monkeypatch):
    _fake_nmap(monkeypatch, CommandResult(["nmap"], 0, GREPABLE.encode(), b""))

    report = asyncio.run(
        NetworkScanner(ScanningConfig()).scan("192.168.1.0/24", http_enrich=False)
    )

    assert [host.ip for host in report.hosts] == ["192.168.1.100", "192.168.1.101"]
    assert report.timed_out is False


def test_scan_deadline_returns_partial_result(monkeypatch):
    partial = GREPABLE.split("Host: 192.168.1.101")[0]
    _fake_nmap(monkeypatch, CommandResult(["nmap"], None, partial.encode(), b"", True))

    report = asyncio.run(
        NetworkScanner(ScanningConfig()).scan("192.168.1.0/24", deadline=1)
    )

    assert report.timed_out is True
    assert [host.ip for host in report.hosts] == ["192.168.1.100"]


def test_scan_tool_failure(monkeypatch):
    _fake_nmap(monkeypatch, CommandResult(["nmap"], 1, b"", b"Failed to resolve"))

    with pytest.raises(ExternalToolFailure, match="Failed to resolve"):
        asyncio.run(NetworkScanner(ScanningConfig()).scan("192.168.1.0/24"))


def test_scan_with_http_signature(monkeypatch):
    _fake_nmap(monkeypatch, CommandResult(["nmap"], 0, GREPABLE.encode(), b""))
    requested: list[str] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        if request.url.host == "192.168.1.101":
            return httpx.Response(200, text="<title>Yealink Phone Login</title>")
        return httpx.Response(404, headers={"Server": "lighttpd"}, text="nope")

    scanner = NetworkScanner(ScanningConfig(), transport=httpx.MockTransport(_handler))
    report = asyncio.run(scanner.scan("192.168.1.0/24"))

    by_ip = {host.ip: host for host in report.hosts}
    assert by_ip["192.168.1.101"].vendor == "Yealink"
    assert by_ip["192.168.1.100"].vendor == ""
    assert by_ip["192.168.1.100"].http_server == "lighttpd"
    assert sorted(requested) == ["http://192.168.1.100/", "http://192.168.1.101/"]

    candidate = scan_host_to_candidate(by_ip["192.168.1.101"])
    assert candidate.source == "active-scan+http"
    assert scan_host_to_candidate(by_ip["192.168.1.100"]).source == "active-scan"


def test_http_enrichment_errors_are_not_fatal(monkeypatch):
    _fake_nmap(monkeypatch, CommandResult(["nmap"], 0, GREPABLE.encode(), b""))

    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    scanner = NetworkScanner(ScanningConfig(), transport=httpx.MockTransport(_handler))
    report = asyncio.run(scanner.scan("192.168.1.0/24"))

    assert len(report.hosts) == 2
    assert all(host.vendor == "" for host in report.hosts)
