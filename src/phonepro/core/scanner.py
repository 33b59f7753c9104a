from __future__ import annotations

import asyncio
import ipaddress
import logging
import re

import httpx

from phonepro.config import ScanningConfig
from phonepro.errors import ExternalToolFailure, InputValidationError
from phonepro.models import RawCandidate, ScanHost, ScanReport

from .process import run_command
from .vendors import identify

logger = logging.getLogger(__name__)

CIDR_PATTERN = re.compile(
    r"(?P<a>[0-9]{1,3})\.(?P<b>[0-9]{1,3})\.(?P<c>[0-9]{1,3})\.(?P<d>[0-9]{1,3})"
    r"/(?P<prefix>[0-9]{1,2})"
)

HTTPS_PORTS = {443}
HTTP_BODY_LIMIT = 64 * 1024


def validate_network(
    network: str, max_hosts: int | None = None
) -> ipaddress.IPv4Network:
    """Accept only dotted-quad ``a.b.c.d/nn`` text, before it reaches nmap."""
    if not isinstance(network, str):
        raise InputValidationError(f"Invalid network: {network!r}")
    match = CIDR_PATTERN.fullmatch(network)
    if match is None:
        raise InputValidationError(f"Invalid IPv4 CIDR network: {network!r}")
    octets = [int(match.group(key)) for key in "abcd"]
    prefix = int(match.group("prefix"))
    if any(octet > 255 for octet in octets) or prefix > 32:
        raise InputValidationError(f"Invalid IPv4 CIDR network: {network!r}")
    try:
        net = ipaddress.IPv4Network(network, strict=False)
    except ValueError as exc:
        raise InputValidationError(f"Invalid IPv4 CIDR network: {network!r}") from exc
    if max_hosts is not None and net.num_addresses > max_hosts:
        raise InputValidationError(
            f"Network {net} has {net.num_addresses} addresses, limit is {max_hosts}"
        )
    return net


def parse_grepable(output: str) -> list[tuple[str, list[int]]]:
    """Parse nmap ``-oG`` output into (host, open ports) pairs."""
    found: dict[str, list[int]] = {}
    for line in output.splitlines():
        if not line.startswith("Host:") or "Ports:" not in line:
            continue
        fields = line.split()
        if len(fields) < 2:
            continue
        host = fields[1]
        try:
            ipaddress.IPv4Address(host)
        except ValueError:
            continue
        ports_section = line.split("Ports:", 1)[1].split("\t", 1)[0]
        ports = found.setdefault(host, [])
        for entry in ports_section.split(","):
            parts = entry.strip().split("/")
            if len(parts) < 2 or parts[1] != "open" or not parts[0].isdigit():
                continue
            port = int(parts[0])
            if port not in ports:
                ports.append(port)
    return [(host, sorted(ports)) for host, ports in found.items() if ports]


def scan_host_to_candidate(host: ScanHost) -> RawCandidate:
    source = "active-scan+http" if host.vendor else "active-scan"
    return RawCandidate(
        ip=host.ip,
        vendor=host.vendor,
        model=host.model,
        vendor_tier=host.vendor_tier,
        source=source,
    )


class NetworkScanner:
    """Active port scan with optional HTTP signature enrichment."""

    def __init__(
        self,
        config: ScanningConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport

    def nmap_argv(self, network: ipaddress.IPv4Network) -> list[str]:
        ports = ",".join(str(port) for port in self.config.ports)
        return [
            "nmap",
            "-n",
            "-Pn",
            "-T4",
            "-p",
            ports,
            "--open",
            "-oG",
            "-",
            str(network),
        ]

    async def scan(
        self,
        network: str,
        http_enrich: bool = True,
        deadline: float | None = None,
    ) -> ScanReport:
        net = validate_network(network, self.config.max_hosts)
        loop = asyncio.get_running_loop()
        budget = min(deadline or self.config.timeout, self.config.timeout)
        started = loop.time()

        result = await run_command(self.nmap_argv(net), budget)
        if not result.timed_out and result.returncode != 0:
            raise ExternalToolFailure(
                f"nmap exited with {result.returncode}: {result.stderr.strip()}"
            )

        hosts = [
            ScanHost(ip=ip, open_ports=ports)
            for ip, ports in parse_grepable(result.stdout)
            if ipaddress.IPv4Address(ip) in net
        ]
        report = ScanReport(network=str(net), hosts=hosts, timed_out=result.timed_out)
        logger.debug(
            "nmap found %d hosts with open VoIP ports in %s%s",
            len(hosts),
            net,
            " (partial)" if result.timed_out else "",
        )

        remaining = budget - (loop.time() - started)
        if http_enrich and hosts and not result.timed_out:
            if remaining <= 0:
                report.timed_out = True
            else:
                try:
                    await asyncio.wait_for(self.enrich(hosts), timeout=remaining)
                except (asyncio.TimeoutError, TimeoutError):
                    logger.debug("HTTP enrichment stopped at deadline")
                    report.timed_out = True
        return report

    async def enrich_http(self, client: httpx.AsyncClient, host: ScanHost) -> None:
        scheme = "https" if set(host.open_ports) <= HTTPS_PORTS else "http"
        url = f"{scheme}://{host.ip}/"
        try:
            response = await client.get(url)
        except httpx.HTTPError as exc:
            logger.debug("HTTP check of %s failed: %s", url, exc)
            return
        server = response.headers.get("server", "")
        body = response.text[:HTTP_BODY_LIMIT]
        result = identify(http_server=server, http_body=body)
        host.http_server = server
        if result.known:
            host.vendor = result.vendor
            host.model = result.model
            host.vendor_tier = result.tier
            logger.debug(
                "HTTP signature at %s: %s %s", host.ip, result.vendor, result.model
            )

    async def enrich(self, hosts: list[ScanHost]) -> None:
        worker_count = min(self.config.parallel_requests, len(hosts))
        queue: asyncio.Queue[ScanHost | None] = asyncio.Queue()
        for host in hosts:
            queue.put_nowait(host)
        for _ in range(worker_count):
            queue.put_nowait(None)

        async with httpx.AsyncClient(
            timeout=self.config.http_timeout,
            verify=False,
            follow_redirects=True,
            transport=self._transport,
        ) as client:

            async def _worker() -> None:
                while True:
                    host = await queue.get()
                    if host is None:
                        return
                    await self.enrich_http(client, host)

            workers = [asyncio.create_task(_worker()) for _ in range(worker_count)]
            try:
                await asyncio.gather(*workers)
            finally:
                for worker in workers:
                    if not worker.done():
                        worker.cancel()
                await asyncio.gather(*workers, return_exceptions=True)
