"""LLDP neighbour discovery.

Neighbours come from the local ``lldpd`` daemon (``lldpctl``) when it
answers, otherwise from raw frames captured with ``tcpdump``. Both paths end
up as :class:`LLDPNeighbor` records which are filtered down to phones.
"""

from __future__ import annotations

import asyncio
import ipaddress
import json
import logging
import re
import struct
from dataclasses import dataclass, field

from phonepro.config import DiscoveryConfig
from phonepro.errors import (
    ExternalToolFailure,
    ExternalToolUnavailable,
    NetworkTimeout,
    PhoneproError,
)
from phonepro.models import IdentificationTier, RawCandidate

from .process import run_command, tool_available
from .vendors import identify, is_known_vendor, match_text, normalize_mac

logger = logging.getLogger(__name__)

LLDP_MULTICAST = bytes.fromhex("0180c200000e")
LLDP_ETHERTYPE = 0x88CC
VLAN_ETHERTYPE = 0x8100

TLV_END = 0
TLV_CHASSIS_ID = 1
TLV_PORT_ID = 2
TLV_TTL = 3
TLV_PORT_DESCRIPTION = 4
TLV_SYSTEM_NAME = 5
TLV_SYSTEM_DESCRIPTION = 6
TLV_CAPABILITIES = 7
TLV_MANAGEMENT_ADDRESS = 8
TLV_ORG_SPECIFIC = 127

CAPABILITY_BITS = (
    "other",
    "repeater",
    "bridge",
    "wlan-ap",
    "router",
    "telephone",
    "docsis",
    "station",
)

# lldpctl spells capabilities its own way
LLDPCTL_CAPABILITIES = {
    "other": "other",
    "repeater": "repeater",
    "bridge": "bridge",
    "wlan": "wlan-ap",
    "router": "router",
    "tel": "telephone",
    "docsis": "docsis",
    "station": "station",
}

IEEE_8021_OUI = bytes.fromhex("0080c2")
LLDP_MED_OUI = bytes.fromhex("0012bb")

MED_NETWORK_POLICY = 2
MED_SOFTWARE_REVISION = 7
MED_SERIAL_NUMBER = 8
MED_MANUFACTURER = 9
MED_MODEL_NAME = 10

PCAP_LINKTYPE_ETHERNET = 1
PCAP_LINKTYPE_LINUX_SLL = 113


@dataclass
class LLDPNeighbor:
    interface: str = ""
    chassis_id: str = ""
    mac: str = ""
    ip: str = ""
    port_id: str = ""
    port_description: str = ""
    ttl: int | None = None
    system_name: str = ""
    system_description: str = ""
    capabilities: list[str] = field(default_factory=list)
    system_capabilities: list[str] = field(default_factory=list)
    vlan: int | None = None
    serial: str = ""
    software_version: str = ""
    manufacturer: str = ""
    model_name: str = ""

    def is_phone(self) -> bool:
        if "telephone" in self.capabilities or "telephone" in self.system_capabilities:
            return True
        if is_known_vendor(self.system_description) or is_known_vendor(
            self.system_name
        ):
            return True
        return bool(match_text(self.system_description)[1])

    def to_candidate(self) -> RawCandidate:
        result = identify(system_description=self.system_description)
        vendor, model, tier = result.vendor, result.model, result.tier
        if not vendor and self.manufacturer:
            vendor, _ = match_text(self.manufacturer)
            vendor = vendor or self.manufacturer
            tier = IdentificationTier.LLDP
        if not model and self.model_name:
            model = self.model_name.upper()
        if not vendor:
            vendor, hostname_model = match_text(self.system_name)
            model = model or hostname_model
            if vendor:
                tier = IdentificationTier.LLDP
        return RawCandidate(
            ip=self.ip,
            mac=self.mac,
            hostname=self.system_name,
            vendor=vendor,
            model=model,
            port_id=self.port_description or self.port_id,
            vlan=self.vlan,
            capabilities=list(self.capabilities),
            source="lldp",
            vendor_tier=tier if vendor else IdentificationTier.UNKNOWN,
            serial=self.serial,
            software_version=self.software_version,
            system_description=self.system_description,
        )


@dataclass
class LLDPReadResult:
    neighbors: list[LLDPNeighbor] = field(default_factory=list)
    error: PhoneproError | None = None

    def candidates(self) -> list[RawCandidate]:
        return [n.to_candidate() for n in self.neighbors if n.is_phone()]


# -- raw frames ---------------------------------------------------------------


def _format_mac(raw: bytes) -> str:
    return ":".join(f"{b:02x}" for b in raw)


def _decode_text(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").strip("\x00 ").strip()


CHASSIS_SUBTYPE_MAC = 4
PORT_SUBTYPE_MAC = 3
ID_SUBTYPE_NETWORK_ADDRESS = 5


def _decode_id(subtype: int, raw: bytes, mac_subtype: int) -> tuple[str, str, str]:
    """Decode a chassis/port id into (text, mac, ip)."""
    if subtype == mac_subtype and len(raw) == 6:
        mac = _format_mac(raw)
        return mac, mac, ""
    if subtype == ID_SUBTYPE_NETWORK_ADDRESS and len(raw) == 5 and raw[0] == 1:
        ip = str(ipaddress.IPv4Address(raw[1:]))
        return ip, "", ip
    return _decode_text(raw), "", ""


def _capability_names(bitmap: int) -> list[str]:
    return [name for bit, name in enumerate(CAPABILITY_BITS) if bitmap & (1 << bit)]


def _parse_management_address(value: bytes) -> tuple[str, str]:
    addr_len = value[0]
    if addr_len < 2 or len(value) < 1 + addr_len:
        raise ValueError("management address shorter than declared")
    subtype = value[1]
    address = value[2 : 1 + addr_len]
    if subtype == 1 and len(address) == 4:
        return str(ipaddress.IPv4Address(address)), ""
    if subtype == 6 and len(address) == 6:
        return "", _format_mac(address)
    return "", ""


def _apply_org_specific(neighbor: LLDPNeighbor, value: bytes) -> None:
    if len(value) < 4:
        raise ValueError("organisationally specific TLV too short")
    oui, subtype, data = value[:3], value[3], value[4:]
    if oui == IEEE_8021_OUI and subtype == 1 and len(data) >= 2:
        pvid = struct.unpack("!H", data[:2])[0]
        if pvid:
            neighbor.vlan = pvid
    elif oui == LLDP_MED_OUI:
        if subtype == MED_NETWORK_POLICY and len(data) >= 4:
            # app type, then U/T/X flags followed by a 12-bit VLAN id
            vlan = ((data[1] & 0x1F) << 7) | (data[2] >> 1)
            if vlan and neighbor.vlan is None:
                neighbor.vlan = vlan
        elif subtype == MED_SOFTWARE_REVISION:
            neighbor.software_version = _decode_text(data)
        elif subtype == MED_SERIAL_NUMBER:
            neighbor.serial = _decode_text(data)
        elif subtype == MED_MANUFACTURER:
            neighbor.manufacturer = _decode_text(data)
        elif subtype == MED_MODEL_NAME:
            neighbor.model_name = _decode_text(data)


def _apply_tlv(neighbor: LLDPNeighbor, tlv_type: int, value: bytes) -> None:
    if tlv_type == TLV_CHASSIS_ID:
        if len(value) < 2:
            raise ValueError("chassis id too short")
        text, mac, ip = _decode_id(value[0], value[1:], CHASSIS_SUBTYPE_MAC)
        neighbor.chassis_id = text
        neighbor.mac = neighbor.mac or mac
        neighbor.ip = neighbor.ip or ip
    elif tlv_type == TLV_PORT_ID:
        if len(value) < 2:
            raise ValueError("port id too short")
        text, mac, _ = _decode_id(value[0], value[1:], PORT_SUBTYPE_MAC)
        neighbor.port_id = text
        neighbor.mac = neighbor.mac or mac
    elif tlv_type == TLV_TTL:
        if len(value) != 2:
            raise ValueError("ttl must be two bytes")
        neighbor.ttl = struct.unpack("!H", value)[0]
    elif tlv_type == TLV_PORT_DESCRIPTION:
        neighbor.port_description = _decode_text(value)
    elif tlv_type == TLV_SYSTEM_NAME:
        neighbor.system_name = _decode_text(value)
    elif tlv_type == TLV_SYSTEM_DESCRIPTION:
        neighbor.system_description = _decode_text(value)
    elif tlv_type == TLV_CAPABILITIES:
        if len(value) != 4:
            raise ValueError("capabilities must be four bytes")
        system, enabled = struct.unpack("!HH", value)
        neighbor.system_capabilities = _capability_names(system)
        neighbor.capabilities = _capability_names(enabled)
    elif tlv_type == TLV_MANAGEMENT_ADDRESS:
        if not value:
            raise ValueError("empty management address")
        ip, mac = _parse_management_address(value)
        neighbor.ip = neighbor.ip or ip
        neighbor.mac = neighbor.mac or mac
    elif tlv_type == TLV_ORG_SPECIFIC:
        _apply_org_specific(neighbor, value)


def parse_lldp_tlvs(payload: bytes) -> LLDPNeighbor:
    """Parse an LLDPDU, skipping TLVs whose contents are malformed.

    A TLV whose declared length runs past the end of the payload ends the
    parse; everything decoded up to that point is kept.
    """
    neighbor = LLDPNeighbor()
    offset = 0
    while offset + 2 <= len(payload):
        header = struct.unpack("!H", payload[offset : offset + 2])[0]
        tlv_type = (header >> 9) & 0x7F
        length = header & 0x1FF
        offset += 2
        if tlv_type == TLV_END:
            break
        if offset + length > len(payload):
            logger.debug("Truncated LLDP TLV type %d (len %d)", tlv_type, length)
            break
        value = payload[offset : offset + length]
        offset += length
        try:
            _apply_tlv(neighbor, tlv_type, value)
        except (ValueError, struct.error) as exc:
            logger.debug("Skipping malformed LLDP TLV type %d: %s", tlv_type, exc)
    return neighbor


def parse_lldp_frame(frame: bytes) -> LLDPNeighbor | None:
    """Parse an Ethernet frame; ``None`` when it is not an LLDP frame."""
    if len(frame) < 14:
        return None
    ethertype = struct.unpack("!H", frame[12:14])[0]
    offset = 14
    if ethertype == VLAN_ETHERTYPE and len(frame) >= 18:
        ethertype = struct.unpack("!H", frame[16:18])[0]
        offset = 18
    if ethertype != LLDP_ETHERTYPE:
        return None
    neighbor = parse_lldp_tlvs(frame[offset:])
    if not neighbor.mac:
        neighbor.mac = _format_mac(frame[6:12])
    return neighbor


def _frame_from_sll(packet: bytes) -> bytes | None:
    # Linux cooked capture: 16-byte header, link address at 6..14, protocol last
    if len(packet) < 16:
        return None
    return LLDP_MULTICAST + packet[6:12] + packet[14:16] + packet[16:]


def parse_pcap(data: bytes) -> list[LLDPNeighbor]:
    """Extract LLDP neighbours from a classic pcap byte stream.

    Frames that fail to parse are skipped; a truncated trailing record ends
    the read.
    """
    if len(data) < 24:
        return []
    magic = data[:4]
    if magic in (b"\xd4\xc3\xb2\xa1", b"\x4d\x3c\xb2\xa1"):
        endian = "<"
    elif magic in (b"\xa1\xb2\xc3\xd4", b"\xa1\xb2\x3c\x4d"):
        endian = ">"
    else:
        logger.debug("Not a pcap stream (magic %s)", magic.hex())
        return []
    linktype = struct.unpack(endian + "I", data[20:24])[0]

    neighbors: list[LLDPNeighbor] = []
    offset = 24
    while offset + 16 <= len(data):
        incl_len = struct.unpack(endian + "I", data[offset + 8 : offset + 12])[0]
        offset += 16
        packet = data[offset : offset + incl_len]
        offset += incl_len
        if len(packet) < incl_len:
            break
        frame: bytes | None = packet
        if linktype == PCAP_LINKTYPE_LINUX_SLL:
            frame = _frame_from_sll(packet)
        elif linktype != PCAP_LINKTYPE_ETHERNET:
            continue
        if frame is None:
            continue
        try:
            neighbor = parse_lldp_frame(frame)
        except (ValueError, struct.error) as exc:
            logger.debug("Skipping unreadable frame: %s", exc)
            continue
        if neighbor is not None:
            neighbors.append(neighbor)
    return neighbors


# -- lldpctl output -----------------------------------------------------------


def _capability(name: str) -> str:
    return LLDPCTL_CAPABILITIES.get(name.strip().lower(), name.strip().lower())


def _values(node: object) -> list[dict]:
    if isinstance(node, list):
        return [item for item in node if isinstance(item, dict)]
    if isinstance(node, dict):
        return [node]
    return []


def _first_value(node: object) -> str:
    for item in _values(node):
        value = item.get("value")
        if value:
            return str(value)
    return ""


def _apply_id(neighbor: LLDPNeighbor, ids: object, port: bool = False) -> None:
    for item in _values(ids):
        kind = str(item.get("type", "")).lower()
        value = str(item.get("value", ""))
        if kind == "mac":
            neighbor.mac = neighbor.mac or normalize_mac(value)
        elif kind == "ip" and not port:
            neighbor.ip = neighbor.ip or value
        if port:
            neighbor.port_id = neighbor.port_id or value
        else:
            neighbor.chassis_id = neighbor.chassis_id or value


def parse_lldpctl_json0(output: str) -> list[LLDPNeighbor]:
    data = json.loads(output)
    neighbors = []
    for lldp in _values(data.get("lldp") if isinstance(data, dict) else None):
        for iface in _values(lldp.get("interface")):
            neighbor = LLDPNeighbor(interface=str(iface.get("name", "")))
            for chassis in _values(iface.get("chassis")):
                _apply_id(neighbor, chassis.get("id"))
                neighbor.system_name = _first_value(chassis.get("name"))
                neighbor.system_description = _first_value(chassis.get("descr"))
                mgmt_ip = _first_value(chassis.get("mgmt-ip"))
                if mgmt_ip and not neighbor.ip:
                    neighbor.ip = mgmt_ip
                for cap in _values(chassis.get("capability")):
                    name = _capability(str(cap.get("type", "")))
                    neighbor.system_capabilities.append(name)
                    if cap.get("enabled"):
                        neighbor.capabilities.append(name)
            for port in _values(iface.get("port")):
                _apply_id(neighbor, port.get("id"), port=True)
                neighbor.port_description = _first_value(port.get("descr"))
                ttl = _first_value(port.get("ttl"))
                if ttl.isdigit():
                    neighbor.ttl = int(ttl)
            for vlan in _values(iface.get("vlan")):
                vlan_id = str(vlan.get("vlan-id", ""))
                if vlan_id.isdigit():
                    neighbor.vlan = int(vlan_id)
            for med in _values(iface.get("lldp-med")):
                for inventory in _values(med.get("inventory")):
                    neighbor.serial = _first_value(inventory.get("serial"))
                    neighbor.software_version = _first_value(
                        inventory.get("software")
                    )
                    neighbor.manufacturer = _first_value(
                        inventory.get("manufacturer")
                    )
                    neighbor.model_name = _first_value(inventory.get("model"))
            neighbors.append(neighbor)
    return neighbors


_PLAIN_INTERFACE = re.compile(r"^Interface:\s*([^,\s]+)")
_PLAIN_FIELD = re.compile(r"^([A-Za-z][A-Za-z -]*?):\s*(.*)$")


def parse_lldpctl_plain(output: str) -> list[LLDPNeighbor]:
    """Parse the human-readable ``lldpctl``/``lldpcli show neighbors`` text."""
    neighbors: list[LLDPNeighbor] = []
    current: LLDPNeighbor | None = None
    for raw_line in output.splitlines():
        line = raw_line.strip()
        match = _PLAIN_INTERFACE.match(line)
        if match:
            current = LLDPNeighbor(interface=match.group(1))
            neighbors.append(current)
            continue
        if current is None:
            continue
        match = _PLAIN_FIELD.match(line)
        if not match:
            continue
        key, value = match.group(1).strip(), match.group(2).strip()
        if key == "ChassisID":
            kind, _, ident = value.partition(" ")
            if kind == "mac":
                current.mac = current.mac or normalize_mac(ident)
            elif kind == "ip":
                current.ip = current.ip or ident
            current.chassis_id = ident or value
        elif key == "SysName":
            current.system_name = value
        elif key == "SysDescr":
            current.system_description = value
        elif key == "MgmtIP":
            if not current.ip and ":" not in value:
                current.ip = value
        elif key == "Capability":
            name, _, state = value.partition(",")
            cap = _capability(name)
            current.system_capabilities.append(cap)
            if state.strip() == "on":
                current.capabilities.append(cap)
        elif key == "PortID":
            kind, _, ident = value.partition(" ")
            if kind == "mac":
                current.mac = current.mac or normalize_mac(ident)
            current.port_id = ident or value
        elif key == "PortDescr":
            current.port_description = value
        elif key == "TTL" and value.isdigit():
            current.ttl = int(value)
        elif key == "VLAN":
            vlan_id = value.split(",", 1)[0].strip()
            if vlan_id.isdigit():
                current.vlan = int(vlan_id)
        elif key == "Serial Number":
            current.serial = value
        elif key == "Software Revision":
            current.software_version = value
        elif key == "Manufacturer":
            current.manufacturer = value
        elif key == "Model":
            current.model_name = value
    return neighbors


def parse_lldpctl_keyvalue(output: str) -> list[LLDPNeighbor]:
    """Parse ``lldpctl -f keyvalue``; one neighbour per interface."""
    by_interface: dict[str, LLDPNeighbor] = {}
    for raw_line in output.splitlines():
        key, sep, value = raw_line.strip().partition("=")
        if not sep or not key.startswith("lldp."):
            continue
        parts = key.split(".")
        if len(parts) < 3:
            continue
        iface, path = parts[1], ".".join(parts[2:])
        neighbor = by_interface.setdefault(iface, LLDPNeighbor(interface=iface))
        if path == "chassis.mac":
            neighbor.mac = normalize_mac(value)
            neighbor.chassis_id = neighbor.chassis_id or value
        elif path in ("chassis.mgmt-ip", "chassis.ip"):
            if ":" not in value and not neighbor.ip:
                neighbor.ip = value
        elif path == "chassis.name":
            neighbor.system_name = value
        elif path == "chassis.descr":
            neighbor.system_description = value
        elif path.startswith("chassis.") and path.endswith(".enabled"):
            cap = _capability(path.split(".")[1])
            neighbor.system_capabilities.append(cap)
            if value == "on":
                neighbor.capabilities.append(cap)
        elif path in ("port.mac", "port.ifname", "port.local"):
            if path == "port.mac":
                neighbor.mac = neighbor.mac or normalize_mac(value)
            neighbor.port_id = value
        elif path == "port.descr":
            neighbor.port_description = value
        elif path in ("vlan.vlan-id", "vlan") and value.split(",")[0].isdigit():
            neighbor.vlan = int(value.split(",")[0])
        elif path == "lldp-med.inventory.serial":
            neighbor.serial = value
        elif path == "lldp-med.inventory.software":
            neighbor.software_version = value
        elif path == "lldp-med.inventory.manufacturer":
            neighbor.manufacturer = value
        elif path == "lldp-med.inventory.model":
            neighbor.model_name = value
    return list(by_interface.values())


LLDPCTL_FORMATS = (
    ("json0", parse_lldpctl_json0),
    ("plain", parse_lldpctl_plain),
    ("keyvalue", parse_lldpctl_keyvalue),
)


class LLDPDiscoverer:
    """Read LLDP neighbours and keep the ones that look like phones."""

    def __init__(self, config: DiscoveryConfig) -> None:
        self.config = config

    async def read(self, deadline: float | None = None) -> LLDPReadResult:
        timeout = min(deadline or self.config.lldp_timeout, self.config.lldp_timeout)
        can_capture = bool(self.config.lldp_interface) and tool_available("tcpdump")
        if tool_available("lldpctl"):
            loop = asyncio.get_running_loop()
            started = loop.time()
            result = await self._read_lldpctl(timeout)
            if not can_capture or not isinstance(
                result.error, ExternalToolUnavailable
            ):
                return result
            remaining = timeout - (loop.time() - started)
            if remaining <= 0:
                return LLDPReadResult(
                    error=NetworkTimeout(f"LLDP read exceeded {timeout:.1f}s")
                )
            logger.debug(
                "%s; capturing on %s", result.error, self.config.lldp_interface
            )
            return await self._capture(remaining)
        if can_capture:
            return await self._capture(timeout)
        error = ExternalToolUnavailable(
            "lldpctl is not installed and no capture interface is configured"
        )
        logger.debug("LLDP discovery unavailable: %s", error)
        return LLDPReadResult(error=error)

    async def discover(self, deadline: float | None = None) -> LLDPReadResult:
        result = await self.read(deadline)
        phones = [n for n in result.neighbors if n.is_phone()]
        logger.debug(
            "LLDP: %d neighbours, %d look like phones",
            len(result.neighbors),
            len(phones),
        )
        return LLDPReadResult(neighbors=phones, error=result.error)

    async def _read_lldpctl(self, timeout: float) -> LLDPReadResult:
        parse_error: PhoneproError | None = None
        refusals = []
        for fmt, parser in LLDPCTL_FORMATS:
            try:
                result = await run_command(["lldpctl", "-f", fmt], timeout)
            except ExternalToolUnavailable as exc:
                return LLDPReadResult(error=exc)
            if result.timed_out:
                return LLDPReadResult(
                    error=NetworkTimeout(f"lldpctl -f {fmt} exceeded {timeout:.1f}s")
                )
            if result.returncode != 0:
                refusals.append(f"{fmt}: {result.stderr.strip() or result.returncode}")
                continue
            try:
                neighbors = parser(result.stdout)
            except (ValueError, AttributeError) as exc:
                logger.debug("Could not parse lldpctl %s output: %s", fmt, exc)
                parse_error = ExternalToolFailure(f"unparseable lldpctl {fmt} output")
                continue
            return LLDPReadResult(neighbors=neighbors)
        if parse_error is not None:
            return LLDPReadResult(error=parse_error)
        # every format refused: lldpctl is there but lldpd is not answering
        return LLDPReadResult(
            error=ExternalToolUnavailable(
                f"lldpd is not answering ({'; '.join(refusals)})"
            )
        )

    async def _capture(self, timeout: float) -> LLDPReadResult:
        argv = [
            "tcpdump",
            "-i",
            self.config.lldp_interface,
            "-U",
            "-w",
            "-",
            "-c",
            "10",
            "ether",
            "proto",
            str(LLDP_ETHERTYPE),
        ]
        try:
            result = await run_command(argv, timeout)
        except ExternalToolUnavailable as exc:
            return LLDPReadResult(error=exc)
        if not result.timed_out and result.returncode not in (0, None):
            return LLDPReadResult(
                error=ExternalToolFailure(
                    f"tcpdump exited with {result.returncode}: {result.stderr.strip()}"
                )
            )
        return LLDPReadResult(neighbors=parse_pcap(result.raw_stdout))
