from __future__ import annotations

import re
from dataclasses import dataclass, field

_MAC_SPLIT = re.compile(r"[:\-]")


@dataclass
class Redactor:
    """Mask addresses and serials in CLI output, keeping rows distinguishable."""

    enabled: bool = True
    _seen: dict[str, int] = field(default_factory=dict)

    def _token(self, value: str) -> int:
        return self._seen.setdefault(value, len(self._seen) + 1)

    def redact_ip(self, ip: str) -> str:
        if not self.enabled or not ip:
            return ip
        octets = ip.split(".")
        if len(octets) == 4 and all(octet.isdigit() for octet in octets):
            return f"x.x.x.{octets[3]}"
        return ip

    def redact_mac(self, mac: str) -> str:
        if not self.enabled or not mac:
            return mac
        octets = _MAC_SPLIT.split(mac.lower())
        if len(octets) != 6:
            return mac
        # OUI stays visible, it identifies the vendor
        oui = ":".join(octets[:3])
        return f"{oui}:xx:xx:{self._token(':'.join(octets)):02d}"

    def redact_serial(self, serial: str) -> str:
        if not self.enabled or len(serial) <= 4:
            return serial
        return "*" * (len(serial) - 4) + serial[-4:]
