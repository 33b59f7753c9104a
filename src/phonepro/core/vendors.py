"""Vendor and model identification for VoIP phones.

Everything here is pure: callers pass in the text they observed (an LLDP
system description, an HTTP ``Server`` header and body, a MAC address) and get
back the best answer together with the tier that produced it.
"""

from __future__ import annotations

import re
import string
from dataclasses import dataclass

from phonepro.models import IdentificationTier


@dataclass(frozen=True)
class VendorSignature:
    name: str
    fragment: str
    model_pattern: re.Pattern[str]
    # model token alone is distinctive enough to name the vendor
    model_implies_vendor: bool = False


VENDORS: tuple[VendorSignature, ...] = (
    VendorSignature(
        "GrandStream",
        "grandstream",
        re.compile(r"\b(?:gxp|grp|gxv|dp|wp|gac|ht)\d+[a-z0-9]*", re.IGNORECASE),
        model_implies_vendor=True,
    ),
    VendorSignature("Yealink", "yealink", re.compile(r"\bsip-t\d+[a-z]*", re.I)),
    VendorSignature(
        "Polycom", "polycom", re.compile(r"\b(?:soundpoint|vvx\d+[a-z]*)", re.I)
    ),
    VendorSignature(
        "Cisco", "cisco", re.compile(r"\b(?:cp-\d+[a-z]*|spa\d+[a-z]*)", re.I)
    ),
    VendorSignature("Snom", "snom", re.compile(r"\bsnom\d+[a-z]*", re.I)),
    VendorSignature("Panasonic", "panasonic", re.compile(r"\bkx-\w+", re.I)),
    VendorSignature("Fanvil", "fanvil", re.compile(r"\bx\d+[a-z]*", re.I)),
)

OUI_VENDORS: dict[str, str] = {
    "00:0b:82": "GrandStream",
    "00:19:15": "GrandStream",
    "c0:74:ad": "GrandStream",
    "ec:74:d7": "GrandStream",
    "00:15:65": "Yealink",
    "80:5e:c0": "Yealink",
    "00:04:f2": "Polycom",
    "64:16:7f": "Polycom",
    "00:1e:c2": "Cisco",
    "00:50:c2": "Cisco",
    "00:04:13": "Snom",
    "00:1b:63": "Panasonic",
    "0c:38:3e": "Fanvil",
}


@dataclass(frozen=True)
class Identification:
    vendor: str = ""
    model: str = ""
    tier: IdentificationTier = IdentificationTier.UNKNOWN

    @property
    def known(self) -> bool:
        return bool(self.vendor)


UNKNOWN = Identification()


def normalize_mac(value: str) -> str:
    """Return ``aa:bb:cc:dd:ee:ff`` for any common MAC spelling, else ``""``."""
    if not value:
        return ""
    cleaned = value.strip().replace(":", "").replace("-", "").replace(".", "")
    if len(cleaned) == 12 and all(ch in string.hexdigits for ch in cleaned):
        pairs = [cleaned[i : i + 2] for i in range(0, 12, 2)]
        return ":".join(pair.lower() for pair in pairs)
    return ""


def match_text(text: str) -> tuple[str, str]:
    """Find (vendor, model) in free text; empty strings when nothing matches."""
    if not text:
        return "", ""
    lowered = text.lower()
    for signature in VENDORS:
        if signature.fragment in lowered:
            match = signature.model_pattern.search(text)
            return signature.name, match.group(0).upper() if match else ""
    for signature in VENDORS:
        if not signature.model_implies_vendor:
            continue
        match = signature.model_pattern.search(text)
        if match:
            return signature.name, match.group(0).upper()
    return "", ""


def vendor_from_mac(mac: str) -> str:
    normalized = normalize_mac(mac)
    if not normalized:
        return ""
    return OUI_VENDORS.get(normalized[:8], "")


def is_known_vendor(text: str) -> bool:
    lowered = (text or "").lower()
    return any(signature.fragment in lowered for signature in VENDORS)


def identify(
    system_description: str | None = None,
    http_server: str | None = None,
    http_body: str | None = None,
    mac: str | None = None,
) -> Identification:
    vendor, model = match_text(system_description or "")
    if vendor:
        return Identification(vendor, model, IdentificationTier.LLDP)

    # Server header is more specific than the page body
    vendor, model = match_text(http_server or "")
    if vendor and not model:
        body_vendor, body_model = match_text(http_body or "")
        if body_vendor == vendor:
            model = body_model
    if not vendor:
        vendor, model = match_text(http_body or "")
    if vendor:
        return Identification(vendor, model, IdentificationTier.HTTP)

    vendor = vendor_from_mac(mac or "")
    if vendor:
        return Identification(vendor, "", IdentificationTier.OUI)

    return UNKNOWN
