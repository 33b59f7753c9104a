from __future__ import annotations

import pytest

from phonepro.core.vendors import identify, match_text, normalize_mac, vendor_from_mac
from phonepro.models import IdentificationTier


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("00:0B:82:12:34:56", "00:0b:82:12:34:56"),
        ("00-0b-82-12-34-56", "00:0b:82:12:34:56"),
        ("000b.8212.3456", "00:0b:82:12:34:56"),
        ("000B82123456", "00:0b:82:12:34:56"),
        ("<incomplete>", ""),
        ("", ""),
    ],
)
def test_normalize_mac(value, expected):
    assert normalize_mac(value) == expected


def test_lldp_description_wins():
    result = identify(
        system_description="GrandStream GXP1630 1.0.11.23",
        http_server="Yealink embed httpd",
        mac="00:15:65:00:00:01",
    )
    assert result.vendor == "GrandStream"
    assert result.model == "GXP1630"
    assert result.tier == IdentificationTier.LLDP


def test_http_body_used_when_server_header_is_generic():
    result = identify(
        http_server="lighttpd", http_body="<title>Yealink SIP-T46S</title>"
    )
    assert result.vendor == "Yealink"
    assert result.model == "SIP-T46S"
    assert result.tier == IdentificationTier.HTTP


def test_oui_is_last_resort():
    result = identify(http_body="<html>login</html>", mac="00:04:F2:AA:BB:CC")
    assert result.vendor == "Polycom"
    assert result.model == ""
    assert result.tier == IdentificationTier.OUI


def test_unknown_device():
    result = identify(system_description="Linux router", mac="02:00:00:00:00:01")
    assert not result.known
    assert result.tier == IdentificationTier.UNKNOWN


def test_grandstream_model_alone_names_vendor():
    assert match_text("GXP2170 firmware 1.0.9") == ("GrandStream", "GXP2170")


def test_other_models_need_vendor_name():
    assert match_text("SIP-T46S") == ("", "")
    assert vendor_from_mac("00:15:65:12:34:56") == "Yealink"
