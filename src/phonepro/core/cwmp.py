"""CWMP (TR-069) SOAP envelopes: parsing CPE messages and building ACS RPCs."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from phonepro.errors import ProtocolError

NS_SOAP_ENV = "http://schemas.xmlsoap.org/soap/envelope/"
NS_SOAP_ENC = "http://schemas.xmlsoap.org/soap/encoding/"
NS_XSD = "http://www.w3.org/2001/XMLSchema"
NS_XSI = "http://www.w3.org/2001/XMLSchema-instance"
NS_CWMP = "urn:dslforum-org:cwmp-1-0"

for _prefix, _uri in (
    ("soapenv", NS_SOAP_ENV),
    ("soapenc", NS_SOAP_ENC),
    ("xsi", NS_XSI),
    ("cwmp", NS_CWMP),
):
    ET.register_namespace(_prefix, _uri)

EMPTY = ""
INFORM = "Inform"
FAULT = "Fault"

RPC_RESPONSES = {
    "SetParameterValuesResponse": "SetParameterValues",
    "GetParameterValuesResponse": "GetParameterValues",
    "RebootResponse": "Reboot",
    "FactoryResetResponse": "FactoryReset",
}


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _child(parent: ET.Element | None, name: str) -> ET.Element | None:
    if parent is None:
        return None
    for child in parent:
        if _local(child.tag) == name:
            return child
    return None


def _descendants(root: ET.Element, name: str) -> list[ET.Element]:
    return [elem for elem in root.iter() if _local(elem.tag) == name]


def _text(elem: ET.Element | None) -> str:
    if elem is None:
        return ""
    return (elem.text or "").strip()


@dataclass
class CWMPMessage:
    request_id: str
    method: str
    body: ET.Element | None = None

    @property
    def is_empty(self) -> bool:
        return self.method == EMPTY


@dataclass
class InformData:
    serial_number: str
    manufacturer: str = ""
    oui: str = ""
    product_class: str = ""
    events: list[str] = field(default_factory=list)
    parameters: dict[str, str] = field(default_factory=dict)

    def parameter(self, suffix: str) -> str:
        for name, value in self.parameters.items():
            if name.endswith(suffix):
                return value
        return ""


def parse_message(data: bytes) -> CWMPMessage:
    """Parse a CPE POST body; an empty body is the CPE asking for work."""
    if not data or not data.strip():
        return CWMPMessage(request_id="", method=EMPTY)
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise ProtocolError(f"Malformed CWMP message: {exc}") from exc
    if _local(root.tag) != "Envelope":
        raise ProtocolError(f"Expected a SOAP Envelope, got {_local(root.tag)}")

    request_id = _text(_child(_child(root, "Header"), "ID"))
    body = _child(root, "Body")
    if body is None:
        raise ProtocolError("SOAP Envelope has no Body")
    first = next(iter(body), None)
    if first is None:
        return CWMPMessage(request_id=request_id, method=EMPTY)
    return CWMPMessage(request_id=request_id, method=_local(first.tag), body=first)


def parse_inform(message: CWMPMessage) -> InformData:
    if message.method != INFORM or message.body is None:
        raise ProtocolError(f"Expected Inform, got {message.method or 'empty'}")
    device_id = _child(message.body, "DeviceId")
    serial = _text(_child(device_id, "SerialNumber"))
    if not serial:
        raise ProtocolError("Inform carries no DeviceId/SerialNumber")

    inform = InformData(
        serial_number=serial,
        manufacturer=_text(_child(device_id, "Manufacturer")),
        oui=_text(_child(device_id, "OUI")),
        product_class=_text(_child(device_id, "ProductClass")),
    )
    for event in _descendants(message.body, "EventStruct"):
        code = _text(_child(event, "EventCode"))
        if code:
            inform.events.append(code)
    inform.parameters = _parameter_values(message.body)
    return inform


def _parameter_values(root: ET.Element) -> dict[str, str]:
    values = {}
    for struct in _descendants(root, "ParameterValueStruct"):
        name = _text(_child(struct, "Name"))
        if name:
            values[name] = _text(_child(struct, "Value"))
    return values


def parse_parameter_values(message: CWMPMessage) -> dict[str, str]:
    if message.body is None:
        return {}
    return _parameter_values(message.body)


def parse_fault(message: CWMPMessage) -> tuple[str, str] | None:
    """Return (code, text) for a SOAP/CWMP fault, preferring the CWMP detail."""
    if message.method != FAULT or message.body is None:
        return None
    code = _descendants(message.body, "FaultCode")
    text = _descendants(message.body, "FaultString")
    if code:
        return _text(code[0]), _text(text[0]) if text else ""
    return (
        _text(_child(message.body, "faultcode")),
        _text(_child(message.body, "faultstring")),
    )


# -- builders ---------------------------------------------------------------


def _q(namespace: str, name: str) -> str:
    return f"{{{namespace}}}{name}"


def _envelope(request_id: str) -> tuple[ET.Element, ET.Element]:
    # xsd is only referenced from attribute values, so declare it by hand
    envelope = ET.Element(_q(NS_SOAP_ENV, "Envelope"), {"xmlns:xsd": NS_XSD})
    header = ET.SubElement(envelope, _q(NS_SOAP_ENV, "Header"))
    cwmp_id = ET.SubElement(
        header, _q(NS_CWMP, "ID"), {_q(NS_SOAP_ENV, "mustUnderstand"): "1"}
    )
    cwmp_id.text = request_id
    body = ET.SubElement(envelope, _q(NS_SOAP_ENV, "Body"))
    return envelope, body


def _serialize(envelope: ET.Element) -> bytes:
    return ET.tostring(envelope, encoding="utf-8", xml_declaration=True)


def xsd_type(name: str, value: str) -> str:
    if name.endswith("Port") and value.isdigit():
        return "xsd:unsignedInt"
    return "xsd:string"


def inform_response(request_id: str) -> bytes:
    envelope, body = _envelope(request_id)
    response = ET.SubElement(body, _q(NS_CWMP, "InformResponse"))
    ET.SubElement(response, "MaxEnvelopes").text = "1"
    return _serialize(envelope)


def set_parameter_values(
    request_id: str, params: Mapping[str, str], parameter_key: str = ""
) -> bytes:
    envelope, body = _envelope(request_id)
    rpc = ET.SubElement(body, _q(NS_CWMP, "SetParameterValues"))
    plist = ET.SubElement(
        rpc,
        "ParameterList",
        {_q(NS_SOAP_ENC, "arrayType"): f"cwmp:ParameterValueStruct[{len(params)}]"},
    )
    for name, value in params.items():
        struct = ET.SubElement(plist, "ParameterValueStruct")
        ET.SubElement(struct, "Name").text = name
        value_elem = ET.SubElement(
            struct, "Value", {_q(NS_XSI, "type"): xsd_type(name, str(value))}
        )
        value_elem.text = str(value)
    ET.SubElement(rpc, "ParameterKey").text = parameter_key
    return _serialize(envelope)


def get_parameter_values(request_id: str, names: Iterable[str]) -> bytes:
    names = list(names)
    envelope, body = _envelope(request_id)
    rpc = ET.SubElement(body, _q(NS_CWMP, "GetParameterValues"))
    plist = ET.SubElement(
        rpc,
        "ParameterNames",
        {_q(NS_SOAP_ENC, "arrayType"): f"xsd:string[{len(names)}]"},
    )
    for name in names:
        ET.SubElement(plist, "string").text = name
    return _serialize(envelope)


def reboot(request_id: str, command_key: str = "") -> bytes:
    envelope, body = _envelope(request_id)
    rpc = ET.SubElement(body, _q(NS_CWMP, "Reboot"))
    ET.SubElement(rpc, "CommandKey").text = command_key
    return _serialize(envelope)


def factory_reset(request_id: str) -> bytes:
    envelope, body = _envelope(request_id)
    ET.SubElement(body, _q(NS_CWMP, "FactoryReset"))
    return _serialize(envelope)
