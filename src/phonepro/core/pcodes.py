"""Translation between semantic settings and the phone's numeric P-codes."""

from __future__ import annotations

from collections.abc import Mapping

from phonepro.errors import InputValidationError
from phonepro.models import SIPAccountConfig, TR069Config

DEVICE_INFO_PARAMS = (
    "vendor_name",
    "vendor_fullname",
    "phone_model",
    "core_version",
    "base_version",
    "prog_version",
    "boot_version",
    "dsp_version",
)

SYS_OPERATION_REBOOT = "reboot"
SYS_OPERATION_FACTORY_RESET = "factory_reset"


class CodeTable:
    """Fixed two-way mapping between model field names and P-codes."""

    def __init__(self, codes: Mapping[str, str]) -> None:
        self.codes = dict(codes)
        self.fields = {code: field for field, code in self.codes.items()}
        if len(self.fields) != len(self.codes):
            raise ValueError("P-code table maps two fields to the same code")

    def code(self, field: str) -> str:
        return self.codes[field]

    def field(self, code: str) -> str:
        return self.fields[code]

    def names(self) -> list[str]:
        return list(self.codes.values())


SIP_ACCOUNT_TABLES: dict[int, CodeTable] = {
    1: CodeTable(
        {
            "active": "P271",
            "account_name": "P270",
            "sip_server": "P47",
            "sip_user_id": "P35",
            "auth_id": "P36",
            "auth_password": "P34",
            "display_name": "P3",
        }
    ),
    2: CodeTable(
        {
            "active": "P401",
            "account_name": "P417",
            "sip_server": "P402",
            "sip_user_id": "P404",
            "auth_id": "P405",
            "auth_password": "P406",
            "display_name": "P407",
        }
    ),
}

TR069_TABLE = CodeTable(
    {
        "enabled": "P8020",
        "acs_url": "P8021",
        "username": "P8023",
        "periodic_inform_interval": "P8024",
        "connection_request_port": "P8025",
    }
)

# write-only, never read back
TR069_PASSWORD_CODE = "P8022"


def sip_table(account: int) -> CodeTable:
    try:
        return SIP_ACCOUNT_TABLES[account]
    except KeyError:
        raise InputValidationError(
            f"Unsupported SIP account index {account}; "
            f"known: {sorted(SIP_ACCOUNT_TABLES)}"
        ) from None


def _flag(value: bool) -> str:
    return "1" if value else "0"


def encode_sip_account(config: SIPAccountConfig, account: int = 1) -> dict[str, str]:
    table = sip_table(account)
    values: dict[str, str] = {}
    for field, code in table.codes.items():
        value = getattr(config, field)
        values[code] = _flag(value) if isinstance(value, bool) else str(value)
    return values


def decode_sip_account(
    values: Mapping[str, object], account: int = 1
) -> SIPAccountConfig:
    table = sip_table(account)
    data: dict[str, object] = {}
    for code, field in table.fields.items():
        raw = values.get(code)
        if raw is None:
            continue
        text = str(raw)
        data[field] = text == "1" if field == "active" else text
    return SIPAccountConfig.model_validate(data)


def _optional_int(raw: object) -> int | None:
    text = str(raw or "").strip()
    return int(text) if text.isdigit() else None


def encode_tr069(config: TR069Config, password: str | None = None) -> dict[str, str]:
    values = {
        TR069_TABLE.code("enabled"): _flag(config.enabled),
        TR069_TABLE.code("acs_url"): config.acs_url,
        TR069_TABLE.code("username"): config.username,
    }
    if config.periodic_inform_interval is not None:
        values[TR069_TABLE.code("periodic_inform_interval")] = str(
            config.periodic_inform_interval
        )
    if config.connection_request_port is not None:
        values[TR069_TABLE.code("connection_request_port")] = str(
            config.connection_request_port
        )
    if password is not None:
        values[TR069_PASSWORD_CODE] = password
    return values


def decode_tr069(values: Mapping[str, object]) -> TR069Config:
    return TR069Config(
        enabled=str(values.get(TR069_TABLE.code("enabled"), "0")) == "1",
        acs_url=str(values.get(TR069_TABLE.code("acs_url")) or ""),
        username=str(values.get(TR069_TABLE.code("username")) or ""),
        periodic_inform_interval=_optional_int(
            values.get(TR069_TABLE.code("periodic_inform_interval"))
        ),
        connection_request_port=_optional_int(
            values.get(TR069_TABLE.code("connection_request_port"))
        ),
    )
