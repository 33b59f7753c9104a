"""SIP account models."""

from __future__ import annotations

from pydantic import BaseModel


class SIPAccountConfig(BaseModel):
    """SIP account settings as seen by callers, independent of device codes."""

    active: bool = False
    account_name: str = ""
    sip_server: str = ""
    sip_user_id: str = ""
    auth_id: str = ""
    auth_password: str = ""
    display_name: str = ""


class PhoneInfo(BaseModel):
    """Identity and firmware versions reported by a phone."""

    vendor_name: str = ""
    vendor_fullname: str = ""
    phone_model: str = ""
    core_version: str = ""
    base_version: str = ""
    boot_version: str = ""
    prog_version: str = ""
    dsp_version: str = ""


class TR069Config(BaseModel):
    """Remote management settings held on a LAN phone."""

    enabled: bool = False
    acs_url: str = ""
    username: str = ""
    periodic_inform_interval: int | None = None
    connection_request_port: int | None = None
