"""Provisioning request and result models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class ProvisioningTarget(BaseModel):
    """Identifies the phone to provision, either on the LAN or by serial."""

    address: str | None = None
    username: str | None = None
    password: str | None = None
    serial: str | None = None


class ExtensionAccount(BaseModel):
    """PBX extension data to push to a phone."""

    extension: str
    secret: str
    name: str = ""
    sip_server: str
    account_index: int = 1


class ProvisioningResult(BaseModel):
    target: str
    method: Literal["lan", "remote"]
    status: Literal["applied", "pending"]
    request_id: str | None = None
