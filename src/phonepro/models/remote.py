"""Remote management (CWMP) models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from .device import utcnow


class RequestStatus(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in-flight"
    APPLIED = "applied"
    FAILED = "failed"


class RemoteDevice(BaseModel):
    """Device known only through its own check-ins."""

    serial_number: str
    manufacturer: str = ""
    oui: str = ""
    product_class: str = ""
    software_version: str = ""
    last_inform: datetime
    connection_request_url: str = ""
    connection_request_username: str = ""
    connection_request_password: str = ""
    parameters: dict[str, str] = Field(default_factory=dict)
    events: list[str] = Field(default_factory=list)

    @property
    def model(self) -> str:
        return self.product_class


class PendingRequest(BaseModel):
    """Command queued for delivery on the device's next check-in."""

    request_id: str
    serial_number: str
    method: str
    parameters: dict[str, str] = Field(default_factory=dict)
    names: list[str] = Field(default_factory=list)
    status: RequestStatus = RequestStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: datetime | None = None
    fault: str | None = None
    result: dict[str, str] = Field(default_factory=dict)
