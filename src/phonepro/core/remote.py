"""ACS side of CWMP for phones that are not reachable on the LAN.

Nothing is sent to a device directly. Callers queue a :class:`PendingRequest`
and get its correlation id back at once; the device picks the request up the
next time it opens a CWMP session (prompted, where possible, by a connection
request to its callback URL) and the request is resolved from its answer.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections import deque
from collections.abc import Callable, Coroutine, Iterable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from phonepro.config import RemoteConfig
from phonepro.errors import (
    DestructiveActionNotConfirmed,
    DeviceUnreachable,
    InputValidationError,
    ProtocolError,
)
from phonepro.models import (
    PendingRequest,
    RemoteDevice,
    RequestStatus,
    SIPAccountConfig,
)

from . import cwmp

logger = logging.getLogger(__name__)

SET_PARAMETER_VALUES = "SetParameterValues"
GET_PARAMETER_VALUES = "GetParameterValues"
REBOOT = "Reboot"
FACTORY_RESET = "FactoryReset"

VOICE_PROFILE = "InternetGatewayDevice.Services.VoiceService.1.VoiceProfile.{n}."


def sip_account_parameters(
    config: SIPAccountConfig, account: int = 1, port: int = 5060
) -> dict[str, str]:
    """TR-104 VoiceProfile parameters for one SIP account."""
    if account < 1:
        raise InputValidationError(f"Invalid voice profile index {account}")
    prefix = VOICE_PROFILE.format(n=account)
    auth_user = config.auth_id or config.sip_user_id
    enabled = "1" if config.active else "0"
    return {
        f"{prefix}Enable": enabled,
        f"{prefix}SIP.ProxyServer": config.sip_server,
        f"{prefix}SIP.ProxyServerPort": str(port),
        f"{prefix}SIP.RegistrarServer": config.sip_server,
        f"{prefix}SIP.RegistrarServerPort": str(port),
        f"{prefix}SIP.AuthUserName": auth_user,
        f"{prefix}SIP.AuthPassword": config.auth_password,
        f"{prefix}Line.1.Enable": enabled,
        f"{prefix}Line.1.DirectoryNumber": config.sip_user_id,
        f"{prefix}Line.1.SIP.AuthUserName": auth_user,
        f"{prefix}Line.1.SIP.AuthPassword": config.auth_password,
        f"{prefix}Line.1.CallingFeatures.CallerIDName": config.display_name,
    }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RemoteManagementClient:
    def __init__(
        self,
        config: RemoteConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config
        self._transport = transport
        self._clock = clock
        self._lock = threading.Lock()
        self._devices: dict[str, RemoteDevice] = {}
        self._requests: dict[str, PendingRequest] = {}
        self._queues: dict[str, deque[str]] = {}
        self._sessions: dict[str, str] = {}
        self._background: set[asyncio.Task[Any]] = set()

    # -- inbound -------------------------------------------------------------

    def handle_inform(self, body: bytes, session_key: str | None = None) -> bytes:
        """Register a device check-in and return the InformResponse envelope."""
        message = cwmp.parse_message(body)
        inform = cwmp.parse_inform(message)
        now = self._clock()

        with self._lock:
            previous = self._devices.get(inform.serial_number)
            parameters = dict(previous.parameters) if previous else {}
            parameters.update(inform.parameters)
            device = RemoteDevice(
                serial_number=inform.serial_number,
                manufacturer=inform.manufacturer,
                oui=inform.oui,
                product_class=inform.product_class,
                software_version=inform.parameter(".SoftwareVersion"),
                last_inform=now,
                connection_request_url=inform.parameter(".ConnectionRequestURL"),
                connection_request_username=(
                    previous.connection_request_username if previous else ""
                ),
                connection_request_password=(
                    previous.connection_request_password if previous else ""
                ),
                parameters=parameters,
                events=inform.events,
            )
            self._devices[device.serial_number] = device
            self._fail_in_flight(device.serial_number, now)
            if session_key is not None:
                self._start_session(session_key, device.serial_number)

        logger.info(
            "Inform from %s (%s %s) events=%s",
            device.serial_number,
            device.manufacturer,
            device.product_class,
            ",".join(device.events) or "-",
        )
        return cwmp.inform_response(message.request_id or "1")

    def _start_session(self, session_key: str, serial: str) -> None:
        # one open CWMP session per device; a new Inform abandons the old one
        stale = [key for key, owner in self._sessions.items() if owner == serial]
        for key in stale:
            del self._sessions[key]
        self._sessions[session_key] = serial

    def _fail_in_flight(self, serial: str, now: datetime) -> None:
        # a fresh Inform means any RPC sent in an earlier session went unanswered
        for request_id in list(self._requests):
            request = self._requests[request_id]
            if (
                request.serial_number == serial
                and request.status == RequestStatus.IN_FLIGHT
            ):
                request.status = RequestStatus.FAILED
                request.fault = "device opened a new session without answering"
                request.resolved_at = now
                logger.warning("Request %s to %s went unanswered", request_id, serial)

    def handle_message(self, body: bytes, session_key: str) -> bytes | None:
        """Drive one step of a CWMP session.

        Returns the next envelope to send back, or ``None`` when the ACS has
        nothing more to say (an empty HTTP 204 ends the session).
        """
        message = cwmp.parse_message(body)
        if message.method == cwmp.INFORM:
            return self.handle_inform(body, session_key)

        with self._lock:
            serial = self._sessions.get(session_key)
        if serial is None:
            raise ProtocolError("CWMP session must start with an Inform")

        if message.method in cwmp.RPC_RESPONSES:
            result = {}
            if message.method == "GetParameterValuesResponse":
                result = cwmp.parse_parameter_values(message)
            self._resolve(
                serial, message.request_id, RequestStatus.APPLIED, result=result
            )
        elif message.method == cwmp.FAULT:
            fault = cwmp.parse_fault(message) or ("", "")
            self._resolve(
                serial,
                message.request_id,
                RequestStatus.FAILED,
                fault=f"{fault[0]} {fault[1]}".strip() or "fault",
            )
        elif not message.is_empty:
            raise ProtocolError(f"Unsupported CWMP method {message.method}")

        envelope = self._next_rpc(serial)
        if envelope is None:
            with self._lock:
                self._sessions.pop(session_key, None)
            logger.debug("CWMP session with %s finished", serial)
        return envelope

    def _resolve(
        self,
        serial: str,
        request_id: str,
        status: RequestStatus,
        fault: str | None = None,
        result: Mapping[str, str] | None = None,
    ) -> None:
        now = self._clock()
        with self._lock:
            request = self._requests.get(request_id)
            if (
                request is None
                or request.serial_number != serial
                or request.status != RequestStatus.IN_FLIGHT
            ):
                logger.warning("Ignoring answer %r from %s", request_id, serial)
                return
            request.status = status
            request.fault = fault
            request.resolved_at = now
            if result:
                request.result = dict(result)
                device = self._devices.get(serial)
                if device is not None:
                    device.parameters.update(result)
            elif (
                status == RequestStatus.APPLIED
                and request.method == SET_PARAMETER_VALUES
            ):
                device = self._devices.get(serial)
                if device is not None:
                    device.parameters.update(request.parameters)
        logger.info("Request %s to %s %s", request_id, serial, status.value)

    def _next_rpc(self, serial: str) -> bytes | None:
        with self._lock:
            queue = self._queues.get(serial)
            while queue:
                request = self._requests[queue.popleft()]
                if request.status != RequestStatus.PENDING:
                    continue
                request.status = RequestStatus.IN_FLIGHT
                break
            else:
                return None

        logger.debug(
            "Delivering %s %s to %s", request.method, request.request_id, serial
        )
        if request.method == SET_PARAMETER_VALUES:
            return cwmp.set_parameter_values(
                request.request_id, request.parameters, parameter_key=request.request_id
            )
        if request.method == GET_PARAMETER_VALUES:
            return cwmp.get_parameter_values(request.request_id, request.names)
        if request.method == REBOOT:
            return cwmp.reboot(request.request_id, command_key=request.request_id)
        return cwmp.factory_reset(request.request_id)

    # -- outbound ------------------------------------------------------------

    def _is_fresh(self, device: RemoteDevice) -> bool:
        window = timedelta(seconds=self.config.freshness_window)
        return self._clock() - device.last_inform <= window

    def _enqueue(
        self,
        serial: str,
        method: str,
        parameters: Mapping[str, str] | None = None,
        names: Iterable[str] | None = None,
    ) -> PendingRequest:
        with self._lock:
            self._prune_resolved()
            device = self._devices.get(serial)
            if device is None:
                raise DeviceUnreachable(f"Device {serial} has never checked in")
            if not self._is_fresh(device):
                raise DeviceUnreachable(
                    f"Device {serial} has not checked in since {device.last_inform}"
                )
            request = PendingRequest(
                request_id=uuid.uuid4().hex,
                serial_number=serial,
                method=method,
                parameters=dict(parameters or {}),
                names=list(names or []),
                created_at=self._clock(),
            )
            self._requests[request.request_id] = request
            self._queues.setdefault(serial, deque()).append(request.request_id)
            snapshot = request.model_copy()

        logger.info("Queued %s %s for %s", method, request.request_id, serial)
        self._spawn(self.send_connection_request(serial))
        return snapshot

    def _prune_resolved(self) -> None:
        """Forget answered requests older than the freshness window."""
        cutoff = self._clock() - timedelta(seconds=self.config.freshness_window)
        expired = [
            request_id
            for request_id, request in self._requests.items()
            if request.resolved_at is not None and request.resolved_at < cutoff
        ]
        for request_id in expired:
            del self._requests[request_id]
        if expired:
            logger.debug("Dropped %d resolved requests", len(expired))

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no running loop; the next periodic Inform picks the request up
            coro.close()
            return
        task = loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for outstanding connection requests."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def send_connection_request(self, serial: str) -> bool:
        with self._lock:
            device = self._devices.get(serial)
        if device is None or not device.connection_request_url:
            logger.debug("No connection request URL for %s", serial)
            return False
        auth = None
        if device.connection_request_username:
            auth = httpx.DigestAuth(
                device.connection_request_username,
                device.connection_request_password,
            )
        try:
            async with httpx.AsyncClient(
                timeout=self.config.connection_request_timeout,
                transport=self._transport,
            ) as client:
                response = await client.get(device.connection_request_url, auth=auth)
        except httpx.HTTPError as exc:
            logger.warning("Connection request to %s failed: %s", serial, exc)
            return False
        if response.status_code not in (200, 204):
            logger.warning(
                "Connection request to %s answered HTTP %d",
                serial,
                response.status_code,
            )
            return False
        logger.debug("Connection request to %s accepted", serial)
        return True

    def set_connection_request_credentials(
        self, serial: str, username: str, password: str
    ) -> None:
        with self._lock:
            device = self._devices.get(serial)
            if device is None:
                raise DeviceUnreachable(f"Device {serial} has never checked in")
            device.connection_request_username = username
            device.connection_request_password = password

    def enqueue_parameter_change(
        self, serial: str, params: Mapping[str, str]
    ) -> PendingRequest:
        if not params:
            raise InputValidationError("No parameters to change")
        return self._enqueue(serial, SET_PARAMETER_VALUES, parameters=params)

    def get_parameter_values(self, serial: str, names: Iterable[str]) -> PendingRequest:
        names = list(names)
        if not names:
            raise InputValidationError("No parameter names requested")
        return self._enqueue(serial, GET_PARAMETER_VALUES, names=names)

    def reboot(self, serial: str) -> PendingRequest:
        return self._enqueue(serial, REBOOT)

    def factory_reset(self, serial: str, confirm: bool = False) -> PendingRequest:
        if not confirm:
            raise DestructiveActionNotConfirmed(
                f"Factory reset of {serial} needs explicit confirmation"
            )
        return self._enqueue(serial, FACTORY_RESET)

    def configure_sip_account(
        self, serial: str, config: SIPAccountConfig, account: int = 1, port: int = 5060
    ) -> PendingRequest:
        return self.enqueue_parameter_change(
            serial, sip_account_parameters(config, account, port)
        )

    # -- registry reads ------------------------------------------------------

    def list_devices(self) -> list[RemoteDevice]:
        with self._lock:
            devices = [d.model_copy(deep=True) for d in self._devices.values()]
        return sorted(devices, key=lambda device: device.serial_number)

    def get_device(self, serial: str) -> RemoteDevice | None:
        with self._lock:
            device = self._devices.get(serial)
            return device.model_copy(deep=True) if device else None

    def get_request(self, request_id: str) -> PendingRequest | None:
        with self._lock:
            request = self._requests.get(request_id)
            return request.model_copy() if request else None

    def pending_for(self, serial: str) -> list[PendingRequest]:
        with self._lock:
            return [
                request.model_copy()
                for request in self._requests.values()
                if request.serial_number == serial
                and request.status in (RequestStatus.PENDING, RequestStatus.IN_FLIGHT)
            ]
