"""Authenticated sessions against a phone's HTTP management API.

The API is the GrandStream-style ``/cgi-bin`` interface: a form login that
returns a session id, then colon-joined parameter reads and form-encoded
P-code writes, each carrying the session cookies. A device answer containing
``session-expired`` means it no longer knows the session; the manager then
logs in again once with the remembered credentials and retries the call.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

import httpx

from phonepro.config import SessionConfig
from phonepro.errors import (
    AuthenticationFailure,
    DestructiveActionNotConfirmed,
    DeviceUnreachable,
    InputValidationError,
    NetworkTimeout,
    ProtocolError,
    SessionExpired,
)
from phonepro.models import PhoneInfo, Session, SIPAccountConfig, TR069Config

from . import pcodes
from .sessions import SessionStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOGIN_PATH = "/cgi-bin/dologin"
GET_PATH = "/cgi-bin/api.values.get"
SET_PATH = "/cgi-bin/api.values.post"
SYS_OPERATION_PATH = "/cgi-bin/api-sys_operation"

# The firmware rejects a login that does not carry this bare cookie
BOOTSTRAP_COOKIE = "HttpOnly"
SESSION_EXPIRED_MARKER = "session-expired"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/142.0.0.0 Safari/537.36"
)

ADDRESS_PATTERN = re.compile(r"[A-Za-z0-9.\-]+(?::[0-9]{1,5})?")
PARAM_NAME_PATTERN = re.compile(r"[A-Za-z0-9_.\-]+")


def _check_address(address: str) -> str:
    if not isinstance(address, str) or not ADDRESS_PATTERN.fullmatch(address):
        raise InputValidationError(f"Invalid device address: {address!r}")
    return address


def _browser_headers(address: str) -> dict[str, str]:
    return {
        "Accept": "*/*",
        "Origin": f"http://{address}",
        "Referer": f"http://{address}/",
        "User-Agent": USER_AGENT,
    }


class PhoneSessionManager:
    """Login, parameter access and device operations for LAN phones."""

    def __init__(
        self,
        config: SessionConfig,
        store: SessionStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.store = store if store is not None else SessionStore()
        self._transport = transport
        self._credentials: dict[str, tuple[str, str]] = {}
        self._lock = threading.Lock()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.config.request_timeout, transport=self._transport
        )

    async def _send(self, address: str, request: httpx.Request) -> httpx.Response:
        async with self._client() as client:
            try:
                return await client.send(request)
            except httpx.TimeoutException as exc:
                raise NetworkTimeout(f"{address} did not answer in time") from exc
            except httpx.HTTPError as exc:
                raise DeviceUnreachable(f"Cannot reach {address}: {exc}") from exc

    # -- login ---------------------------------------------------------------

    async def login(self, address: str, username: str, password: str) -> Session:
        _check_address(address)
        headers = _browser_headers(address)
        headers["Cookie"] = BOOTSTRAP_COOKIE
        request = httpx.Request(
            "POST",
            f"http://{address}{LOGIN_PATH}",
            data={"username": username, "password": password},
            headers=headers,
        )
        try:
            response = await self._send(address, request)
            session = self._session_from_login(address, username, response)
        except AuthenticationFailure:
            # the device has dropped whatever session it had for us
            self.store.delete(address)
            logger.warning("Login to %s as %s rejected", address, username)
            raise

        self.store.put(session)
        with self._lock:
            self._credentials[address] = (username, password)
        logger.info("Logged in to %s as %s (role=%s)", address, username, session.role)
        return session

    def _session_from_login(
        self, address: str, username: str, response: httpx.Response
    ) -> Session:
        if response.status_code != 200:
            raise AuthenticationFailure(
                f"Login to {address} failed with HTTP {response.status_code}"
            )
        text = response.text
        if "Forbidden" in text:
            raise AuthenticationFailure(f"Login to {address} forbidden")
        try:
            payload = json.loads(text)
        except ValueError as exc:
            raise AuthenticationFailure(
                f"Login to {address} returned a non-JSON body"
            ) from exc
        if not isinstance(payload, dict) or payload.get("response") != "success":
            raise AuthenticationFailure(f"Login to {address} was not accepted")

        response_cookies = {
            cookie.name: cookie.value or "" for cookie in response.cookies.jar
        }
        body = payload.get("body") if isinstance(payload.get("body"), dict) else {}
        sid = str(body.get("sid") or response_cookies.get("session-identity") or "")
        if not sid:
            raise AuthenticationFailure(f"Login to {address} returned no session id")
        role = str(body.get("role") or response_cookies.get("session-role") or "admin")

        cookies = {
            BOOTSTRAP_COOKIE: "",
            "session-identity": sid,
            "session-role": role,
        }
        for name, value in response_cookies.items():
            cookies.setdefault(name, value)

        now = datetime.now(timezone.utc)
        return Session(
            address=address,
            session_id=sid,
            role=role,
            cookies=cookies,
            active=True,
            expires_at=now + timedelta(seconds=self.config.ttl),
            username=username,
            authenticated_at=now,
        )

    async def get_or_login(self, address: str, username: str, password: str) -> Session:
        session = self.store.get(address)
        if session is not None and session.is_valid() and session.username == username:
            return session
        return await self.login(address, username, password)

    def logout(self, address: str) -> bool:
        with self._lock:
            self._credentials.pop(address, None)
        removed = self.store.delete(address)
        if removed:
            logger.info("Logged out of %s", address)
        return removed

    # -- authenticated calls -------------------------------------------------

    async def _relogin(self, address: str) -> Session:
        with self._lock:
            credentials = self._credentials.get(address)
        if credentials is None:
            raise SessionExpired(f"Session for {address} expired and no credentials")
        logger.info("Session for %s expired, logging in again", address)
        return await self.login(address, *credentials)

    async def _with_session(
        self, session: Session, call: Callable[[Session], Awaitable[T]]
    ) -> T:
        """Run ``call``, re-authenticating at most once if the session lapsed."""
        address = session.address
        if not session.is_valid():
            current = self.store.get(address)
            if current is not None and current is not session and current.is_valid():
                session = current
            else:
                session = await self._relogin(address)
                try:
                    return await call(session)
                except SessionExpired as exc:
                    raise SessionExpired(
                        f"Session for {address} expired again after re-login"
                    ) from exc
        try:
            return await call(session)
        except SessionExpired:
            session = await self._relogin(address)
        try:
            return await call(session)
        except SessionExpired as exc:
            raise SessionExpired(
                f"Session for {address} expired again after re-login"
            ) from exc

    def _session_headers(self, session: Session) -> dict[str, str]:
        headers = _browser_headers(session.address)
        headers["Cookie"] = session.cookie_header()
        return headers

    async def _api_call(self, session: Session, request: httpx.Request) -> Any:
        response = await self._send(session.address, request)
        text = response.text
        if SESSION_EXPIRED_MARKER in text or response.status_code == 401:
            session.active = False
            self.store.discard(session)
            raise SessionExpired(f"{session.address} no longer accepts the session")
        if response.status_code != 200:
            raise ProtocolError(
                f"{session.address} answered HTTP {response.status_code}"
            )
        try:
            payload = json.loads(text)
        except ValueError as exc:
            raise ProtocolError(f"{session.address} returned a non-JSON body") from exc
        if not isinstance(payload, dict) or payload.get("response") != "success":
            raise ProtocolError(f"{session.address} rejected the request: {text[:200]}")
        session.last_used_at = datetime.now(timezone.utc)
        return payload.get("body")

    async def get_parameters(
        self, session: Session, names: Iterable[str]
    ) -> dict[str, str]:
        requested = list(names)
        if not requested:
            return {}
        for name in requested:
            if not PARAM_NAME_PATTERN.fullmatch(name):
                raise InputValidationError(f"Invalid parameter name: {name!r}")

        async def _call(current: Session) -> dict[str, str]:
            query = f"request={':'.join(requested)}&sid={current.session_id}"
            request = httpx.Request(
                "GET",
                f"http://{current.address}{GET_PATH}?{query}",
                headers=self._session_headers(current),
            )
            body = await self._api_call(current, request)
            if not isinstance(body, dict):
                raise ProtocolError(f"{current.address} returned no parameter map")
            return {
                key: "" if value is None else str(value) for key, value in body.items()
            }

        return await self._with_session(session, _call)

    async def set_parameters(self, session: Session, values: Mapping[str, str]) -> None:
        if not values:
            return
        for code in values:
            if not PARAM_NAME_PATTERN.fullmatch(code):
                raise InputValidationError(f"Invalid parameter code: {code!r}")

        async def _call(current: Session) -> None:
            form = {code: str(value) for code, value in values.items()}
            form["sid"] = current.session_id
            request = httpx.Request(
                "POST",
                f"http://{current.address}{SET_PATH}",
                data=form,
                headers=self._session_headers(current),
            )
            body = await self._api_call(current, request)
            if isinstance(body, dict) and body.get("status", "right") != "right":
                raise ProtocolError(
                    f"{current.address} refused the update: {body.get('status')}"
                )

        await self._with_session(session, _call)
        logger.info("Set %d parameters on %s", len(values), session.address)

    # -- device operations ---------------------------------------------------

    async def _sys_operation(self, session: Session, operation: str) -> None:
        async def _call(current: Session) -> None:
            request = httpx.Request(
                "POST",
                f"http://{current.address}{SYS_OPERATION_PATH}",
                data={"request": operation, "sid": current.session_id},
                headers=self._session_headers(current),
            )
            await self._api_call(current, request)

        await self._with_session(session, _call)

    async def reboot(self, session: Session) -> None:
        await self._sys_operation(session, pcodes.SYS_OPERATION_REBOOT)
        logger.info("Reboot requested for %s", session.address)

    async def factory_reset(self, session: Session, confirm: bool = False) -> None:
        if not confirm:
            raise DestructiveActionNotConfirmed(
                f"Factory reset of {session.address} needs explicit confirmation"
            )
        await self._sys_operation(session, pcodes.SYS_OPERATION_FACTORY_RESET)
        logger.warning("Factory reset requested for %s", session.address)

    async def get_device_info(self, session: Session) -> PhoneInfo:
        values = await self.get_parameters(session, pcodes.DEVICE_INFO_PARAMS)
        return PhoneInfo.model_validate(
            {name: values.get(name, "") for name in pcodes.DEVICE_INFO_PARAMS}
        )

    async def get_sip_account(
        self, session: Session, account: int = 1
    ) -> SIPAccountConfig:
        table = pcodes.sip_table(account)
        values = await self.get_parameters(session, table.names())
        return pcodes.decode_sip_account(values, account)

    async def set_sip_account(
        self, session: Session, config: SIPAccountConfig, account: int = 1
    ) -> None:
        await self.set_parameters(session, pcodes.encode_sip_account(config, account))

    async def get_tr069_config(self, session: Session) -> TR069Config:
        values = await self.get_parameters(session, pcodes.TR069_TABLE.names())
        return pcodes.decode_tr069(values)

    async def enable_tr069(
        self,
        session: Session,
        acs_url: str,
        username: str = "",
        password: str | None = None,
        periodic_inform_interval: int | None = 300,
        connection_request_port: int | None = None,
    ) -> None:
        """Point the phone at an ACS so it can be managed off the LAN."""
        config = TR069Config(
            enabled=True,
            acs_url=acs_url,
            username=username,
            periodic_inform_interval=periodic_inform_interval,
            connection_request_port=connection_request_port,
        )
        await self.set_parameters(session, pcodes.encode_tr069(config, password))
