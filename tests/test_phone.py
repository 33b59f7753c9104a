from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from phonepro.config import SessionConfig
from phonepro.core.phone import LOGIN_PATH, SET_PATH, PhoneSessionManager
from phonepro.errors import (
    AuthenticationFailure,
    DestructiveActionNotConfirmed,
    InputValidationError,
    NetworkTimeout,
    ProtocolError,
    SessionExpired,
)
from phonepro.models import SIPAccountConfig

ADDRESS = "192.168.1.100"


def make_manager(phone) -> PhoneSessionManager:
    return PhoneSessionManager(SessionConfig(), transport=phone.transport())


def test_login_sends_browser_headers_and_bootstrap_cookie(phone):
    manager = make_manager(phone)

    session = asyncio.run(manager.login(ADDRESS, "admin", "secret"))

    request = phone.requests[0]
    assert request.url.path == LOGIN_PATH
    assert request.headers["Cookie"] == "HttpOnly"
    assert request.headers["Origin"] == f"http://{ADDRESS}"
    assert request.headers["Referer"] == f"http://{ADDRESS}/"
    assert session.session_id == "sid1"
    assert session.cookie_header() == (
        "HttpOnly; session-identity=sid1; session-role=admin"
    )
    assert session.is_valid()
    assert manager.store.get(ADDRESS) is session


def test_session_lifetime_follows_config(phone):
    manager = PhoneSessionManager(SessionConfig(ttl=60), transport=phone.transport())

    session = asyncio.run(manager.login(ADDRESS, "admin", "secret"))

    lifetime = session.expires_at - session.authenticated_at
    assert lifetime == timedelta(seconds=60)


def test_wrong_password_creates_no_session(phone):
    manager = make_manager(phone)
    asyncio.run(manager.login(ADDRESS, "admin", "secret"))

    with pytest.raises(AuthenticationFailure):
        asyncio.run(manager.login(ADDRESS, "admin", "wrong"))

    assert manager.store.get(ADDRESS) is None


def test_forbidden_page_is_authentication_failure():
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>403 Forbidden</html>")

    transport = httpx.MockTransport(_handler)
    manager = PhoneSessionManager(SessionConfig(), transport=transport)
    with pytest.raises(AuthenticationFailure):
        asyncio.run(manager.login(ADDRESS, "admin", "secret"))


def test_timeout_maps_to_network_timeout():
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    transport = httpx.MockTransport(_handler)
    manager = PhoneSessionManager(SessionConfig(), transport=transport)
    with pytest.raises(NetworkTimeout):
        asyncio.run(manager.login(ADDRESS, "admin", "secret"))


def test_bad_address_rejected_before_any_request(phone):
    with pytest.raises(InputValidationError):
        asyncio.run(make_manager(phone).login("evil.host/../x", "admin", "secret"))
    assert phone.requests == []


def test_sip_account_written_as_pcodes(phone):
    manager = make_manager(phone)

    async def _run() -> None:
        session = await manager.login(ADDRESS, "admin", "secret")
        await manager.set_sip_account(
            session,
            SIPAccountConfig(active=True, sip_server="pbx.local", sip_user_id="200"),
        )

    asyncio.run(_run())

    (written,) = phone.writes
    assert written["P271"] == "1"
    assert written["P47"] == "pbx.local"
    assert written["P35"] == "200"
    assert phone.requests[-1].url.path == SET_PATH
    assert "session-identity=sid1" in phone.requests[-1].headers["Cookie"]


def test_sip_account_read_back(phone):
    phone.params.update(
        {"P401": "1", "P402": "pbx.local", "P404": "201", "P407": "Bob"}
    )
    manager = make_manager(phone)

    async def _run() -> SIPAccountConfig:
        session = await manager.login(ADDRESS, "admin", "secret")
        return await manager.get_sip_account(session, account=2)

    account = asyncio.run(_run())
    assert account.active is True
    assert account.sip_server == "pbx.local"
    assert account.sip_user_id == "201"
    assert account.display_name == "Bob"


def test_device_info(phone):
    manager = make_manager(phone)

    async def _run():
        session = await manager.login(ADDRESS, "admin", "secret")
        return await manager.get_device_info(session)

    info = asyncio.run(_run())
    assert info.phone_model == "GXP1630"
    assert info.prog_version == "1.0.11.23"
    query = phone.requests[-1].url.params["request"]
    assert query.split(":")[0] == "vendor_name"


def test_device_side_expiry_triggers_exactly_one_relogin(phone):
    manager = make_manager(phone)

    async def _run():
        session = await manager.login(ADDRESS, "admin", "secret")
        phone.expire_sessions()
        return await manager.get_parameters(session, ["phone_model"])

    values = asyncio.run(_run())
    assert values == {"phone_model": "GXP1630"}
    assert phone.logins == 2
    assert manager.store.get(ADDRESS).session_id == "sid2"


def test_local_expiry_triggers_exactly_one_relogin(phone):
    manager = make_manager(phone)

    async def _run():
        session = await manager.login(ADDRESS, "admin", "secret")
        session.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
        return await manager.get_parameters(session, ["phone_model"])

    asyncio.run(_run())
    assert phone.logins == 2


def test_relogin_happens_once_then_fails(phone):
    manager = make_manager(phone)

    async def _run():
        session = await manager.login(ADDRESS, "admin", "secret")
        phone.always_expired = True
        await manager.get_parameters(session, ["phone_model"])

    with pytest.raises(SessionExpired):
        asyncio.run(_run())
    assert phone.logins == 2


def test_expired_session_without_credentials_fails(phone):
    manager = make_manager(phone)

    async def _run():
        session = await manager.login(ADDRESS, "admin", "secret")
        manager.logout(ADDRESS)
        phone.expire_sessions()
        await manager.get_parameters(session, ["phone_model"])

    with pytest.raises(SessionExpired):
        asyncio.run(_run())
    assert phone.logins == 1


def test_get_or_login_reuses_valid_session(phone):
    manager = make_manager(phone)

    async def _run():
        first = await manager.get_or_login(ADDRESS, "admin", "secret")
        second = await manager.get_or_login(ADDRESS, "admin", "secret")
        return first, second

    first, second = asyncio.run(_run())
    assert first is second
    assert phone.logins == 1


def test_factory_reset_needs_confirmation(phone):
    manager = make_manager(phone)

    async def _run(confirm: bool) -> None:
        session = await manager.get_or_login(ADDRESS, "admin", "secret")
        await manager.factory_reset(session, confirm=confirm)

    with pytest.raises(DestructiveActionNotConfirmed):
        asyncio.run(_run(False))
    assert phone.operations == []

    asyncio.run(_run(True))
    assert phone.operations == ["factory_reset"]


def test_reboot(phone):
    manager = make_manager(phone)

    async def _run() -> None:
        session = await manager.login(ADDRESS, "admin", "secret")
        await manager.reboot(session)

    asyncio.run(_run())
    assert phone.operations == ["reboot"]


def test_enable_tr069_writes_acs_settings(phone):
    manager = make_manager(phone)

    async def _run() -> None:
        session = await manager.login(ADDRESS, "admin", "secret")
        await manager.enable_tr069(
            session, "http://acs.example:7547/", username="cpe", password="pw"
        )

    asyncio.run(_run())
    (written,) = phone.writes
    assert written["P8020"] == "1"
    assert written["P8021"] == "http://acs.example:7547/"
    assert written["P8022"] == "pw"
    assert written["P8024"] == "300"


@pytest.mark.parametrize(
    "answer",
    [
        httpx.Response(200, json={"response": "error", "body": "other"}),
        httpx.Response(500, text="Internal Server Error"),
        httpx.Response(200, text="<html>not json</html>"),
    ],
)
def test_other_failures_are_protocol_errors_without_retry(phone, answer):
    manager = make_manager(phone)

    async def _run():
        session = await manager.login(ADDRESS, "admin", "secret")
        phone.answer = answer
        return await manager.get_parameters(session, ["phone_model"])

    with pytest.raises(ProtocolError):
        asyncio.run(_run())
    assert phone.logins == 1
    assert len(phone.requests) == 2


def test_refused_update_is_protocol_error(phone):
    manager = make_manager(phone)
    phone.set_status = "wrong"

    async def _run():
        session = await manager.login(ADDRESS, "admin", "secret")
        await manager.set_parameters(session, {"P270": "Reception"})

    with pytest.raises(ProtocolError, match="refused the update"):
        asyncio.run(_run())
    assert phone.logins == 1
