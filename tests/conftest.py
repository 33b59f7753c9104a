from __future__ import annotations

from urllib.parse import parse_qsl

import httpx
import pytest

from phonepro.config import get_settings
from phonepro.core.phone import GET_PATH, LOGIN_PATH, SET_PATH, SYS_OPERATION_PATH


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch: pytest.MonkeyPatch, tmp_path):
    monkeypatch.delenv("PHONEPRO_CONFIG", raising=False)
    monkeypatch.delenv("PHONEPRO_PASSWORD", raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class FakePhone:
    """In-memory stand-in for a phone's /cgi-bin management API."""

    def __init__(self, password: str = "secret") -> None:
        self.password = password
        self.params: dict[str, str] = {
            "vendor_name": "Grandstream",
            "vendor_fullname": "Grandstream Networks, Inc.",
            "phone_model": "GXP1630",
            "prog_version": "1.0.11.23",
        }
        self.valid_sids: set[str] = set()
        self.logins = 0
        self.always_expired = False
        # canned reply for every API call after login
        self.answer: httpx.Response | None = None
        self.set_status = "right"
        self.requests: list[httpx.Request] = []
        self.operations: list[str] = []
        self.writes: list[dict[str, str]] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def expire_sessions(self) -> None:
        self.valid_sids.clear()

    def _expired(self) -> httpx.Response:
        return httpx.Response(
            200, json={"response": "error", "body": "session-expired"}
        )

    def _sid_ok(self, sid: str | None) -> bool:
        return not self.always_expired and sid in self.valid_sids

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        form = dict(parse_qsl(request.content.decode()))

        if path == LOGIN_PATH:
            if form.get("password") != self.password:
                return httpx.Response(200, json={"response": "error", "body": "error"})
            self.logins += 1
            sid = f"sid{self.logins}"
            self.valid_sids.add(sid)
            return httpx.Response(
                200, json={"response": "success", "body": {"sid": sid, "role": "admin"}}
            )

        if self.answer is not None:
            return self.answer

        if path == GET_PATH:
            if not self._sid_ok(request.url.params.get("sid")):
                return self._expired()
            names = request.url.params["request"].split(":")
            body = {name: self.params.get(name, "") for name in names}
            return httpx.Response(200, json={"response": "success", "body": body})

        if path == SET_PATH:
            if not self._sid_ok(form.pop("sid", None)):
                return self._expired()
            self.writes.append(form)
            self.params.update(form)
            return httpx.Response(
                200, json={"response": "success", "body": {"status": self.set_status}}
            )

        if path == SYS_OPERATION_PATH:
            if not self._sid_ok(form.get("sid")):
                return self._expired()
            self.operations.append(form["request"])
            return httpx.Response(200, json={"response": "success", "body": {}})

        return httpx.Response(404)


@pytest.fixture
def phone() -> FakePhone:
    return FakePhone()
