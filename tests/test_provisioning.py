from __future__ import annotations

import asyncio

import pytest

from phonepro.config import RemoteConfig, SessionConfig
from phonepro.core.phone import PhoneSessionManager
from phonepro.core.provisioning import ProvisioningOrchestrator, account_config
from phonepro.core.remote import RemoteManagementClient
from phonepro.errors import DeviceUnreachable, InputValidationError
from phonepro.models import ExtensionAccount, ProvisioningTarget, RequestStatus

from test_remote import SERIAL, inform

ACCOUNT = ExtensionAccount(
    extension="200", secret="s3cret", name="Front Desk", sip_server="pbx.local"
)


def test_account_config():
    config = account_config(ACCOUNT)
    assert config.active is True
    assert config.sip_user_id == "200"
    assert config.auth_id == "200"
    assert config.auth_password == "s3cret"
    assert config.display_name == "Front Desk"


def test_lan_provisioning_is_applied(phone):
    orchestrator = ProvisioningOrchestrator(
        PhoneSessionManager(SessionConfig(), transport=phone.transport())
    )
    target = ProvisioningTarget(address="192.168.1.100", password="secret")

    result = asyncio.run(orchestrator.provision_extension(target, ACCOUNT))

    assert result.method == "lan"
    assert result.status == "applied"
    assert phone.params["P35"] == "200"
    assert phone.params["P47"] == "pbx.local"


def test_lan_provisioning_is_idempotent(phone):
    orchestrator = ProvisioningOrchestrator(
        PhoneSessionManager(SessionConfig(), transport=phone.transport())
    )
    target = ProvisioningTarget(address="192.168.1.100", password="secret")

    asyncio.run(orchestrator.provision_extension(target, ACCOUNT))
    after_first = dict(phone.params)
    asyncio.run(orchestrator.provision_extension(target, ACCOUNT))

    assert phone.params == after_first
    assert phone.writes[0] == phone.writes[1]


def test_remote_provisioning_is_pending(phone):
    remote = RemoteManagementClient(RemoteConfig())
    remote.handle_inform(inform())
    orchestrator = ProvisioningOrchestrator(
        PhoneSessionManager(SessionConfig(), transport=phone.transport()), remote
    )

    result = asyncio.run(
        orchestrator.provision_extension(ProvisioningTarget(serial=SERIAL), ACCOUNT)
    )

    assert result.method == "remote"
    assert result.status == "pending"
    request = remote.get_request(result.request_id)
    assert request.status == RequestStatus.PENDING
    assert "200" in request.parameters.values()
    assert phone.requests == []


def test_remote_provisioning_of_unknown_serial(phone):
    remote = RemoteManagementClient(RemoteConfig())
    orchestrator = ProvisioningOrchestrator(
        PhoneSessionManager(SessionConfig(), transport=phone.transport()), remote
    )
    with pytest.raises(DeviceUnreachable):
        asyncio.run(
            orchestrator.provision_extension(ProvisioningTarget(serial="X1"), ACCOUNT)
        )


def test_target_needs_address_or_serial(phone):
    orchestrator = ProvisioningOrchestrator(
        PhoneSessionManager(SessionConfig(), transport=phone.transport())
    )
    with pytest.raises(InputValidationError):
        asyncio.run(orchestrator.provision_extension(ProvisioningTarget(), ACCOUNT))
