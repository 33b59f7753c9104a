from __future__ import annotations

import logging

from phonepro.errors import InputValidationError
from phonepro.models import (
    ExtensionAccount,
    ProvisioningResult,
    ProvisioningTarget,
    SIPAccountConfig,
)

from .phone import PhoneSessionManager
from .remote import RemoteManagementClient

logger = logging.getLogger(__name__)


def account_config(account: ExtensionAccount) -> SIPAccountConfig:
    """SIP settings that register a phone as ``account.extension``."""
    if not account.extension or not account.sip_server:
        raise InputValidationError("Extension and SIP server are required")
    name = account.name or account.extension
    return SIPAccountConfig(
        active=True,
        account_name=name,
        sip_server=account.sip_server,
        sip_user_id=account.extension,
        auth_id=account.extension,
        auth_password=account.secret,
        display_name=name,
    )


class ProvisioningOrchestrator:
    """Pushes an extension to a phone over the LAN, or queues it remotely."""

    def __init__(
        self,
        phones: PhoneSessionManager,
        remote: RemoteManagementClient | None = None,
    ) -> None:
        self.phones = phones
        self.remote = remote

    async def provision_extension(
        self, target: ProvisioningTarget, account: ExtensionAccount
    ) -> ProvisioningResult:
        config = account_config(account)

        if target.address:
            username = target.username or self.phones.config.default_username
            session = await self.phones.get_or_login(
                target.address, username, target.password or ""
            )
            await self.phones.set_sip_account(session, config, account.account_index)
            logger.info(
                "Provisioned extension %s on %s", account.extension, target.address
            )
            return ProvisioningResult(
                target=target.address, method="lan", status="applied"
            )

        if target.serial:
            if self.remote is None:
                raise InputValidationError("Remote management is not configured")
            request = self.remote.configure_sip_account(
                target.serial, config, account.account_index
            )
            logger.info(
                "Queued extension %s for %s as %s",
                account.extension,
                target.serial,
                request.request_id,
            )
            return ProvisioningResult(
                target=target.serial,
                method="remote",
                status="pending",
                request_id=request.request_id,
            )

        raise InputValidationError("Target needs an address or a serial number")
