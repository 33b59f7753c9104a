"""Exception hierarchy for phonepro."""

from __future__ import annotations


class PhoneproError(Exception):
    """Base exception for phonepro."""


class InputValidationError(PhoneproError, ValueError):
    """Malformed caller input, e.g. an address range that is not IPv4 CIDR."""


class ExternalToolUnavailable(PhoneproError):
    """A discovery backend (nmap, lldpctl, ping, arp) is not installed."""


class ExternalToolFailure(PhoneproError):
    """A discovery backend exited non-zero or produced unusable output."""


class NetworkTimeout(PhoneproError, TimeoutError):
    """An outbound operation exceeded its deadline."""


class AuthenticationFailure(PhoneproError):
    """The device rejected the supplied credentials."""


class SessionExpired(PhoneproError):
    """The device no longer recognises the session, even after re-login."""


class DeviceUnreachable(PhoneproError):
    """The device could not be contacted, or has not checked in recently."""


class ProtocolError(PhoneproError):
    """The device answered with a malformed or unexpected response."""


class DestructiveActionNotConfirmed(PhoneproError):
    """A destructive operation was requested without explicit confirmation."""
