"""Error classes shared by the provisioning services."""

from __future__ import annotations


class DevlinkError(RuntimeError):
    """Base error for devlink."""


class DeviceConfigError(DevlinkError):
    """Raised when startup parameters are missing or malformed."""


class CredentialStoreError(DevlinkError):
    """Raised when a credential store cannot complete an operation."""


class CredentialNotFoundError(CredentialStoreError):
    """Raised when the requested credential kind is not stored."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(f"{kind} not found in credential store")


class PairingTransportError(DevlinkError):
    """Raised when a pairing request cannot be delivered or answered."""


class SessionStartError(DevlinkError):
    """Raised when a provisioning session cannot start."""


__all__ = [
    "DevlinkError",
    "DeviceConfigError",
    "CredentialStoreError",
    "CredentialNotFoundError",
    "PairingTransportError",
    "SessionStartError",
]
