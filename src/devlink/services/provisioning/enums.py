"""States and actions of the provisioning lifecycle."""
from __future__ import annotations

from enum import Enum

__all__ = ["ProvisioningState", "Action"]


class _StrEnum(str, Enum):
    """Simple ``str``-backed enum compatible with Python 3.10."""

    def __str__(self) -> str:  # pragma: no cover - convenience for logging only
        return str(self.value)


class ProvisioningState(_StrEnum):
    NO_KEYPAIR = "no_keypair"
    NO_CERTIFICATE = "no_certificate"
    WAITING_FOR_INFO = "waiting_for_info"
    # ready to hand over to the transport layer
    DISCONNECTED = "disconnected"


class Action(_StrEnum):
    GENERATE_KEYPAIR = "generate_keypair"
    REQUEST_CERTIFICATE = "request_certificate"
    REQUEST_INFO = "request_info"
    CONNECT = "connect"
