"""Device identity bootstrap: keypair, certificate and broker discovery."""
from devlink.services.device_config import DeviceOptions, ProvisioningSettings, build_options
from devlink.services.errors import DevlinkError, SessionStartError
from devlink.services.provisioning import DeviceAgent, ProvisioningState, Session, create_agent

__version__ = "0.1.0"

__all__ = [
    "DeviceAgent",
    "DeviceOptions",
    "DevlinkError",
    "ProvisioningSettings",
    "ProvisioningState",
    "Session",
    "SessionStartError",
    "build_options",
    "create_agent",
]
