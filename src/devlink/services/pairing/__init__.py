from .client import (
    DEFAULT_PROTOCOL,
    PairingClient,
    PairingHttpClient,
    PairingResponse,
    extract_broker_url,
    extract_certificate,
)

__all__ = [
    "DEFAULT_PROTOCOL",
    "PairingClient",
    "PairingHttpClient",
    "PairingResponse",
    "extract_broker_url",
    "extract_certificate",
]
