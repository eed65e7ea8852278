from .pki import KeyMaterial, KeyMaterialGenerator, KeySpec
from .validity import FRESHNESS_MARGIN, is_valid_certificate, seconds_until_expiry

__all__ = [
    "KeyMaterial",
    "KeyMaterialGenerator",
    "KeySpec",
    "FRESHNESS_MARGIN",
    "is_valid_certificate",
    "seconds_until_expiry",
]
