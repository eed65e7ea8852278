from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]

DEFAULT_RSA_KEY_SIZE = 4096

_CURVES: dict[str, type[ec.EllipticCurve]] = {
    "secp256r1": ec.SECP256R1,
    "secp384r1": ec.SECP384R1,
    "secp521r1": ec.SECP521R1,
}


@dataclass(frozen=True, slots=True)
class KeySpec:
    """Key algorithm used for new device keypairs."""

    algorithm: str = "rsa"
    rsa_key_size: int = DEFAULT_RSA_KEY_SIZE
    ec_curve: str = "secp256r1"

    def __post_init__(self) -> None:
        if self.algorithm not in ("rsa", "ec"):
            raise ValueError(f"unsupported key algorithm: {self.algorithm!r}")
        if self.algorithm == "rsa" and self.rsa_key_size < 2048:
            raise ValueError("RSA keys must be at least 2048 bits")
        if self.algorithm == "ec" and self.ec_curve not in _CURVES:
            raise ValueError(f"unsupported EC curve: {self.ec_curve!r}")


@dataclass(frozen=True, slots=True)
class KeyMaterial:
    private_key_pem: bytes
    csr_pem: bytes


def generate_rsa_key(bits: int = DEFAULT_RSA_KEY_SIZE) -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=bits)


def generate_ec_key(curve: str = "secp256r1") -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(_CURVES[curve]())


def private_key_pem(key: PrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def make_csr(common_name: str, key: PrivateKey) -> bytes:
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    csr = x509.CertificateSigningRequestBuilder().subject_name(subject).sign(key, hashes.SHA256())
    return csr.public_bytes(serialization.Encoding.PEM)


class KeyMaterialGenerator:
    """Produces a fresh private key and a CSR whose CN is the client id."""

    def __init__(self, spec: KeySpec | None = None) -> None:
        self.spec = spec or KeySpec()

    def new_key(self) -> PrivateKey:
        if self.spec.algorithm == "ec":
            return generate_ec_key(self.spec.ec_curve)
        return generate_rsa_key(self.spec.rsa_key_size)

    def generate(self, client_id: str) -> KeyMaterial:
        key = self.new_key()
        return KeyMaterial(private_key_pem=private_key_pem(key), csr_pem=make_csr(client_id, key))


__all__ = [
    "DEFAULT_RSA_KEY_SIZE",
    "KeySpec",
    "KeyMaterial",
    "KeyMaterialGenerator",
    "generate_rsa_key",
    "generate_ec_key",
    "private_key_pem",
    "make_csr",
]
