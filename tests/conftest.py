from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from devlink.services.credentials import CredentialKind, MemoryCredentialStore
from devlink.services.crypto import KeyMaterialGenerator, KeySpec
from devlink.services.device_config import build_options
from devlink.services.errors import CredentialStoreError
from devlink.services.pairing import PairingResponse
from devlink.services.provisioning import Session

DEVICE_ID = "2TBn-jNESuuHamE2Zo1anA"
REALM = "test"
PAIRING_URL = "https://api.example.com/pairing/v1"
BROKER_URL = "mqtts://broker.example.com:8883/"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_devlink_logger():
    yield
    logger = logging.getLogger("devlink")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


def make_certificate(*, not_after: datetime, common_name: str = f"{REALM}/{DEVICE_ID}") -> bytes:
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    not_before = min(datetime.now(timezone.utc), not_after) - timedelta(days=1)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM)


@pytest.fixture
def certificate_factory() -> Callable[..., bytes]:
    return make_certificate


@pytest.fixture
def fresh_certificate() -> bytes:
    return make_certificate(not_after=datetime.now(timezone.utc) + timedelta(days=90))


@pytest.fixture
def expiring_certificate() -> bytes:
    return make_certificate(not_after=datetime.now(timezone.utc) + timedelta(days=3))


class FlakyStore(MemoryCredentialStore):
    """Memory store that can fail or hang selected operations."""

    def __init__(self) -> None:
        super().__init__()
        self.save_failures: dict[CredentialKind, int] = {}
        self.fetch_failures: dict[CredentialKind, int] = {}
        self.keypair_check_fails = False
        self.save_delay = 0.0
        self.saved: list[tuple[CredentialKind, bytes]] = []

    def has_keypair(self, handle: Any) -> bool:
        if self.keypair_check_fails:
            raise CredentialStoreError("disk unavailable")
        return super().has_keypair(handle)

    def fetch(self, kind: CredentialKind, handle: Mapping[CredentialKind, bytes]) -> bytes:
        if self.fetch_failures.get(kind, 0) > 0:
            self.fetch_failures[kind] -= 1
            raise CredentialStoreError(f"cannot read {kind}")
        return super().fetch(kind, handle)

    def save(self, kind: CredentialKind, data: bytes, handle: Mapping[CredentialKind, bytes]):
        if self.save_delay:
            time.sleep(self.save_delay)
        if self.save_failures.get(kind, 0) > 0:
            self.save_failures[kind] -= 1
            raise CredentialStoreError(f"cannot write {kind}")
        self.saved.append((CredentialKind(kind), bytes(data)))
        return super().save(kind, data, handle)


class FakePairing:
    """Scripted pairing client; each queued outcome is a response or an exception."""

    def __init__(self, certificate: bytes | None = None, broker_url: str = BROKER_URL) -> None:
        self.exchange_outcomes: list[Any] = []
        self.info_outcomes: list[Any] = []
        self.exchange_calls: list[tuple[str, str]] = []
        self.info_calls: list[str] = []
        self.hang = False
        self._certificate = certificate
        self._broker_url = broker_url

    def default_exchange(self) -> PairingResponse:
        cert = self._certificate or make_certificate(not_after=datetime.now(timezone.utc) + timedelta(days=30))
        return PairingResponse(201, {"data": {"client_crt": cert.decode("ascii")}})

    def default_info(self) -> PairingResponse:
        return PairingResponse(
            200,
            {"data": {"version": "1.0", "status": "confirmed", "protocols": {"astarte_mqtt_v1": {"broker_url": self._broker_url}}}},
        )

    async def exchange_csr(self, device_id: str, csr: str) -> PairingResponse:
        self.exchange_calls.append((device_id, csr))
        if self.hang:
            await asyncio.sleep(3600)
        outcome = self.exchange_outcomes.pop(0) if self.exchange_outcomes else self.default_exchange()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def fetch_info(self, device_id: str) -> PairingResponse:
        self.info_calls.append(device_id)
        if self.hang:
            await asyncio.sleep(3600)
        outcome = self.info_outcomes.pop(0) if self.info_outcomes else self.default_info()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class CountingGenerator(KeyMaterialGenerator):
    def __init__(self) -> None:
        super().__init__(KeySpec(algorithm="ec"))
        self.calls = 0

    def generate(self, client_id: str):
        self.calls += 1
        return super().generate(client_id)


@pytest.fixture
def flaky_store() -> FlakyStore:
    return FlakyStore()


@pytest.fixture
def fake_pairing() -> FakePairing:
    return FakePairing()


@pytest.fixture
def generator() -> CountingGenerator:
    return CountingGenerator()


@pytest.fixture
def make_session(flaky_store: FlakyStore) -> Callable[..., Session]:
    def _make(initial: Mapping[str, bytes] | None = None, store: Any = None) -> Session:
        backend = store or flaky_store
        handle = backend.init({"initial": dict(initial or {})})
        return Session(
            pairing_url=PAIRING_URL,
            realm=REALM,
            device_id=DEVICE_ID,
            credentials_secret="secret-token",
            store=backend,
            store_handle=handle,
        )

    return _make


@pytest.fixture
def keypair_entries() -> dict[str, bytes]:
    material = KeyMaterialGenerator(KeySpec(algorithm="ec")).generate(f"{REALM}/{DEVICE_ID}")
    return {"private_key": material.private_key_pem, "csr": material.csr_pem}


@pytest.fixture
def make_options() -> Callable[..., Any]:
    def _make(**overrides: Any):
        params = {
            "pairing_url": PAIRING_URL,
            "realm": REALM,
            "device_id": DEVICE_ID,
            "credentials_secret": "secret-token",
            "credential_store": "memory",
        }
        params.update(overrides)
        return build_options(**params)

    return _make


@pytest.fixture
def pairing_factory() -> Callable[..., FakePairing]:
    return FakePairing


@pytest.fixture
def generator_factory() -> Callable[[], CountingGenerator]:
    return CountingGenerator
