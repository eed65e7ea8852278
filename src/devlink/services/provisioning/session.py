from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from devlink.services.credentials import CredentialStore

__all__ = ["Session"]


@dataclass(frozen=True, slots=True)
class Session:
    """Per-device provisioning record.

    The record never carries key material: the private key and the CSR live
    in the credential store and are fetched from there when needed.  Every
    successful step produces a new record through :meth:`with_store_handle`
    or :meth:`with_broker_url`.
    """

    pairing_url: str
    realm: str
    device_id: str
    credentials_secret: str = field(repr=False)
    store: CredentialStore = field(repr=False)
    store_handle: Any = field(repr=False)
    broker_url: str | None = None

    @property
    def client_id(self) -> str:
        return f"{self.realm}/{self.device_id}"

    @classmethod
    def from_options(cls, options: Any, *, store: CredentialStore, store_handle: Any) -> "Session":
        return cls(
            pairing_url=options.pairing_url,
            realm=options.realm,
            device_id=options.device_id,
            credentials_secret=options.credentials_secret,
            store=store,
            store_handle=store_handle,
        )

    def with_store_handle(self, handle: Any) -> "Session":
        return replace(self, store_handle=handle)

    def with_broker_url(self, broker_url: str | None) -> "Session":
        return replace(self, broker_url=broker_url)
