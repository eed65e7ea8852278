"""Credential store contract used by the provisioning machine.

A store never keeps mutable state of its own that the caller can observe:
every operation receives the current *handle* and ``save`` returns the handle
that reflects the write.  Callers replace their handle with the returned one.
"""
from __future__ import annotations

import abc
from enum import Enum
from typing import Any, Mapping

from devlink.services.errors import CredentialNotFoundError

__all__ = ["CredentialKind", "CredentialStore"]


class _StrEnum(str, Enum):
    def __str__(self) -> str:
        return str(self.value)


class CredentialKind(_StrEnum):
    PRIVATE_KEY = "private_key"
    CSR = "csr"
    CERTIFICATE = "certificate"


class CredentialStore(abc.ABC):
    """Durable storage for a single device's key material."""

    name: str = "abstract"

    @abc.abstractmethod
    def init(self, config: Mapping[str, Any]) -> Any:
        """Prepare the backend and return the initial handle.

        Raises:
            CredentialStoreError: if the backend cannot be used.
        """

    @abc.abstractmethod
    def fetch(self, kind: CredentialKind, handle: Any) -> bytes:
        """Return the stored bytes for ``kind``.

        Raises:
            CredentialNotFoundError: nothing is stored for ``kind``.
            CredentialStoreError: the backend failed.
        """

    @abc.abstractmethod
    def save(self, kind: CredentialKind, data: bytes, handle: Any) -> Any:
        """Atomically store ``data`` for ``kind`` and return the new handle."""

    def has(self, kind: CredentialKind, handle: Any) -> bool:
        try:
            self.fetch(kind, handle)
        except CredentialNotFoundError:
            return False
        return True

    def has_keypair(self, handle: Any) -> bool:
        return self.has(CredentialKind.PRIVATE_KEY, handle) and self.has(CredentialKind.CSR, handle)
