"""Credential store contract and the bundled backends."""
from __future__ import annotations

from typing import Union

from devlink.services.errors import CredentialStoreError

from .files import FileCredentialStore, FileStoreHandle
from .keyring_store import KeyringCredentialStore, KeyringHandle
from .memory import MemoryCredentialStore
from .store import CredentialKind, CredentialStore

StoreSelector = Union[str, CredentialStore, type]

_BUILTIN: dict[str, type[CredentialStore]] = {
    MemoryCredentialStore.name: MemoryCredentialStore,
    FileCredentialStore.name: FileCredentialStore,
    KeyringCredentialStore.name: KeyringCredentialStore,
}


def resolve_store(selector: StoreSelector) -> CredentialStore:
    """Turn a backend name, class or instance into a store instance."""

    if isinstance(selector, CredentialStore):
        return selector
    if isinstance(selector, type) and issubclass(selector, CredentialStore):
        return selector()
    if isinstance(selector, str):
        cls = _BUILTIN.get(selector.strip().lower())
        if cls is None:
            raise CredentialStoreError(
                f"unknown credential store {selector!r}; available: {', '.join(sorted(_BUILTIN))}"
            )
        return cls()
    raise CredentialStoreError(f"invalid credential store selector: {selector!r}")


__all__ = [
    "CredentialKind",
    "CredentialStore",
    "FileCredentialStore",
    "FileStoreHandle",
    "KeyringCredentialStore",
    "KeyringHandle",
    "MemoryCredentialStore",
    "StoreSelector",
    "resolve_store",
]
