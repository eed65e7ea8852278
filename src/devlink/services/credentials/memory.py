from __future__ import annotations

from types import MappingProxyType
from typing import Any, Mapping

from devlink.services.errors import CredentialNotFoundError, CredentialStoreError

from .store import CredentialKind, CredentialStore

__all__ = ["MemoryCredentialStore"]


class MemoryCredentialStore(CredentialStore):
    """Keeps credentials in the handle itself; nothing survives the process."""

    name = "memory"

    def init(self, config: Mapping[str, Any]) -> Mapping[CredentialKind, bytes]:
        initial = (config or {}).get("initial") or {}
        if not isinstance(initial, Mapping):
            raise CredentialStoreError("memory store 'initial' must be a mapping")
        entries: dict[CredentialKind, bytes] = {}
        for key, value in initial.items():
            try:
                kind = CredentialKind(key)
            except ValueError as exc:
                raise CredentialStoreError(f"unknown credential kind: {key!r}") from exc
            entries[kind] = _as_bytes(value)
        return MappingProxyType(entries)

    def fetch(self, kind: CredentialKind, handle: Mapping[CredentialKind, bytes]) -> bytes:
        try:
            return handle[CredentialKind(kind)]
        except KeyError:
            raise CredentialNotFoundError(str(kind)) from None

    def save(self, kind: CredentialKind, data: bytes, handle: Mapping[CredentialKind, bytes]) -> Mapping[CredentialKind, bytes]:
        entries = dict(handle)
        entries[CredentialKind(kind)] = _as_bytes(data)
        return MappingProxyType(entries)


def _as_bytes(value: bytes | str) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)
