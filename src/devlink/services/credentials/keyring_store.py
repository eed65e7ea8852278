from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from devlink.services.errors import CredentialNotFoundError, CredentialStoreError

from .store import CredentialKind, CredentialStore

__all__ = ["KeyringCredentialStore", "KeyringHandle"]

SERVICE_PREFIX = "devlink"


def _require_keyring():
    try:
        import keyring  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise CredentialStoreError("system keyring is unavailable") from exc
    return keyring


@dataclass(frozen=True, slots=True)
class KeyringHandle:
    service: str
    revision: int = 0


class KeyringCredentialStore(CredentialStore):
    """Stores PEM material as keyring passwords, one entry per credential kind."""

    name = "keyring"

    def init(self, config: Mapping[str, Any]) -> KeyringHandle:
        client_id = (config or {}).get("client_id")
        service = (config or {}).get("service") or (f"{SERVICE_PREFIX}/{client_id}" if client_id else None)
        if not service:
            raise CredentialStoreError("keyring store requires 'service' or 'client_id'")
        keyring = _require_keyring()
        try:
            keyring.get_keyring()
        except Exception as exc:  # pragma: no cover - backend specific errors
            raise CredentialStoreError("system keyring is unavailable") from exc
        return KeyringHandle(service=str(service))

    def fetch(self, kind: CredentialKind, handle: KeyringHandle) -> bytes:
        keyring = _require_keyring()
        try:
            value = keyring.get_password(handle.service, str(CredentialKind(kind)))
        except Exception as exc:  # pragma: no cover - backend specific errors
            raise CredentialStoreError(f"failed to load {kind} from keyring") from exc
        if not value:
            raise CredentialNotFoundError(str(kind))
        return value.encode("utf-8")

    def save(self, kind: CredentialKind, data: bytes, handle: KeyringHandle) -> KeyringHandle:
        keyring = _require_keyring()
        try:
            keyring.set_password(handle.service, str(CredentialKind(kind)), data.decode("utf-8"))
        except Exception as exc:  # pragma: no cover - backend specific errors
            raise CredentialStoreError(f"failed to write {kind} to keyring") from exc
        return KeyringHandle(service=handle.service, revision=handle.revision + 1)
