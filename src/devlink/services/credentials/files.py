"""File-system backed credential store."""
from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from devlink.services.errors import CredentialNotFoundError, CredentialStoreError

from .store import CredentialKind, CredentialStore

__all__ = ["FileCredentialStore", "FileStoreHandle"]

_FILENAMES = {
    CredentialKind.PRIVATE_KEY: "private_key.pem",
    CredentialKind.CSR: "csr.pem",
    CredentialKind.CERTIFICATE: "certificate.pem",
}


@dataclass(frozen=True, slots=True)
class FileStoreHandle:
    base_dir: Path
    # bumped on every save so handles compare unequal after a write
    revision: int = 0

    def path_for(self, kind: CredentialKind) -> Path:
        return self.base_dir / _FILENAMES[CredentialKind(kind)]


class FileCredentialStore(CredentialStore):
    name = "file"

    def init(self, config: Mapping[str, Any]) -> FileStoreHandle:
        raw = (config or {}).get("base_dir")
        if not raw:
            raise CredentialStoreError("file store requires 'base_dir'")
        base_dir = Path(str(raw)).expanduser()
        try:
            base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CredentialStoreError(f"cannot create {base_dir}: {exc}") from exc
        if not os.access(base_dir, os.W_OK):
            raise CredentialStoreError(f"{base_dir} is not writable")
        return FileStoreHandle(base_dir=base_dir)

    def fetch(self, kind: CredentialKind, handle: FileStoreHandle) -> bytes:
        path = handle.path_for(kind)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise CredentialNotFoundError(str(kind)) from None
        except OSError as exc:
            raise CredentialStoreError(f"cannot read {path}: {exc}") from exc

    def save(self, kind: CredentialKind, data: bytes, handle: FileStoreHandle) -> FileStoreHandle:
        path = handle.path_for(kind)
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        except OSError as exc:
            raise CredentialStoreError(f"cannot write {path}: {exc}") from exc
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            if CredentialKind(kind) is CredentialKind.PRIVATE_KEY:
                try:
                    os.chmod(tmp_name, 0o600)
                except PermissionError:
                    # best effort on platforms that do not support chmod
                    pass
            os.replace(tmp_name, path)
        except OSError as exc:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise CredentialStoreError(f"cannot write {path}: {exc}") from exc
        return FileStoreHandle(base_dir=handle.base_dir, revision=handle.revision + 1)
