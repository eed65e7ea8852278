from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse
import os

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from devlink.services.errors import DeviceConfigError
from devlink.services.ids import decode_device_id

__all__ = [
    "DeviceOptions",
    "ProvisioningSettings",
    "DeviceConfig",
    "ENV_OVERRIDES",
    "build_options",
    "load_device_config",
    "save_device_config",
]

# environment variable -> device section key
ENV_OVERRIDES = {
    "DEVLINK_PAIRING_URL": "pairing_url",
    "DEVLINK_REALM": "realm",
    "DEVLINK_DEVICE_ID": "device_id",
    "DEVLINK_CREDENTIALS_SECRET": "credentials_secret",
    "DEVLINK_STORE": "credential_store",
}


class DeviceOptions(BaseModel):
    """Startup parameters of a provisioning session."""

    model_config = {"frozen": True, "arbitrary_types_allowed": True, "extra": "forbid"}

    pairing_url: str
    realm: str
    device_id: str
    credentials_secret: str
    credential_store: Any = "file"
    credential_store_args: dict[str, Any] = {}
    # broker url remembered from a previous successful run
    broker_url: str | None = None

    @field_validator("pairing_url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        parsed = urlparse(value.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("pairing_url must be an http(s) URL")
        return value.strip().rstrip("/")

    @field_validator("realm", "credentials_secret")
    @classmethod
    def _check_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("device_id")
    @classmethod
    def _check_device_id(cls, value: str) -> str:
        decode_device_id(value.strip())
        return value.strip()

    @field_validator("credential_store")
    @classmethod
    def _check_store(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValueError("credential_store must name a backend")
        return value

    @property
    def client_id(self) -> str:
        return f"{self.realm}/{self.device_id}"


def build_options(**kwargs: Any) -> DeviceOptions:
    """Validate startup parameters, raising :class:`DeviceConfigError` on failure."""

    try:
        return DeviceOptions(**kwargs)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ())) or 'options'}: {err.get('msg')}" for err in exc.errors()
        )
        raise DeviceConfigError(f"invalid device options: {problems}") from exc


@dataclass
class ProvisioningSettings:
    keypair_retry_delay: float = 5.0
    certificate_retry_delay: float = 30.0
    info_retry_delay: float = 30.0
    store_timeout: float = 10.0
    request_timeout: float = 30.0
    key_algorithm: str = "rsa"
    rsa_key_size: int = 4096
    ec_curve: str = "secp256r1"
    protocol: str = "astarte_mqtt_v1"
    # "fixed" or "exponential"
    backoff: str = "fixed"
    max_backoff_delay: float = 300.0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "ProvisioningSettings":
        data = dict(data or {})
        known = {name for name in cls.__dataclass_fields__}
        unknown = sorted(set(data) - known)
        if unknown:
            raise DeviceConfigError(f"unknown provisioning settings: {', '.join(unknown)}")
        settings = cls(**data)
        if settings.backoff not in ("fixed", "exponential"):
            raise DeviceConfigError("provisioning.backoff must be 'fixed' or 'exponential'")
        for name in ("keypair_retry_delay", "certificate_retry_delay", "info_retry_delay", "store_timeout", "request_timeout"):
            if float(getattr(settings, name)) <= 0:
                raise DeviceConfigError(f"provisioning.{name} must be positive")
        return settings


@dataclass
class DeviceConfig:
    device: dict[str, Any] = field(default_factory=dict)
    provisioning: ProvisioningSettings = field(default_factory=ProvisioningSettings)

    def options(self) -> DeviceOptions:
        return build_options(**self.device)

    def to_dict(self) -> dict[str, Any]:
        device = {k: v for k, v in self.device.items() if v is not None}
        return {"device": device, "provisioning": asdict(self.provisioning)}


def _apply_env(device: dict[str, Any], environ: Mapping[str, str]) -> None:
    for env_name, key in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            device[key] = value
    store_dir = environ.get("DEVLINK_STORE_DIR")
    if store_dir:
        args = dict(device.get("credential_store_args") or {})
        args["base_dir"] = store_dir
        device["credential_store_args"] = args


def load_device_config(path: Path | str | None, *, environ: Mapping[str, str] | None = None) -> DeviceConfig:
    """Read a YAML device config and overlay ``DEVLINK_*`` environment variables."""

    data: Any = {}
    if path is not None:
        p = Path(path).expanduser()
        if not p.exists():
            raise DeviceConfigError(f"config file not found: {p}")
        try:
            data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise DeviceConfigError(f"failed to parse {p}: {exc}") from exc
    if not isinstance(data, dict):
        raise DeviceConfigError("device config must be a mapping")

    device = data.get("device") or {}
    if not isinstance(device, dict):
        raise DeviceConfigError("'device' section must be a mapping")
    device = dict(device)
    _apply_env(device, os.environ if environ is None else environ)

    store_args = device.get("credential_store_args")
    if isinstance(store_args, dict) and store_args.get("base_dir") and path is not None:
        base_dir = Path(str(store_args["base_dir"])).expanduser()
        if not base_dir.is_absolute():
            # relative store paths are resolved next to the config file
            store_args = dict(store_args)
            store_args["base_dir"] = str(Path(path).expanduser().parent / base_dir)
            device["credential_store_args"] = store_args

    try:
        provisioning = ProvisioningSettings.from_mapping(data.get("provisioning"))
    except TypeError as exc:
        raise DeviceConfigError(f"invalid provisioning settings: {exc}") from exc
    return DeviceConfig(device=device, provisioning=provisioning)


def save_device_config(conf: DeviceConfig, path: Path | str) -> Path:
    p = Path(path).expanduser()
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(yaml.safe_dump(conf.to_dict(), allow_unicode=True, sort_keys=False), encoding="utf-8")
    try:
        # the file carries the credentials secret
        os.chmod(p, 0o600)
    except PermissionError:
        pass
    return p
