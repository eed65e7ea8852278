from __future__ import annotations

import ssl
from dataclasses import dataclass, field
from typing import Any, Mapping, MutableMapping, Protocol

import httpx

from devlink.services.errors import PairingTransportError

DEFAULT_PROTOCOL = "astarte_mqtt_v1"


@dataclass(frozen=True, slots=True)
class PairingResponse:
    status: int
    body: Any = None


class PairingClient(Protocol):
    async def exchange_csr(self, device_id: str, csr: str) -> PairingResponse: ...
    async def fetch_info(self, device_id: str) -> PairingResponse: ...


def extract_certificate(body: Any) -> str | None:
    """Read ``data.client_crt`` from a credentials response body."""

    if not isinstance(body, Mapping):
        return None
    data = body.get("data")
    if not isinstance(data, Mapping):
        return None
    cert = data.get("client_crt")
    return cert if isinstance(cert, str) and cert else None


def extract_broker_url(body: Any, protocol: str = DEFAULT_PROTOCOL) -> str | None:
    """Read ``data.protocols.<protocol>.broker_url`` from an info response body."""

    node: Any = body
    for key in ("data", "protocols", protocol, "broker_url"):
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    return node if isinstance(node, str) and node else None


@dataclass(slots=True)
class PairingHttpClient:
    """HTTP client for the device side of the pairing API."""

    pairing_url: str
    realm: str
    credentials_secret: str
    protocol: str = DEFAULT_PROTOCOL
    timeout: float = 30.0
    verify: str | bool | ssl.SSLContext = True
    # default headers applied to every request (can be overridden/extended)
    default_headers: dict[str, str] = field(default_factory=dict)
    # injected by tests (httpx.MockTransport)
    transport: httpx.AsyncBaseTransport | None = None

    @classmethod
    def from_session(cls, session: Any, **kwargs: Any) -> "PairingHttpClient":
        return cls(
            pairing_url=session.pairing_url,
            realm=session.realm,
            credentials_secret=session.credentials_secret,
            **kwargs,
        )

    def _device_path(self, device_id: str) -> str:
        return f"/{self.realm}/devices/{device_id}"

    async def exchange_csr(self, device_id: str, csr: str) -> PairingResponse:
        path = f"{self._device_path(device_id)}/protocols/{self.protocol}/credentials"
        return await self._request("POST", path, json={"data": {"csr": csr}})

    async def fetch_info(self, device_id: str) -> PairingResponse:
        return await self._request("GET", self._device_path(device_id))

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> PairingResponse:
        request_headers: MutableMapping[str, str] = dict(self.default_headers)
        request_headers["Authorization"] = f"Bearer {self.credentials_secret}"
        if headers:
            request_headers.update({str(k): str(v) for k, v in headers.items()})

        client_kwargs: dict[str, Any] = {
            "base_url": self.pairing_url.rstrip("/"),
            "timeout": timeout or self.timeout,
        }
        if self.transport is not None:
            client_kwargs["transport"] = self.transport
        else:
            client_kwargs["verify"] = self.verify
        try:
            async with httpx.AsyncClient(**client_kwargs) as client:
                response = await client.request(method, path, json=json, headers=request_headers)
        except httpx.HTTPError as exc:
            raise PairingTransportError(f"{method} {path} failed: {exc}") from exc

        content: Any | None = None
        if response.content:
            try:
                content = response.json()
            except ValueError:
                content = response.text
        return PairingResponse(status=response.status_code, body=content)


__all__ = [
    "DEFAULT_PROTOCOL",
    "PairingClient",
    "PairingHttpClient",
    "PairingResponse",
    "extract_broker_url",
    "extract_certificate",
]
