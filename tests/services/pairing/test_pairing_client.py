from __future__ import annotations

import json

import httpx
import pytest

from devlink.services.errors import PairingTransportError
from devlink.services.pairing import PairingHttpClient, extract_broker_url, extract_certificate

DEVICE_ID = "2TBn-jNESuuHamE2Zo1anA"


def _client(handler, **kwargs) -> PairingHttpClient:
    return PairingHttpClient(
        pairing_url="https://api.example.com/pairing/v1/",
        realm="test",
        credentials_secret="secret-token",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.anyio
async def test_exchange_csr_posts_to_credentials_endpoint():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"data": {"client_crt": "-----BEGIN CERTIFICATE-----"}})

    response = await _client(handler).exchange_csr(DEVICE_ID, "CSR PEM")

    assert response.status == 201
    assert extract_certificate(response.body) == "-----BEGIN CERTIFICATE-----"
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == f"/pairing/v1/test/devices/{DEVICE_ID}/protocols/astarte_mqtt_v1/credentials"
    assert request.headers["Authorization"] == "Bearer secret-token"
    assert json.loads(request.content) == {"data": {"csr": "CSR PEM"}}


@pytest.mark.anyio
async def test_fetch_info_gets_device_resource():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"data": {"protocols": {"astarte_mqtt_v1": {"broker_url": "mqtts://broker:8883/"}}}},
        )

    response = await _client(handler).fetch_info(DEVICE_ID)

    assert response.status == 200
    assert extract_broker_url(response.body) == "mqtts://broker:8883/"
    assert seen[0].method == "GET"
    assert seen[0].url.path == f"/pairing/v1/test/devices/{DEVICE_ID}"


@pytest.mark.anyio
async def test_error_status_is_returned_not_raised():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"errors": {"detail": "Forbidden"}})

    response = await _client(handler).exchange_csr(DEVICE_ID, "CSR")
    assert response.status == 403
    assert response.body == {"errors": {"detail": "Forbidden"}}


@pytest.mark.anyio
async def test_non_json_body_is_kept_as_text():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="Bad Gateway")

    response = await _client(handler).fetch_info(DEVICE_ID)
    assert response.status == 502
    assert response.body == "Bad Gateway"


@pytest.mark.anyio
async def test_connection_error_becomes_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(PairingTransportError):
        await _client(handler).fetch_info(DEVICE_ID)


@pytest.mark.anyio
async def test_custom_protocol_and_headers():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"data": {"client_crt": "pem"}})

    client = _client(handler, protocol="other_v2", default_headers={"User-Agent": "devlink-test"})
    await client.exchange_csr(DEVICE_ID, "CSR")
    assert seen[0].url.path.endswith("/protocols/other_v2/credentials")
    assert seen[0].headers["User-Agent"] == "devlink-test"


@pytest.mark.parametrize(
    "body",
    [None, "text", {"data": None}, {"data": {"client_crt": ""}}, {"data": {"client_crt": 42}}],
)
def test_extract_certificate_rejects_malformed(body):
    assert extract_certificate(body) is None


@pytest.mark.parametrize(
    "body",
    [
        None,
        {"data": {}},
        {"data": {"protocols": []}},
        {"data": {"protocols": {"other": {"broker_url": "mqtts://x"}}}},
        {"data": {"protocols": {"astarte_mqtt_v1": {"broker_url": None}}}},
    ],
)
def test_extract_broker_url_rejects_malformed(body):
    assert extract_broker_url(body) is None
