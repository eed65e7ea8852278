from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest
import yaml
from typer.testing import CliRunner

from devlink.apps.cli import main as cli_main
from devlink.services.ids import decode_device_id
from devlink.services.provisioning import create_agent

runner = CliRunner()

BROKER = "mqtts://broker.example.com:8883/"


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "device.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "device": {
                    "pairing_url": "https://api.example.com/pairing/v1",
                    "realm": "test",
                    "device_id": "2TBn-jNESuuHamE2Zo1anA",
                    "credentials_secret": "secret-token",
                    "credential_store": "file",
                    "credential_store_args": {"base_dir": "creds"},
                },
                "provisioning": {"certificate_retry_delay": 0.05, "info_retry_delay": 0.05},
            }
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def pairing(monkeypatch, pairing_factory, generator_factory):
    fake = pairing_factory()

    async def _create_agent(options, **kwargs):
        return await create_agent(options, pairing=fake, generator=generator_factory(), **kwargs)

    monkeypatch.setattr(cli_main, "create_agent", _create_agent)
    return fake


def test_device_id_prints_fresh_id():
    result = runner.invoke(cli_main.app, ["device-id"])
    assert result.exit_code == 0
    assert len(decode_device_id(result.output.strip())) == 16


def test_provision_remembers_broker_url(config_path, pairing):
    result = runner.invoke(cli_main.app, ["provision", "-c", str(config_path), "--timeout", "10"])

    assert result.exit_code == 0, result.output
    assert BROKER in result.output
    saved = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    assert saved["device"]["broker_url"] == BROKER
    assert (config_path.parent / "creds" / "certificate.pem").exists()
    assert len(pairing.exchange_calls) == 1


def test_provision_without_remember_leaves_config(config_path, pairing):
    before = config_path.read_text(encoding="utf-8")
    result = runner.invoke(cli_main.app, ["provision", "-c", str(config_path), "--no-remember", "--timeout", "10"])
    assert result.exit_code == 0, result.output
    assert config_path.read_text(encoding="utf-8") == before


def test_provision_gives_up_after_timeout(config_path, pairing):
    pairing.hang = True
    result = runner.invoke(cli_main.app, ["provision", "-c", str(config_path), "--timeout", "0.2"])
    assert result.exit_code == 1
    assert "not ready" in result.output


def test_provision_rejects_bad_config(tmp_path, pairing):
    path = tmp_path / "device.yaml"
    path.write_text("device: {realm: test}\n", encoding="utf-8")
    result = runner.invoke(cli_main.app, ["provision", "-c", str(path)])
    assert result.exit_code == 2
    assert pairing.exchange_calls == []


def test_cert_status_before_and_after_provisioning(config_path, pairing):
    result = runner.invoke(cli_main.app, ["cert-status", "-c", str(config_path), "--json"])
    assert result.exit_code == 1
    assert json.loads(result.output.strip().splitlines()[-1]) == {
        "present": False,
        "valid": False,
        "seconds_until_expiry": None,
    }

    assert runner.invoke(cli_main.app, ["provision", "-c", str(config_path), "--timeout", "10"]).exit_code == 0

    result = runner.invoke(cli_main.app, ["cert-status", "-c", str(config_path), "--json"])
    assert result.exit_code == 0, result.output
    report = json.loads(result.output.strip().splitlines()[-1])
    assert report["present"] is True
    assert report["valid"] is True
    assert report["seconds_until_expiry"] > 7 * 24 * 3600


def test_cert_status_missing_config(tmp_path):
    result = runner.invoke(cli_main.app, ["cert-status", "-c", str(tmp_path / "absent.yaml")])
    assert result.exit_code == 2


def test_cert_status_flags_certificate_inside_renewal_window(config_path, certificate_factory):
    creds = config_path.parent / "creds"
    creds.mkdir()
    (creds / "certificate.pem").write_bytes(certificate_factory(not_after=datetime.now(timezone.utc) + timedelta(days=3)))

    result = runner.invoke(cli_main.app, ["cert-status", "-c", str(config_path), "--json"])

    assert result.exit_code == 1
    report = json.loads(result.output.strip().splitlines()[-1])
    assert report["present"] is True
    assert report["valid"] is False
    assert 0 < report["seconds_until_expiry"] < 7 * 24 * 3600

    result = runner.invoke(cli_main.app, ["cert-status", "-c", str(config_path)])
    assert "needs renewal" in result.output
