"""devlink command line interface."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer

from devlink.services.credentials import CredentialKind, resolve_store
from devlink.services.crypto import is_valid_certificate, seconds_until_expiry
from devlink.services.device_config import (
    DeviceConfig,
    DeviceOptions,
    ProvisioningSettings,
    load_device_config,
    save_device_config,
)
from devlink.services.errors import CredentialNotFoundError, DevlinkError
from devlink.services.ids import generate_device_id
from devlink.services.logging import setup_logging
from devlink.services.provisioning import Session, create_agent

app = typer.Typer(help="Device credential provisioning.", no_args_is_help=True)


def _load(config: Path) -> DeviceConfig:
    try:
        return load_device_config(config)
    except DevlinkError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2) from exc


def _options(conf: DeviceConfig) -> DeviceOptions:
    try:
        return conf.options()
    except DevlinkError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2) from exc


@app.command("device-id")
def cmd_device_id() -> None:
    """Print a new random device id."""
    typer.echo(generate_device_id())


async def _provision(options: DeviceOptions, settings: ProvisioningSettings, timeout: float | None) -> Session:
    agent = await create_agent(options, settings=settings)
    try:
        return await asyncio.wait_for(agent.wait_ready(), timeout=timeout)
    finally:
        await agent.stop()


@app.command("provision")
def cmd_provision(
    config: Path = typer.Option(..., "--config", "-c", help="Device YAML config."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Give up after this many seconds."),
    remember: bool = typer.Option(True, "--remember/--no-remember", help="Store the broker url back into the config."),
    log_level: str = typer.Option("INFO", "--log-level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON lines."),
) -> None:
    """Run provisioning until the device is ready to connect and print the broker url."""
    setup_logging(log_level, json_output=json_logs)
    conf = _load(config)
    options = _options(conf)
    try:
        session = asyncio.run(_provision(options, conf.provisioning, timeout))
    except asyncio.TimeoutError:
        typer.echo(f"error: device not ready after {timeout}s", err=True)
        raise typer.Exit(code=1)
    except DevlinkError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    if remember and session.broker_url and conf.device.get("broker_url") != session.broker_url:
        conf.device["broker_url"] = session.broker_url
        save_device_config(conf, config)
    typer.echo(session.broker_url)


@app.command("cert-status")
def cmd_cert_status(
    config: Path = typer.Option(..., "--config", "-c", help="Device YAML config."),
    as_json: bool = typer.Option(False, "--json"),
) -> None:
    """Report whether the stored certificate is still usable."""
    conf = _load(config)
    options = _options(conf)
    try:
        store = resolve_store(options.credential_store)
        handle = store.init({"client_id": options.client_id, **options.credential_store_args})
        pem = store.fetch(CredentialKind.CERTIFICATE, handle)
    except CredentialNotFoundError:
        pem = None
    except DevlinkError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2) from exc

    remaining = seconds_until_expiry(pem) if pem is not None else None
    valid = pem is not None and is_valid_certificate(pem)
    report = {
        "present": pem is not None,
        "valid": valid,
        "seconds_until_expiry": remaining,
    }
    if as_json:
        typer.echo(json.dumps(report))
    elif pem is None:
        typer.echo("no certificate stored")
    elif remaining is None:
        typer.echo("stored certificate cannot be decoded")
    else:
        status = "valid" if valid else "needs renewal"
        typer.echo(f"certificate {status}, expires in {int(remaining)}s")
    if not valid:
        raise typer.Exit(code=1)


def main() -> None:  # pragma: no cover - console entrypoint
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
