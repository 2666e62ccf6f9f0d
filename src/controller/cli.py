from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from kubernetes.config.config_exception import ConfigException

from src.admission.tls import TlsMaterialError, load_tls_material
from src.common.settings import SweepSettings
from src.sweeper.watch import load_core_api

from . import runtime

app = typer.Typer(help="Shut down mesh proxies once the batch workload next to them has finished.")

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    envvar="SWEEP_CONFIG",
    help="Optional YAML file with settings; SWEEP_* variables override it.",
)
LOG_LEVEL_OPTION = typer.Option(
    "info",
    "--log-level",
    envvar="SWEEP_CONTROLLER_LOG_LEVEL",
    help="Log level (debug, info, warning, error).",
)
LOG_FORMAT_OPTION = typer.Option(
    "plain",
    "--log-format",
    envvar="SWEEP_CONTROLLER_LOG_FORMAT",
    help="Log output format (plain or json).",
)
HOST_OPTION = typer.Option("0.0.0.0", "--host", help="Address the admission server binds to.")
PORT_OPTION = typer.Option(8443, "--port", "-p", help="Port the admission server listens on.")
CERT_OPTION = typer.Option(
    Path("/var/run/sweep/tls.crt"),
    "--cert",
    envvar="SWEEP_TLS_CERT",
    help="PEM certificate served by the admission server.",
)
KEY_OPTION = typer.Option(
    Path("/var/run/sweep/tls.key"),
    "--key",
    envvar="SWEEP_TLS_KEY",
    help="PEM private key matching --cert.",
)
ADMIN_HOST_OPTION = typer.Option("0.0.0.0", "--admin-host", help="Address the health endpoints bind to.")
ADMIN_PORT_OPTION = typer.Option(8080, "--admin-port", help="Plain-HTTP port serving /healthz and /readyz.")


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "ts": int(record.created * 1000),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _setup_logging(level: str, log_format: str = "plain") -> None:
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise typer.BadParameter(f"Unknown log level: {level}")
    if log_format == "json":
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logging.basicConfig(level=numeric, handlers=[handler])
    elif log_format == "plain":
        logging.basicConfig(
            level=numeric,
            format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        )
    else:
        raise typer.BadParameter(f"Unknown log format: {log_format}")


def _load_settings(config: Optional[Path]) -> SweepSettings:
    if config is not None and not config.exists():
        raise typer.BadParameter(f"Config file not found: {config}")
    try:
        return SweepSettings.load(config)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _webhook_options(host: str, port: int, cert: Path, key: Path) -> runtime.WebhookOptions:
    try:
        tls = load_tls_material(cert, key)
    except TlsMaterialError as exc:
        typer.echo(f"Failed to load TLS material: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    return runtime.WebhookOptions(tls=tls, host=host, port=port)


def _watch_source(settings: SweepSettings):
    try:
        core_api = load_core_api()
    except ConfigException as exc:
        typer.echo(f"No Kubernetes config available: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    return runtime.watch_source(settings, core_api)


@app.command()
def webhook(
    config: Optional[Path] = CONFIG_OPTION,
    log_level: str = LOG_LEVEL_OPTION,
    log_format: str = LOG_FORMAT_OPTION,
    host: str = HOST_OPTION,
    port: int = PORT_OPTION,
    cert: Path = CERT_OPTION,
    key: Path = KEY_OPTION,
) -> None:
    """Serve the mutating admission webhook over TLS."""

    _setup_logging(log_level, log_format)
    settings = _load_settings(config)
    options = _webhook_options(host, port, cert, key)
    asyncio.run(runtime.run(settings, webhook=options))


@app.command()
def sweep(
    config: Optional[Path] = CONFIG_OPTION,
    log_level: str = LOG_LEVEL_OPTION,
    log_format: str = LOG_FORMAT_OPTION,
    admin_host: str = ADMIN_HOST_OPTION,
    admin_port: int = ADMIN_PORT_OPTION,
) -> None:
    """Watch pods and shut down proxies whose workload has exited."""

    _setup_logging(log_level, log_format)
    settings = _load_settings(config)
    source = _watch_source(settings)
    admin = runtime.AdminOptions(host=admin_host, port=admin_port)
    asyncio.run(runtime.run(settings, source=source, admin=admin))


@app.command("run")
def run_all(
    config: Optional[Path] = CONFIG_OPTION,
    log_level: str = LOG_LEVEL_OPTION,
    log_format: str = LOG_FORMAT_OPTION,
    host: str = HOST_OPTION,
    port: int = PORT_OPTION,
    cert: Path = CERT_OPTION,
    key: Path = KEY_OPTION,
    admin_host: str = ADMIN_HOST_OPTION,
    admin_port: int = ADMIN_PORT_OPTION,
) -> None:
    """Run the webhook and the sweeper in one process."""

    _setup_logging(log_level, log_format)
    settings = _load_settings(config)
    options = _webhook_options(host, port, cert, key)
    source = _watch_source(settings)
    admin = runtime.AdminOptions(host=admin_host, port=admin_port)
    asyncio.run(runtime.run(settings, webhook=options, source=source, admin=admin))


if __name__ == "__main__":  # pragma: no cover
    app()
