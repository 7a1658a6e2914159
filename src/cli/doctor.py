"""Doctor command for environment diagnostics."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from adapters.http_client import CertificateLoadError, build_ssl_context
from core.config import AppSettings, is_restricted_environment, write_user_env_vars
from core.config_resolver import ConfigResolver
from core.credentials import validate_api_key_field, validate_cert_field, validate_host_field
from core.domain.models import ConnectionConfig, FilePathCert, Fail
from core.session import SessionManager

app = typer.Typer(no_args_is_help=True, help="Environment diagnostics and configuration checks.")

_console = Console()


async def _check_connection(config: ConnectionConfig, settings: AppSettings) -> tuple[bool, str]:
    session = SessionManager(settings)
    try:
        outcome = await session.connect(config)
    finally:
        await session.disconnect()
    if isinstance(outcome, Fail):
        return False, f"{outcome.kind.value}: {outcome.message}"
    return True, f"node {outcome.value.node_id[:16]}…"


@app.command()
def run() -> None:
    """Run baseline diagnostics and show recommended fixes."""

    settings = AppSettings()

    table = Table(title="LDK Console Doctor")
    table.add_column("Check", style="bright_green", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    restricted = is_restricted_environment()
    table.add_row("Environment", "OK", "restricted (platform TLS trust)" if restricted else "full filesystem access")

    # Config
    resolution = ConfigResolver(settings).resolve()
    if resolution.profile is None:
        table.add_row("Server config", "MISSING", f"{len(resolution.diagnostics)} locations checked")
    else:
        profile = resolution.profile
        table.add_row("Server config", "OK", str(resolution.source))
        table.add_row("Network", "OK", profile.network)
        table.add_row("Chain source", "OK", profile.chain_source.kind.label())
        key = profile.load_api_key()
        table.add_row("API key file", "OK" if key else "FAIL", str(profile.api_key_path))

    config = resolution.config
    if config is None and settings.host and settings.api_key:
        try:
            config = ConnectionConfig(
                host=validate_host_field(settings.host),
                api_key=validate_api_key_field(settings.api_key),
                cert_source=validate_cert_field(
                    settings.tls_cert_path,
                    allow_platform_trust=settings.allow_platform_trust,
                    restricted=restricted,
                ),
            )
            table.add_row("Env credentials", "OK", f"host {config.host}")
        except ValueError as exc:
            table.add_row("Env credentials", "FAIL", str(exc))

    if config is None:
        table.add_row("Connectivity", "SKIPPED", "no usable connection settings")
        _console.print(table)
        _console.print("\n[yellow]Tip:[/yellow] run `ldk-console doctor setup` to store connection settings.")
        return

    # Certificate
    if isinstance(config.cert_source, FilePathCert):
        try:
            build_ssl_context(config.cert_source)
            table.add_row("TLS certificate", "OK", str(config.cert_source.path))
        except CertificateLoadError as exc:
            table.add_row("TLS certificate", "FAIL", str(exc))
    else:
        table.add_row("TLS certificate", "WARN", f"{config.cert_source.kind}: no certificate pinning")

    # Connectivity
    ok_conn, detail_conn = asyncio.run(_check_connection(config, settings))
    table.add_row("Connectivity", "OK" if ok_conn else "FAIL", detail_conn)

    _console.print(table)


@app.command(name="setup")
def setup() -> None:
    """Interactive connection setup (stores config in the user config .env).

    For hosts without an ldk-server-config.toml next to the console.
    """

    settings = AppSettings()
    restricted = is_restricted_environment()

    host = typer.prompt("Server host (host:port)", default=settings.host or settings.default_host, show_default=True)
    api_key = typer.prompt("API key (hex)", hide_input=True, confirmation_prompt=False)
    cert = typer.prompt(
        "TLS certificate path (tls.crt)",
        default=str(settings.tls_cert_path or ""),
        show_default=bool(settings.tls_cert_path),
    )

    try:
        host = validate_host_field(host)
        validate_api_key_field(api_key)
        cert_source = validate_cert_field(
            cert,
            allow_platform_trust=settings.allow_platform_trust,
            restricted=restricted,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    env_path = write_user_env_vars(
        {
            "LDK_CONSOLE_HOST": host,
            "LDK_CONSOLE_API_KEY": api_key.strip(),
            "LDK_CONSOLE_TLS_CERT_PATH": str(cert_source.path) if isinstance(cert_source, FilePathCert) else None,
        }
    )

    _console.print(f"[green]Saved connection settings to:[/green] {env_path}")
