"""CLI principal (Typer).

Cada comando:
1) resuelve credenciales (flags > config del servidor > variables de entorno)
2) abre una sesión (un getNodeInfo de prueba)
3) despacha *un* intent y muestra el resultado.

Un `Fail` siempre termina con exit code 1.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

import typer
from rich.console import Console

from adapters.json_exporter import export_payments_json
from adapters.server_config import ServerConfigError, load_server_config, save_chain_source
from cli import doctor
from cli.ui_components import (
    build_balances_table,
    build_channels_table,
    build_diagnostics_table,
    build_error_panel,
    build_node_info_panel,
    build_outcome_panel,
    build_payments_table,
    build_status_panel,
    print_banner,
)
from core.config import AppSettings
from core.config_resolver import ConfigResolver, Resolution, ServerProfile
from core.credentials import CredentialStore
from core.dispatcher import ActionDispatcher
from core.domain.actions import (
    ActionIntent,
    ActionResult,
    CloseChannel,
    ConnectPeer,
    ForceCloseChannel,
    GetBalances,
    GetPaymentDetails,
    ListChannels,
    OpenChannel,
    ReceiveBolt11,
    ReceiveBolt12,
    ReceiveOnchain,
    SendBolt11,
    SendBolt12,
    SendOnchain,
    SpliceIn,
    SpliceOut,
    UpdateChannelConfig,
)
from core.domain.models import ChainSource, ChainSourceKind, ErrorInfo, ErrorKind, Fail
from core.logging import setup_logging
from core.paginator import payments_fetcher
from core.session import SessionManager

T = TypeVar("T")

app = typer.Typer(no_args_is_help=True, help="Terminal client for an ldk-server node.")
app.add_typer(doctor.app, name="doctor")

_console = Console()


@dataclass
class CliOptions:
    settings: AppSettings
    config: Path | None = None
    host: str | None = None
    api_key: str | None = None
    cert: Path | None = None


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", help="Path to ldk-server-config.toml."),
    host: str | None = typer.Option(None, "--host", help="REST service address (host:port)."),
    api_key: str | None = typer.Option(None, "--api-key", help="API key (hex)."),
    cert: Path | None = typer.Option(None, "--cert", help="Server TLS certificate (tls.crt)."),
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR."),
) -> None:
    settings = AppSettings()
    setup_logging(log_level or settings.log_level, settings.log_format)
    ctx.obj = CliOptions(settings=settings, config=config, host=host, api_key=api_key, cert=cert)


def _fail(error: ErrorInfo) -> None:
    _console.print(build_error_panel(error))
    raise typer.Exit(code=1)


def load_credentials(opts: CliOptions) -> tuple[CredentialStore, Resolution]:
    """Decide qué credenciales usar. Sin credenciales válidas termina con exit 1."""

    store = CredentialStore(opts.settings)
    resolution = ConfigResolver(opts.settings).resolve(opts.config)

    if opts.host or opts.api_key:
        profile = resolution.profile
        host = opts.host or (profile.host if profile else opts.settings.default_host)
        api_key = opts.api_key
        if not api_key and profile is not None:
            raw = profile.load_api_key()
            api_key = raw.hex() if raw else ""
        cert = opts.cert or (profile.tls_cert_path if profile else opts.settings.tls_cert_path)
        outcome = store.apply_manual_input(host, api_key or "", cert, source="flags")
        if isinstance(outcome, Fail):
            _fail(outcome.error)
        return store, resolution

    if store.load_resolution(resolution):
        return store, resolution

    from_env = store.load_from_settings()
    if isinstance(from_env, Fail):
        _fail(from_env.error)
    if from_env is None:
        _console.print(build_diagnostics_table(resolution))
        _fail(
            ErrorInfo.of(
                ErrorKind.VALIDATION,
                "no connection settings found; pass --host/--api-key/--cert or run `doctor setup`",
            )
        )
    return store, resolution


async def _with_session(opts: CliOptions, body: Callable[[SessionManager], Awaitable[T]]) -> T:
    store, _ = load_credentials(opts)
    config = store.current
    if config is None:
        _fail(ErrorInfo.of(ErrorKind.VALIDATION, "no connection settings loaded"))
    session = SessionManager(opts.settings)
    try:
        outcome = await session.connect(config)
        if isinstance(outcome, Fail):
            _fail(outcome.error)
        return await body(session)
    finally:
        await session.disconnect()


def _dispatch(opts: CliOptions, intent: ActionIntent) -> ActionResult:
    async def body(session: SessionManager) -> ActionResult:
        outcome = await ActionDispatcher(session).dispatch(intent)
        if isinstance(outcome, Fail):
            _fail(outcome.error)
        return outcome.value

    return asyncio.run(_with_session(opts, body))


def _show(opts: CliOptions, intent: ActionIntent) -> None:
    _console.print(build_outcome_panel(_dispatch(opts, intent)))


@app.command()
def status(ctx: typer.Context) -> None:
    """Show where the connection settings come from (no network)."""

    opts: CliOptions = ctx.obj
    print_banner(_console)
    resolution = ConfigResolver(opts.settings).resolve(opts.config)
    _console.print(build_diagnostics_table(resolution))
    if resolution.profile is not None:
        p = resolution.profile
        _console.print(f"Host: {p.host}  Network: {p.network}  Chain source: {p.chain_source.kind.label()}")
        _console.print(f"API key: {p.api_key_path}\nTLS cert: {p.tls_cert_path}", style="dim")


@app.command()
def info(ctx: typer.Context) -> None:
    """Connect and show node information."""

    opts: CliOptions = ctx.obj

    async def body(session: SessionManager) -> None:
        _console.print(build_status_panel(session.snapshot()))
        if session.node_info is not None:
            _console.print(build_node_info_panel(session.node_info))

    asyncio.run(_with_session(opts, body))


@app.command()
def balances(ctx: typer.Context) -> None:
    """On-chain and lightning balances."""

    result = _dispatch(ctx.obj, GetBalances())
    _console.print(build_balances_table(result.data))


@app.command()
def channels(ctx: typer.Context) -> None:
    """List channels."""

    result = _dispatch(ctx.obj, ListChannels())
    _console.print(build_channels_table(result.data.get("channels") or []))


@app.command()
def payments(
    ctx: typer.Context,
    pages: int = typer.Option(1, "--pages", min=1, help="How many pages to load."),
    page_size: int | None = typer.Option(None, "--page-size", min=1, help="Expected page size."),
    json_out: Path | None = typer.Option(None, "--json-out", help="Write the loaded payments as JSON."),
) -> None:
    """Payment history (paginated)."""

    opts: CliOptions = ctx.obj
    settings = opts.settings
    if page_size is not None:
        settings = settings.model_copy(update={"default_page_size": page_size})

    async def body(session: SessionManager):
        outcome = await payments_fetcher(session, settings).walk(pages)
        if isinstance(outcome, Fail):
            _fail(outcome.error)
        return outcome.value

    loaded = asyncio.run(_with_session(opts, body))
    records = [rec for page in loaded for rec in page.items]
    _console.print(build_payments_table(records, title=f"Payments ({len(records)})"))
    if loaded and loaded[-1].has_more:
        _console.print("[dim]More payments available: use --pages to load more.[/dim]")
    if json_out is not None:
        path = export_payments_json(pages=loaded, output_path=json_out)
        _console.print(f"[green]Saved:[/green] {path}")


@app.command()
def payment(ctx: typer.Context, payment_id: str = typer.Argument(..., help="Payment ID (hex).")) -> None:
    """Details of one payment."""

    result = _dispatch(ctx.obj, GetPaymentDetails(payment_id=payment_id))
    parsed = result.payment_record()
    if isinstance(parsed, Fail):
        _fail(parsed.error)
    if parsed.value is None:
        _console.print("[yellow]Payment not found.[/yellow]")
        return
    _console.print(build_payments_table([parsed.value], title="Payment"))


@app.command()
def address(ctx: typer.Context) -> None:
    """New on-chain receive address."""

    _show(ctx.obj, ReceiveOnchain())


@app.command()
def invoice(
    ctx: typer.Context,
    amount_msat: int | None = typer.Option(None, "--amount-msat", help="Omit for a variable-amount invoice."),
    description: str | None = typer.Option(None, "--description"),
    expiry_secs: int = typer.Option(86400, "--expiry-secs"),
) -> None:
    """Create a BOLT11 invoice."""

    _show(ctx.obj, ReceiveBolt11(amount_msat=amount_msat, description=description, expiry_secs=expiry_secs))


@app.command()
def offer(
    ctx: typer.Context,
    description: str = typer.Argument(...),
    amount_msat: int | None = typer.Option(None, "--amount-msat"),
    expiry_secs: int | None = typer.Option(None, "--expiry-secs"),
    quantity: int | None = typer.Option(None, "--quantity"),
) -> None:
    """Create a BOLT12 offer."""

    _show(
        ctx.obj,
        ReceiveBolt12(description=description, amount_msat=amount_msat, expiry_secs=expiry_secs, quantity=quantity),
    )


@app.command()
def pay(
    ctx: typer.Context,
    request: str = typer.Argument(..., help="BOLT11 invoice (ln...) or BOLT12 offer (lno...)."),
    amount_msat: int | None = typer.Option(None, "--amount-msat"),
    quantity: int | None = typer.Option(None, "--quantity"),
    payer_note: str | None = typer.Option(None, "--payer-note"),
) -> None:
    """Pay an invoice or an offer."""

    request = request.strip()
    intent: ActionIntent
    if request.lower().startswith("lno"):
        intent = SendBolt12(offer=request, amount_msat=amount_msat, quantity=quantity, payer_note=payer_note)
    else:
        intent = SendBolt11(invoice=request, amount_msat=amount_msat)
    _show(ctx.obj, intent)


@app.command(name="send-onchain")
def send_onchain(
    ctx: typer.Context,
    to: str = typer.Argument(..., metavar="ADDRESS"),
    amount_sats: int | None = typer.Option(None, "--amount-sats"),
    send_all: bool = typer.Option(False, "--all", help="Send the whole spendable balance."),
    fee_rate: int | None = typer.Option(None, "--fee-rate", help="sat/vB"),
) -> None:
    """Send bitcoin on-chain."""

    _show(
        ctx.obj,
        SendOnchain(address=to, amount_sats=amount_sats, send_all=send_all, fee_rate_sat_per_vb=fee_rate),
    )


@app.command(name="open-channel")
def open_channel(
    ctx: typer.Context,
    node_pubkey: str = typer.Argument(...),
    peer_address: str = typer.Argument(..., help="host:port"),
    amount_sats: int = typer.Argument(...),
    push_msat: int | None = typer.Option(None, "--push-msat"),
    announce: bool = typer.Option(False, "--announce"),
    fee_ppm: int | None = typer.Option(None, "--fee-ppm"),
    base_fee_msat: int | None = typer.Option(None, "--base-fee-msat"),
    cltv_delta: int | None = typer.Option(None, "--cltv-delta"),
) -> None:
    """Open a channel."""

    _show(
        ctx.obj,
        OpenChannel(
            node_pubkey=node_pubkey,
            address=peer_address,
            channel_amount_sats=amount_sats,
            push_to_counterparty_msat=push_msat,
            announce_channel=announce,
            forwarding_fee_proportional_millionths=fee_ppm,
            forwarding_fee_base_msat=base_fee_msat,
            cltv_expiry_delta=cltv_delta,
        ),
    )


@app.command(name="close-channel")
def close_channel(
    ctx: typer.Context,
    user_channel_id: str = typer.Argument(...),
    counterparty_node_id: str = typer.Argument(...),
    force: bool = typer.Option(False, "--force"),
    reason: str | None = typer.Option(None, "--reason", help="Only with --force."),
) -> None:
    """Close a channel (cooperative unless --force)."""

    intent: ActionIntent
    if force:
        intent = ForceCloseChannel(
            user_channel_id=user_channel_id,
            counterparty_node_id=counterparty_node_id,
            force_close_reason=reason,
        )
    else:
        intent = CloseChannel(user_channel_id=user_channel_id, counterparty_node_id=counterparty_node_id)
    _show(ctx.obj, intent)


@app.command(name="splice-in")
def splice_in(
    ctx: typer.Context,
    user_channel_id: str = typer.Argument(...),
    counterparty_node_id: str = typer.Argument(...),
    amount_sats: int = typer.Argument(...),
) -> None:
    """Add on-chain funds to a channel."""

    _show(
        ctx.obj,
        SpliceIn(
            user_channel_id=user_channel_id,
            counterparty_node_id=counterparty_node_id,
            splice_amount_sats=amount_sats,
        ),
    )


@app.command(name="splice-out")
def splice_out(
    ctx: typer.Context,
    user_channel_id: str = typer.Argument(...),
    counterparty_node_id: str = typer.Argument(...),
    amount_sats: int = typer.Argument(...),
    to: str | None = typer.Option(None, "--address", help="Destination (default: node wallet)."),
) -> None:
    """Move channel funds on-chain."""

    _show(
        ctx.obj,
        SpliceOut(
            user_channel_id=user_channel_id,
            counterparty_node_id=counterparty_node_id,
            splice_amount_sats=amount_sats,
            address=to,
        ),
    )


@app.command(name="channel-config")
def channel_config(
    ctx: typer.Context,
    user_channel_id: str = typer.Argument(...),
    counterparty_node_id: str = typer.Argument(...),
    fee_ppm: int | None = typer.Option(None, "--fee-ppm"),
    base_fee_msat: int | None = typer.Option(None, "--base-fee-msat"),
    cltv_delta: int | None = typer.Option(None, "--cltv-delta"),
) -> None:
    """Update forwarding fees / CLTV delta of a channel."""

    _show(
        ctx.obj,
        UpdateChannelConfig(
            user_channel_id=user_channel_id,
            counterparty_node_id=counterparty_node_id,
            forwarding_fee_proportional_millionths=fee_ppm,
            forwarding_fee_base_msat=base_fee_msat,
            cltv_expiry_delta=cltv_delta,
        ),
    )


@app.command(name="connect-peer")
def connect_peer(
    ctx: typer.Context,
    node_pubkey: str = typer.Argument(...),
    peer_address: str = typer.Argument(..., help="host:port"),
    persist: bool = typer.Option(False, "--persist"),
) -> None:
    """Connect to a peer."""

    _show(ctx.obj, ConnectPeer(node_pubkey=node_pubkey, address=peer_address, persist=persist))


chain_app = typer.Typer(no_args_is_help=True, help="Chain source in the server's ldk-server-config.toml.")
app.add_typer(chain_app, name="chain-source")


def _server_config_path(opts: CliOptions) -> Path:
    resolution = ConfigResolver(opts.settings).resolve(opts.config)
    if resolution.source is None:
        _console.print(build_diagnostics_table(resolution))
        _fail(ErrorInfo.of(ErrorKind.VALIDATION, "no ldk-server-config.toml found; pass --config"))
    return resolution.source


@chain_app.command("show")
def chain_source_show(ctx: typer.Context) -> None:
    """Show the configured chain source."""

    opts: CliOptions = ctx.obj
    path = _server_config_path(opts)
    try:
        source = ServerProfile.from_document(load_server_config(path)).chain_source
    except ServerConfigError as exc:
        _fail(ErrorInfo.of(ErrorKind.VALIDATION, str(exc)))
    _console.print(f"{source.kind.label()}: {source.endpoint or '-'}  [dim]({path})[/dim]")


@chain_app.command("set")
def chain_source_set(
    ctx: typer.Context,
    kind: ChainSourceKind = typer.Argument(..., help="bitcoind, electrum, esplora or none."),
    rpc_address: str | None = typer.Option(None, "--rpc-address", help="bitcoind only (host:port)."),
    rpc_user: str | None = typer.Option(None, "--rpc-user", help="bitcoind only."),
    rpc_password: str | None = typer.Option(None, "--rpc-password", help="bitcoind only."),
    server_url: str | None = typer.Option(None, "--server-url", help="electrum or esplora."),
) -> None:
    """Replace the chain source, keeping every other section of the file."""

    opts: CliOptions = ctx.obj
    path = _server_config_path(opts)
    source = ChainSource(
        kind=kind,
        rpc_address=rpc_address,
        rpc_user=rpc_user,
        rpc_password=rpc_password,
        server_url=server_url,
    )
    try:
        save_chain_source(path, source)
    except ServerConfigError as exc:
        _fail(ErrorInfo.of(ErrorKind.VALIDATION, str(exc)))
    _console.print(f"[green]Saved {kind.label()} chain source to[/green] {path}")
    _console.print("[dim]Restart ldk-server to apply it.[/dim]")


def run() -> None:
    app()
