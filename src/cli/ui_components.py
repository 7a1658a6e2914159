"""Componentes de UI para CLI (Rich).

Por qué separar componentes:
- Evita mezclar lógica de comandos con detalles visuales.
- Permite reutilizar tablas/paneles en múltiples comandos.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from typing import Any

from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.config_resolver import Resolution
from core.domain.actions import ActionResult
from core.domain.models import ErrorInfo, ErrorKind, NodeInfo, PaymentRecord, PaymentStatus, SessionState
from core.session import SessionStatus

_STATE_STYLES = {
    SessionState.DISCONNECTED: "dim",
    SessionState.CONNECTING: "yellow",
    SessionState.CONNECTED: "green",
    SessionState.ERROR: "red",
}

_STATUS_STYLES = {
    PaymentStatus.SUCCEEDED: "green",
    PaymentStatus.PENDING: "yellow",
    PaymentStatus.FAILED: "red",
}


def print_banner(console: Console) -> None:
    """Imprime el banner de bienvenida.

    Por qué aquí:
    - Evita dependencias circulares (main <-> doctor).
    - Permite desactivar banner en modos no interactivos (JSON/pipelines).
    """

    title = Text("LDK Console", style="bold cyan")
    subtitle = Text("Cliente de ldk-server • Canales • Pagos", style="dim")
    body = Align.center(Text.assemble(title, "\n", subtitle), vertical="middle")
    console.print(Panel(body, border_style="cyan", padding=(1, 4)))


def format_sats(sats: int | None) -> str:
    if sats is None:
        return "-"
    return f"{sats:,} sats"


def format_msat(msat: int | None) -> str:
    """Importe en msat mostrado en sats (con decimales solo si hacen falta)."""

    if msat is None:
        return "-"
    sats, rem = divmod(msat, 1000)
    if rem:
        return f"{msat / 1000:,.3f} sats"
    return format_sats(sats)


def format_relative_time(timestamp: int | None, now: float | None = None) -> str:
    if not timestamp:
        return "never"
    delta = int((now if now is not None else time.time()) - timestamp)
    if delta < 0:
        return "just now"
    for unit, seconds in (("d", 86400), ("h", 3600), ("m", 60)):
        if delta >= seconds:
            return f"{delta // seconds}{unit} ago"
    return f"{delta}s ago"


def shorten(value: str | None, keep: int = 10) -> str:
    if not value:
        return "-"
    if len(value) <= keep * 2 + 1:
        return value
    return f"{value[:keep]}…{value[-keep:]}"


def build_status_panel(status: SessionStatus) -> Panel:
    """Los tres hechos de la sesión: estado, último fallo de conexión, último fallo de acción."""

    body = Text()
    body.append("State: ")
    body.append(status.state.value, style=_STATE_STYLES[status.state])
    body.append(f"\nHost: {status.host or '-'}")
    body.append(f"\nGeneration: {status.generation}", style="dim")
    if status.last_error:
        body.append(f"\nConnection error: {status.last_error.message}", style="red")
    if status.last_operation_error:
        body.append(f"\nLast action error: {status.last_operation_error.message}", style="red")
    return Panel(body, title="Session", border_style=_STATE_STYLES[status.state])


def build_node_info_panel(info: NodeInfo) -> Panel:
    body = Text()
    body.append("Node ID: ", style="bold")
    body.append(info.node_id + "\n")
    if info.current_best_block:
        body.append(f"Best block: {info.current_best_block.height} ")
        body.append(shorten(info.current_best_block.block_hash) + "\n", style="dim")
    body.append(f"Lightning sync: {format_relative_time(info.latest_lightning_wallet_sync_timestamp)}\n")
    body.append(f"On-chain sync: {format_relative_time(info.latest_onchain_wallet_sync_timestamp)}\n")
    body.append(f"Fee rate cache: {format_relative_time(info.latest_fee_rate_cache_update_timestamp)}")
    return Panel(body, title="Node", border_style="cyan")


def build_balances_table(data: Mapping[str, Any]) -> Table:
    table = Table(title="Balances")
    table.add_column("Balance", style="cyan", no_wrap=True)
    table.add_column("Amount", style="white", justify="right")
    rows = (
        ("Total on-chain", "total_onchain_balance_sats"),
        ("Spendable on-chain", "spendable_onchain_balance_sats"),
        ("Anchor reserve", "total_anchor_channels_reserve_sats"),
        ("Total lightning", "total_lightning_balance_sats"),
    )
    for label, key in rows:
        value = data.get(key)
        table.add_row(label, format_sats(int(value)) if value is not None else "-")
    return table


def build_channels_table(channels: Iterable[Mapping[str, Any]]) -> Table:
    table = Table(title="Channels")
    table.add_column("User channel ID", style="cyan", no_wrap=True)
    table.add_column("Counterparty", style="white")
    table.add_column("Capacity", justify="right")
    table.add_column("Outbound", justify="right", style="green")
    table.add_column("Inbound", justify="right", style="magenta")
    table.add_column("State")
    for ch in channels:
        if ch.get("is_usable"):
            state = "[green]usable[/green]"
        elif ch.get("is_channel_ready"):
            state = "[yellow]ready[/yellow]"
        else:
            state = "[dim]pending[/dim]"
        capacity = ch.get("channel_value_sats")
        table.add_row(
            str(ch.get("user_channel_id", "-")),
            shorten(ch.get("counterparty_node_id")),
            format_sats(int(capacity)) if capacity is not None else "-",
            format_msat(ch.get("outbound_capacity_msat")),
            format_msat(ch.get("inbound_capacity_msat")),
            state,
        )
    return table


def build_payments_table(records: Iterable[PaymentRecord], *, title: str = "Payments") -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Type")
    table.add_column("Direction")
    table.add_column("Amount", justify="right")
    table.add_column("Fee", justify="right", style="dim")
    table.add_column("Status")
    table.add_column("Updated", style="dim")
    for rec in records:
        style = _STATUS_STYLES.get(rec.status, "dim")
        table.add_row(
            shorten(rec.id, 8),
            rec.kind_label,
            rec.direction.value,
            format_msat(rec.amount_msat),
            format_msat(rec.fee_paid_msat),
            f"[{style}]{rec.status.value}[/{style}]",
            format_relative_time(rec.latest_update_timestamp),
        )
    return table


def build_diagnostics_table(resolution: Resolution) -> Table:
    table = Table(title="Config resolution")
    table.add_column("Candidate", style="cyan", no_wrap=True)
    table.add_column("Path", style="white")
    table.add_column("Result", style="dim")
    for diag in resolution.diagnostics:
        table.add_row(diag.candidate, str(diag.path) if diag.path else "-", diag.reason)
    if resolution.source is not None:
        result = "[green]loaded[/green]" if resolution.config else "[yellow]parsed, no credentials[/yellow]"
        table.add_row("selected", str(resolution.source), result)
    return table


def build_outcome_panel(result: ActionResult) -> Panel:
    """Panel con los identificadores útiles de la respuesta."""

    body = Text()
    found = False
    for label, value in (
        ("Txid", result.txid),
        ("Payment ID", result.payment_id),
        ("User channel ID", result.user_channel_id),
        ("Invoice", result.invoice),
        ("Offer", result.offer),
        ("Address", result.address),
    ):
        if value:
            found = True
            body.append(f"{label}: ", style="bold")
            body.append(value + "\n")
    if not found:
        body.append("Done.", style="green")
    return Panel(body, title=result.intent, border_style="green")


def build_error_panel(error: ErrorInfo) -> Panel:
    if error.retriable:
        hint = "temporary failure: retry"
    elif error.kind is ErrorKind.VALIDATION:
        hint = "fix your input"
    else:
        hint = "check the connection settings"
    body = Text()
    body.append(error.message + "\n", style="red")
    body.append(f"[{error.kind.value}] {hint}", style="dim")
    return Panel(body, title="Error", border_style="red")
