#!/usr/bin/env python3
"""
Position engine runner.

Commands:
  run          start the engine (monitor + exit consumer) until Ctrl+C
  positions    list active positions from the durable store
  performance  realized performance over the last N days
  failed       recent failed trade attempts
"""
import asyncio
import json
import sys
from dataclasses import replace
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from config import EngineConfig, LoggingConfig, get_config
from container import ServiceContainer
from errors import FatalError
from position_models import PositionStatus, TokenSnapshot, utcnow

app = typer.Typer(help="Position lifecycle & risk engine")
console = Console()


def configure_logging(cfg: LoggingConfig) -> None:
    """stderr at the configured level plus a rotating file sink."""
    logger.remove()
    logger.add(sys.stderr, level=cfg.level)
    Path(cfg.path).parent.mkdir(parents=True, exist_ok=True)
    logger.add(cfg.path, level="DEBUG", rotation=cfg.rotation, retention=cfg.retention)


def _load_snapshots(path: Path) -> List[TokenSnapshot]:
    data = json.loads(path.read_text())
    if isinstance(data, dict):
        data = [data]
    return [TokenSnapshot.from_dict(item) for item in data]


async def _run(cfg: EngineConfig, tokens: Optional[Path]) -> int:
    container = ServiceContainer(cfg)
    engine = container.engine
    if container.metrics is not None:
        container.metrics.serve(cfg.metrics.port)
    try:
        await engine.start()
    except FatalError as e:
        console.print(f"[red]✗ Engine failed to start: {e}[/red]")
        return 1

    exit_code = 0
    try:
        if tokens is not None:
            for snapshot in _load_snapshots(tokens):
                position = await engine.evaluate_opportunity(snapshot)
                if position is not None:
                    console.print(f"[green]✓ Opened {position.token_address} "
                                  f"qty={position.quantity} @ {position.entry_price}[/green]")
        while engine.is_running:
            await asyncio.sleep(1)
    finally:
        try:
            outcomes = await engine.stop()
            for outcome in outcomes:
                console.print(f"  {outcome.token_address}: {outcome.status.value}")
        except FatalError as e:
            console.print(f"[red]✗ Shutdown incomplete: {e}[/red]")
            exit_code = 1
    return exit_code


@app.command()
def run(tokens: Optional[Path] = typer.Option(
            None, "--tokens", "-t", help="JSON file of token snapshots to evaluate on startup"),
        live: bool = typer.Option(False, "--live", help="Override DRY_RUN and trade live")):
    """Start the engine and monitor positions until interrupted."""
    cfg = get_config()
    if live:
        cfg = replace(cfg, trading=replace(cfg.trading, dry_run=False))
    configure_logging(cfg.logging)
    mode = "[bold red]LIVE[/bold red]" if not cfg.trading.dry_run else "[bold green]DRY RUN[/bold green]"
    console.print(Panel.fit(f"[bold cyan]POSITION ENGINE[/bold cyan]  {mode}", border_style="cyan"))
    try:
        code = asyncio.run(_run(cfg, tokens))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        code = 0
    raise typer.Exit(code)


async def _with_store(cfg: EngineConfig, fn):
    container = ServiceContainer(cfg)
    store = container.store
    await store.connect()
    try:
        return await fn(container)
    finally:
        await store.disconnect()


@app.command()
def positions():
    """List active positions."""
    cfg = get_config()
    configure_logging(cfg.logging)
    records = asyncio.run(_with_store(
        cfg, lambda c: c.store.get_positions_by_status(PositionStatus.ACTIVE)))
    table = Table(show_header=True, header_style="bold magenta")
    for col in ("Token", "Entry", "Current", "Qty", "Stop", "Target", "P&L %"):
        table.add_column(col)
    for p in records:
        table.add_row(p.token_address, f"{p.entry_price:.8f}", f"{p.current_price:.8f}",
                      f"{p.quantity}", f"{p.stop_loss:.8f}", f"{p.take_profit:.8f}",
                      f"{p.pnl_percentage:+.2f}")
    console.print(table)
    console.print(f"{len(records)} active position(s)")


@app.command()
def performance(days: int = typer.Option(30, "--days", "-d", help="Lookback in days")):
    """Show realized performance."""
    cfg = get_config()
    configure_logging(cfg.logging)
    end = utcnow()
    m = asyncio.run(_with_store(
        cfg, lambda c: c.performance.summarize(end - timedelta(days=days), end)))
    table = Table(show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Trades", str(m.total_trades))
    table.add_row("Profitable", str(m.profitable_trades))
    table.add_row("Win rate", f"{m.win_rate:.1%}")
    table.add_row("Total P&L", f"{m.total_pnl:+.6f}")
    table.add_row("Profit factor", f"{m.profit_factor:.2f}")
    table.add_row("Sharpe", f"{m.sharpe_ratio:.2f}")
    table.add_row("Fees", f"{m.total_fees:.6f}")
    console.print(Panel.fit(table, title=f"Last {days} days", border_style="cyan"))


@app.command()
def failed(limit: int = typer.Option(20, "--limit", "-n")):
    """Show recent failed trade attempts."""
    cfg = get_config()
    configure_logging(cfg.logging)
    records = asyncio.run(_with_store(cfg, lambda c: c.store.get_failed_trades(limit)))
    table = Table(show_header=True, header_style="bold magenta")
    for col in ("Time", "Type", "Token", "Price", "Qty", "Error"):
        table.add_column(col)
    for f in records:
        table.add_row(f.timestamp.strftime("%Y-%m-%d %H:%M:%S"), f.trade_type.value,
                      f.token_address, f"{f.price}", f"{f.quantity}",
                      f"[red]{f.error}[/red]" + (f" ({f.error_code})" if f.error_code else ""))
    console.print(table)


if __name__ == "__main__":
    app()
