"""
CLI Interface for Market Sync
Command-line interface using Typer.
"""

import asyncio
import sys
from datetime import datetime
from typing import List, Optional

import typer
from loguru import logger
from rich.console import Console, Group
from rich.live import Live
from rich.table import Table
from rich.text import Text

from core.config import MarketSyncConfig
from core.data.cache_store import MarketCache
from core.data.models import ConnectionStatus, DataSource, Quote
from core.data.rate_limit import RateLimitTracker
from core.factory import create_market_client, create_market_sync, create_store
from core.market_sync import MarketState

from .formatters import format_currency, format_percentage, format_price, format_time

console = Console()

app = typer.Typer(help="Crypto market quotes with live price streaming.")

SOURCE_LABELS = {
    DataSource.LIVE: "[green]live API[/green]",
    DataSource.CACHE: "[cyan]cache[/cyan]",
    DataSource.STALE_CACHE: "[yellow]stale cache[/yellow]",
    DataSource.FALLBACK: "[red]demo data[/red]",
}

STATUS_STYLES = {
    ConnectionStatus.CONNECTED: "green",
    ConnectionStatus.CONNECTING: "yellow",
    ConnectionStatus.DISCONNECTED: "red",
}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    log_file: Optional[str] = typer.Option(None, help="Also write logs to this file")
):
    """Configure logging sinks for every command."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")
    if log_file:
        logger.add(log_file, level="DEBUG", rotation="10 MB")


def _price_decimals(price: float) -> int:
    return 2 if abs(price) >= 1 else 6


def build_quote_table(quotes: List[Quote], limit: Optional[int] = None, title: str = "Market") -> Table:
    """Render quotes as a rich table."""
    table = Table(title=title)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Name")
    table.add_column("Symbol", style="bold")
    table.add_column("Price", justify="right")
    table.add_column("24h", justify="right")
    table.add_column("Market Cap", justify="right")
    table.add_column("Updated", justify="right", style="dim")

    rows = quotes[:limit] if limit else quotes
    for index, quote in enumerate(rows, 1):
        change = quote.price_change_percentage_24h or 0.0
        color = "green" if change >= 0 else "red"
        table.add_row(
            str(index),
            quote.name,
            quote.symbol.upper(),
            f"${format_price(quote.current_price, _price_decimals(quote.current_price))}",
            f"[{color}]{format_percentage(change)}[/{color}]",
            format_currency(quote.market_cap) if quote.market_cap is not None else "-",
            format_time(quote.last_updated),
        )
    return table


def render_state(state: MarketState, limit: Optional[int] = None) -> Group:
    """Live view: status line, optional banner and the quote table."""
    status = state.connection_status
    style = STATUS_STYLES.get(status, "white")
    header = Text.assemble(
        ("Stream: ", "bold"),
        (status.value, style),
        ("   Updated: ", "bold"),
        datetime.now().strftime("%H:%M:%S"),
    )
    if state.is_loading:
        header.append("   loading...", style="yellow")
    if state.search_query:
        header.append(f"   search: {state.search_query}", style="cyan")

    parts = [header]
    if state.error:
        parts.append(Text(state.error, style="bold red"))
    parts.append(build_quote_table(state.visible_quotes, limit))
    return Group(*parts)


def _filter(quotes: List[Quote], search: Optional[str]) -> List[Quote]:
    if not search:
        return quotes
    return [quote for quote in quotes if quote.matches(search)]


@app.command()
def fetch(
    force: bool = typer.Option(False, "--force", "-f", help="Bypass the cache"),
    limit: int = typer.Option(20, help="Number of rows to show"),
    search: Optional[str] = typer.Option(None, help="Filter by name or symbol")
):
    """
    Fetch the market list once and print it.
    """
    if limit < 1:
        console.print("[red]Error: --limit must be at least 1[/red]")
        raise typer.Exit(1)

    async def _run():
        client = create_market_client()
        try:
            return await client.fetch(force_refresh=force)
        finally:
            await client.close()

    result = asyncio.run(_run())
    quotes = _filter(result.quotes, search)

    console.print(build_quote_table(quotes, limit, title="Crypto Market"))
    console.print(f"Source: {SOURCE_LABELS[result.source]}  ({len(result.quotes)} quotes)")


@app.command()
def watch(
    interval: Optional[float] = typer.Option(None, help="Refresh interval in seconds"),
    search: Optional[str] = typer.Option(None, help="Filter by name or symbol"),
    limit: int = typer.Option(20, help="Number of rows to show")
):
    """
    Keep the market list in sync and stream live prices until interrupted.
    """
    if interval is not None and interval <= 0:
        console.print("[red]Error: --interval must be positive[/red]")
        raise typer.Exit(1)

    async def _run():
        sync = create_market_sync()
        if interval is not None:
            sync.refresh_interval = interval
        if search:
            sync.set_search_query(search)

        with Live(render_state(sync.state, limit), console=console, refresh_per_second=4) as live:
            sync.add_listener(lambda state: live.update(render_state(state, limit)))
            async with sync:
                while True:
                    await asyncio.sleep(1)
                    live.update(render_state(sync.state, limit))

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\n[blue]Stopped.[/blue]")


@app.command()
def status():
    """
    Show cache age and rate-limit state.
    """
    cfg = MarketSyncConfig()

    async def _run():
        store = create_store(cfg)
        cache = MarketCache(store, expiry_seconds=cfg.cache_expiry)
        tracker = RateLimitTracker(
            store,
            window_seconds=cfg.rate_limit_window,
            max_requests=cfg.rate_limit_max_requests,
        )
        return await cache.info(), await tracker.state(), tracker

    info, state, tracker = asyncio.run(_run())

    console.print("\n[bold]Cache:[/bold]")
    if info is None:
        console.print("  empty")
    else:
        label = "[yellow]expired[/yellow]" if info["expired"] else "[green]fresh[/green]"
        console.print(f"  {info['count']} quotes, saved {format_time(info['timestamp'])} "
                      f"({info['age_seconds'] / 60:.1f} min ago, {label})")

    console.print("\n[bold]Rate limit:[/bold]")
    console.print(f"  Requests this window: {state.request_count}/{tracker.max_requests}")
    console.print(f"  Window started: {format_time(state.window_start)}")
    console.print(f"  Limited: {'[red]yes[/red]' if state.limited else '[green]no[/green]'}")
    console.print(f"\nData directory: {cfg.data_dir}")


@app.command("reset-limit")
def reset_limit():
    """
    Reset the persisted rate-limit state.
    """
    cfg = MarketSyncConfig()
    tracker = RateLimitTracker(
        create_store(cfg),
        window_seconds=cfg.rate_limit_window,
        max_requests=cfg.rate_limit_max_requests,
    )
    asyncio.run(tracker.reset())
    console.print("[green]✓ Rate limit reset[/green]")


@app.command("clear-cache")
def clear_cache():
    """
    Remove the cached market snapshot.
    """
    cfg = MarketSyncConfig()
    cache = MarketCache(create_store(cfg), expiry_seconds=cfg.cache_expiry)
    asyncio.run(cache.clear())
    console.print("[green]✓ Market cache cleared[/green]")


if __name__ == "__main__":
    app()
