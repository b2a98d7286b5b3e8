"""Click-based CLI for market-pulse.

Thin wrapper around library modules. Every operation delegates to the
resolver, search feeds, refresh service or store.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import Any

import click
from rich.console import Console
from rich.table import Table

console = Console(stderr=True)

_FORMAT_OPTION = click.option(
    "--format",
    "fmt",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    help="Output format.",
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call."""
    if "config" not in ctx.obj:
        from market_pulse.core import load_config

        ctx.obj["config"] = load_config(config_path=ctx.obj.get("config_path"))
    return ctx.obj["config"]


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


@dataclass
class _Services:
    store: Any
    gateway: Any
    search: Any
    resolver: Any
    refresh: Any


@asynccontextmanager
async def _open_services(config):
    """Store, upstream clients, resolver and refresh service, closed on exit."""
    from market_pulse.prices import FinanceGatewayClient, QuoteResolver
    from market_pulse.refresh import RefreshService
    from market_pulse.search import WebSearchClient
    from market_pulse.storage import create_store

    async with AsyncExitStack() as stack:
        store = await create_store(config.storage)
        stack.push_async_callback(store.close)
        gateway = await stack.enter_async_context(FinanceGatewayClient(config.gateway))
        search = await stack.enter_async_context(WebSearchClient(config.search))
        resolver = QuoteResolver(
            gateway,
            search,
            store,
            config.resolver,
            search_result_count=config.search.result_count,
        )
        refresh = RefreshService(resolver, search, gateway, store, config.refresh)
        yield _Services(store, gateway, search, resolver, refresh)


def _emit_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def _fmt_number(value: float | None, digits: int = 2) -> str:
    return f"{value:,.{digits}f}" if value is not None else "-"


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="MARKET_PULSE_CONFIG",
    default=None,
    help="Path to market-pulse.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose output.",
)
@click.version_option(package_name="market-pulse")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """Market Pulse: market prices, crypto news and sentiment dashboard backend."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = console
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# prices
# ---------------------------------------------------------------------------


@cli.command()
@click.option(
    "--symbols",
    "-s",
    type=str,
    default=None,
    help="Comma-separated symbols (default: all configured).",
)
@_FORMAT_OPTION
@click.pass_context
def prices(ctx: click.Context, symbols: str | None, fmt: str) -> None:
    """Resolve current prices through the fallback cascade."""
    config = _load_config(ctx)
    requested = [s.strip() for s in symbols.split(",") if s.strip()] if symbols else None

    async def _run():
        async with _open_services(config) as services:
            return await services.resolver.resolve_all(requested)

    batch = _run_async(_run())

    if fmt == "json":
        _emit_json(batch.model_dump(mode="json"))
        return

    table = Table(title=f"Market Prices ({batch.source.value})")
    table.add_column("Symbol", style="bold")
    table.add_column("Name")
    table.add_column("Price", justify="right")
    table.add_column("24h %", justify="right")
    table.add_column("High", justify="right")
    table.add_column("Low", justify="right")
    table.add_column("Source")
    for q in batch.quotes:
        change = q.change_24h
        color = "green" if change and change > 0 else "red" if change and change < 0 else "white"
        table.add_row(
            q.symbol,
            q.display_name,
            _fmt_number(q.price),
            f"[{color}]{_fmt_number(change)}[/{color}]",
            _fmt_number(q.high_24h),
            _fmt_number(q.low_24h),
            q.source.value,
        )
    console.print(table)
    if batch.missing:
        console.print(f"[yellow]No price for: {', '.join(batch.missing)}[/yellow]")


# ---------------------------------------------------------------------------
# news
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--limit", "-n", type=int, default=15, help="Maximum items to show.")
@click.option(
    "--source",
    type=click.Choice(["search", "gateway", "stored"], case_sensitive=False),
    default="search",
    help="Where to read news from.",
)
@_FORMAT_OPTION
@click.pass_context
def news(ctx: click.Context, limit: int, source: str, fmt: str) -> None:
    """Show crypto news from web search, the finance gateway, or the store."""
    config = _load_config(ctx)

    async def _run():
        from market_pulse.core import UpstreamError
        from market_pulse.search import search_crypto_news, to_news_records

        async with _open_services(config) as services:
            if source == "gateway":
                try:
                    return await services.gateway.get_market_news()
                except UpstreamError as exc:
                    console.print(f"[red]Gateway news failed: {exc}[/red]")
                    return []
            if source == "stored":
                return await services.store.list_news(limit=limit)
            results = await search_crypto_news(services.search, limit)
            return to_news_records(results)

    records = _run_async(_run())[:limit]

    if fmt == "json":
        _emit_json([r.model_dump(mode="json") for r in records])
        return

    if not records:
        console.print("[yellow]No news found.[/yellow]")
        return

    table = Table(title=f"Crypto News ({source})")
    table.add_column("Published")
    table.add_column("Title", style="bold")
    table.add_column("Source")
    table.add_column("Category")
    for r in records:
        table.add_row(
            r.published_at.strftime("%Y-%m-%d %H:%M"),
            r.title,
            r.source or "-",
            r.category.value,
        )
    console.print(table)


# ---------------------------------------------------------------------------
# refresh
# ---------------------------------------------------------------------------


@cli.command()
@_FORMAT_OPTION
@click.pass_context
def refresh(ctx: click.Context, fmt: str) -> None:
    """Run one full refresh: prices, news, analysis and history."""
    config = _load_config(ctx)

    async def _run():
        async with _open_services(config) as services:
            return await services.refresh.refresh()

    with console.status("Refreshing..."):
        result = _run_async(_run())

    if fmt == "json":
        _emit_json(result.model_dump(mode="json") | {"success": result.success})
    else:
        _output_refresh_table(result)

    if not result.success:
        raise SystemExit(1)


def _output_refresh_table(result) -> None:
    table = Table(title="Refresh Result")
    table.add_column("Stage", style="bold")
    table.add_column("Status")
    table.add_column("Items", justify="right")
    table.add_column("Error")
    for stage in ("prices", "news", "analysis", "history"):
        ok = getattr(result, stage)
        table.add_row(
            stage,
            "[green]✓ ok[/green]" if ok else "[red]✗ failed[/red]",
            str(result.counts.get(stage, "-")),
            result.errors.get(stage, ""),
        )
    console.print(table)


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", type=str, default=None, help="Bind address (default from config).")
@click.option("--port", "-p", type=int, default=None, help="Port number (default from config).")
@click.option("--reload", is_flag=True, default=False, help="Auto-reload on code changes.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, reload: bool) -> None:
    """Start the REST API server with the background refresh scheduler."""
    import uvicorn

    config = _load_config(ctx)
    host = host or config.api.host
    port = port or config.api.port

    # The app factory loads its own config; point it at the same file.
    if ctx.obj.get("config_path"):
        os.environ["MARKET_PULSE_CONFIG"] = os.path.abspath(ctx.obj["config_path"])

    console.print(f"Starting market-pulse API on [bold]{host}:{port}[/bold]")
    console.print(f"API docs: http://{host}:{port}/docs")

    uvicorn.run(
        "market_pulse.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# schedule
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--once", is_flag=True, default=False, help="Run a single refresh after the startup delay.")
@click.pass_context
def schedule(ctx: click.Context, once: bool) -> None:
    """Run the periodic refresh scheduler in the foreground."""
    config = _load_config(ctx)

    async def _run():
        from market_pulse.refresh import RefreshScheduler

        async with _open_services(config) as services:
            scheduler = RefreshScheduler(services.refresh, config.refresh)
            if once:
                await asyncio.sleep(config.refresh.startup_delay_seconds)
                result = await scheduler.trigger()
                _output_refresh_table(result)
                return
            scheduler.start()
            try:
                await asyncio.Event().wait()
            finally:
                await scheduler.stop()

    console.print(
        f"Refreshing every [bold]{config.refresh.interval_minutes}[/bold] minutes "
        f"(first run in {config.refresh.startup_delay_seconds:g}s). Ctrl-C to stop."
    )
    try:
        _run_async(_run())
    except KeyboardInterrupt:
        console.print("Scheduler stopped.")


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show storage statistics and the last refresh time."""
    config = _load_config(ctx)

    async def _run():
        from market_pulse.storage import create_store

        store = await create_store(config.storage)
        try:
            return await store.get_statistics(), await store.list_prices()
        finally:
            await store.close()

    stats, stored_prices = _run_async(_run())

    table = Table(title="Market Pulse Status")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Storage backend", config.storage.backend.value)
    table.add_row("Database path", config.storage.sqlite_path)
    table.add_row("Last refresh", stats["last_refresh"] or "never")
    table.add_section()
    table.add_row("Stored prices", str(stats["prices"]))
    table.add_row("News items", str(stats["news"]))
    table.add_row("Analysis items", str(stats["analysis"]))
    table.add_row("History points", str(stats["history_points"]))
    if stored_prices:
        table.add_section()
        for record in stored_prices:
            table.add_row(
                f"{record.symbol} ({record.updated_at:%Y-%m-%d %H:%M})",
                _fmt_number(record.price),
            )
    console.print(table)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Main entry point for the CLI."""
    cli()
