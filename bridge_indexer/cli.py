"""
Command line interface for the bridge indexer.
"""

import asyncio
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from bridge_indexer.core.config import load_settings
from bridge_indexer.core.exceptions import BridgeIndexerException
from bridge_indexer.core.logging import setup_logging
from bridge_indexer.indexer import IndexerContext, IndexerService
from bridge_indexer.models import ChainType

console = Console()
app = typer.Typer(help="L1/L2 bridge indexer")


def _settings():
    settings = load_settings()
    setup_logging(settings)
    return settings


async def _open_indexer() -> IndexerService:
    context = await IndexerContext.create(_settings())
    indexer = IndexerService(context)
    await indexer.initialize()
    return indexer


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except BridgeIndexerException as e:
        console.print(f"[red]Error:[/red] {e.message}")
        if e.details:
            console.print(e.details)
        sys.exit(1)


def _parse_chain(value: str) -> ChainType:
    try:
        return ChainType(value.lower())
    except ValueError:
        raise typer.BadParameter("chain must be 'l1' or 'l2'")


@app.command()
def run():
    """Run sync loops, the relayer (if enabled) and the API."""
    from bridge_indexer.main import main

    try:
        asyncio.run(main(_settings()))
    except KeyboardInterrupt:
        console.print("Interrupted")


@app.command()
def sync():
    """Run one sync pass on both chains and exit."""
    async def _sync():
        indexer = await _open_indexer()
        try:
            counts = await indexer.sync_now()
        finally:
            await indexer.close()
        for chain, count in counts.items():
            console.print(f"{chain.value}: {count} new events")

    _run(_sync())


@app.command()
def backfill(
    chain: str = typer.Argument(..., help="l1 or l2"),
    from_block: int = typer.Argument(..., help="First block to index"),
    to_block: Optional[int] = typer.Option(None, "--to", help="Last block (default: confirmed head)")
):
    """Index an explicit block range."""
    chain_type = _parse_chain(chain)

    async def _backfill():
        indexer = await _open_indexer()
        try:
            inserted = await indexer.backfill(chain_type, from_block, to_block)
        finally:
            await indexer.close()
        console.print(f"Backfilled {chain_type.value}: {inserted} new events")

    _run(_backfill())


@app.command()
def stats():
    """Show sync progress and bridge totals."""
    async def _stats():
        indexer = await _open_indexer()
        try:
            data = await indexer.get_stats()
        finally:
            await indexer.close()

        table = Table(title="Sync Status")
        table.add_column("Chain", style="cyan")
        table.add_column("Last synced")
        table.add_column("Head")
        table.add_column("Behind")
        table.add_column("Events")
        table.add_column("Synced", style="green")
        for chain, chain_stats in data["chains"].items():
            table.add_row(
                chain,
                str(chain_stats["last_synced_block"]),
                str(chain_stats["latest_block"] if chain_stats["latest_block"] is not None else "-"),
                str(chain_stats["blocks_behind"] if chain_stats["blocks_behind"] is not None else "-"),
                str(chain_stats["event_count"]),
                "yes" if chain_stats["is_synced"] else "no",
            )
        console.print(table)

        totals = Table(title="Bridge Totals")
        totals.add_column("Metric", style="cyan")
        totals.add_column("Value")
        for key in ("total_events", "deposit_events", "withdrawal_events", "unique_users"):
            totals.add_row(key, str(data["events"][key]))
        for key, value in data["deposits"].items():
            totals.add_row(f"deposits.{key}", str(value))
        for key, value in data["withdrawals"].items():
            totals.add_row(f"withdrawals.{key}", str(value))
        console.print(totals)

    _run(_stats())


@app.command()
def status(tx_hash: str = typer.Argument(..., help="Withdrawal hash or any of its tx hashes")):
    """Show where a withdrawal is in the prove/finalize flow."""
    async def _status():
        indexer = await _open_indexer()
        try:
            withdrawal = await indexer.withdrawals.get_withdrawal_status(tx_hash.lower())
        finally:
            await indexer.close()

        if withdrawal is None:
            console.print(f"[yellow]No withdrawal found for {tx_hash}[/yellow]")
            sys.exit(1)

        table = Table(title="Withdrawal Status")
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        for key, value in withdrawal.to_dict().items():
            table.add_row(key, "-" if value is None else str(value))
        console.print(table)

    _run(_status())


@app.command("init-db")
def init_db():
    """Create tables and sync state rows."""
    async def _init():
        indexer = await _open_indexer()
        await indexer.close()
        console.print("Database initialized")

    _run(_init())


@app.command("reset-chain")
def reset_chain(
    chain: str = typer.Argument(..., help="l1 or l2"),
    block: int = typer.Option(0, "--block", help="Watermark to rewind to")
):
    """Rewind a chain's watermark so the next pass re-scans from there."""
    chain_type = _parse_chain(chain)
    if not typer.confirm(f"Rewind {chain_type.value} watermark to block {block}?"):
        console.print("Cancelled")
        return

    async def _reset():
        indexer = await _open_indexer()
        try:
            await indexer.reset_chain(chain_type, block)
        finally:
            await indexer.close()
        console.print(f"{chain_type.value} watermark set to {block}")

    _run(_reset())


if __name__ == "__main__":
    app()
