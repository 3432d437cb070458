"""CLI commands: outbox status."""

from __future__ import annotations

import click
from rich.table import Table

from ballotproof.cli import DEFAULT_DB, cli, console, open_store, run_async

_STATUS_STYLE = {
    "pending": "yellow",
    "confirmed": "green",
    "failed": "red",
    "superseded": "dim",
}


@cli.group()
def outbox():
    """Inspect root pushes to the ledger."""
    pass


@outbox.command("status")
@click.option("--ballot", "ballot_id", type=int, default=None, help="Only this ballot")
@click.option("--status", "status", type=click.Choice(sorted(_STATUS_STYLE)), default=None)
@click.option("--db", default=DEFAULT_DB, help="Database path")
def outbox_status(ballot_id, status, db) -> None:
    """Show queued, confirmed and failed root pushes."""

    async def _rows():
        async with open_store(db) as store:
            return await store.outbox_rows(status=status, ballot_id=ballot_id)

    rows = run_async(_rows())
    if not rows:
        console.print("[dim]No root pushes recorded.[/]")
        return

    table = Table(title="Root push outbox")
    table.add_column("ID", style="bold", width=6)
    table.add_column("Ballot", width=7)
    table.add_column("Root", style="cyan")
    table.add_column("Status")
    table.add_column("Attempts", width=8)
    table.add_column("Last error", style="dim")
    for row in rows:
        style = _STATUS_STYLE.get(row.status, "white")
        table.add_row(
            str(row.id),
            str(row.ballot_id),
            row.root[:18] + "...",
            f"[{style}]{row.status}[/]",
            str(row.attempts),
            (row.last_error or "")[:40],
        )
    console.print(table)

    failed = sum(1 for r in rows if r.status == "failed")
    if failed:
        console.print(f"[red]⚠ {failed} push(es) failed; the ledger is behind the whitelist.[/]")
