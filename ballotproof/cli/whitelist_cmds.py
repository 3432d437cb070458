"""CLI commands: init, whitelist add/list, root, proof, verify.

These work directly on the whitelist store. Roots changed here are pushed
to the ledger the next time the API service starts and reconciles.
"""

from __future__ import annotations

import sys

import click
from rich.panel import Panel
from rich.table import Table

from ballotproof import __version__
from ballotproof.cli import DEFAULT_DB, cli, console, open_store, run_async
from ballotproof.exceptions import InvalidIdentity, NotWhitelisted
from ballotproof.merkle import (
    MerkleAccumulator,
    digest_to_hex,
    hex_to_digest,
    leaf_hash,
    verify as verify_proof,
)


@cli.command()
@click.option("--db", default=DEFAULT_DB, help="Database path")
def init(db) -> None:
    """Initialize the whitelist database."""

    async def _init():
        async with open_store(db) as store:
            return store.db_path

    path = run_async(_init())
    console.print(
        Panel(
            f"[bold green]✓ BALLOTPROOF v{__version__} initialized[/]\nDatabase: {path}",
            title="🗳  BALLOTPROOF",
            border_style="green",
        )
    )


@cli.group()
def whitelist():
    """Manage ballot whitelists."""
    pass


@whitelist.command("add")
@click.argument("ballot_id", type=int)
@click.argument("addresses", nargs=-1, required=True)
@click.option("--db", default=DEFAULT_DB, help="Database path")
def whitelist_add(ballot_id, addresses, db) -> None:
    """Add ADDRESSES to the whitelist of BALLOT_ID."""

    async def _add():
        async with open_store(db) as store:
            added = await store.add(ballot_id, addresses)
            tree = MerkleAccumulator(await store.identities(ballot_id))
            return added, tree

    try:
        added, tree = run_async(_add())
    except InvalidIdentity as e:
        console.print(f"[red]✗ {e}[/]")
        sys.exit(1)

    console.print(
        f"[green]✓[/] Added [bold]{len(added)}[/] address(es) to ballot [bold]#{ballot_id}[/] "
        f"({len(tree)} total)\n   [dim]Root: {digest_to_hex(tree.root)}[/]"
    )


@whitelist.command("list")
@click.argument("ballot_id", type=int)
@click.option("--db", default=DEFAULT_DB, help="Database path")
def whitelist_list(ballot_id, db) -> None:
    """List the whitelist of BALLOT_ID."""

    async def _list():
        async with open_store(db) as store:
            return await store.entries(ballot_id)

    entries = run_async(_list())
    if not entries:
        console.print(f"[dim]Ballot #{ballot_id} has no whitelisted addresses.[/]")
        return

    table = Table(title=f"Ballot #{ballot_id} whitelist")
    table.add_column("#", style="dim", width=5)
    table.add_column("Address", style="cyan")
    table.add_column("Added", style="dim")
    for i, entry in enumerate(entries, 1):
        table.add_row(str(i), entry.identity, entry.added_at[:19])
    console.print(table)


@cli.command()
@click.argument("ballot_id", type=int)
@click.option("--db", default=DEFAULT_DB, help="Database path")
def root(ballot_id, db) -> None:
    """Print the Merkle root of BALLOT_ID's whitelist."""

    async def _root():
        async with open_store(db) as store:
            return MerkleAccumulator(await store.identities(ballot_id))

    tree = run_async(_root())
    console.print(f"[bold cyan]Root:[/] {digest_to_hex(tree.root)}  [dim]({len(tree)} addresses)[/]")


@cli.command()
@click.argument("ballot_id", type=int)
@click.argument("address")
@click.option("--db", default=DEFAULT_DB, help="Database path")
def proof(ballot_id, address, db) -> None:
    """Print the inclusion proof of ADDRESS in BALLOT_ID."""

    async def _proof():
        async with open_store(db) as store:
            return MerkleAccumulator(await store.identities(ballot_id))

    tree = run_async(_proof())
    try:
        siblings = tree.proof(address)
    except NotWhitelisted:
        console.print(f"[red]✗ {address} is not whitelisted in ballot #{ballot_id}[/]")
        sys.exit(1)

    console.print(f"[bold cyan]Root:[/] {digest_to_hex(tree.root)}")
    for sibling in siblings:
        click.echo(digest_to_hex(sibling))


@cli.command()
@click.argument("address")
@click.argument("merkle_root")
@click.argument("siblings", nargs=-1)
def verify(address, merkle_root, siblings) -> None:
    """Check that ADDRESS is included under MERKLE_ROOT given SIBLINGS."""
    try:
        leaf = leaf_hash(address)
        root_bytes = hex_to_digest(merkle_root)
        proof_bytes = [hex_to_digest(s) for s in siblings]
    except (InvalidIdentity, ValueError) as e:
        console.print(f"[red]✗ {e}[/]")
        sys.exit(1)

    if verify_proof(leaf, proof_bytes, root_bytes):
        console.print("[green]✅ Proof valid[/]")
    else:
        console.print("[red]❌ Proof invalid[/]")
        sys.exit(1)
