"""
BALLOTPROOF CLI — Package init.

Re-exports the main CLI group and shared utilities.
"""

from __future__ import annotations

import asyncio
import logging

import click
from rich.console import Console

from ballotproof import __version__, config
from ballotproof.config import DEFAULT_DB_PATH
from ballotproof.store import WhitelistStore

console = Console()
DEFAULT_DB = str(DEFAULT_DB_PATH)


def run_async(coro):
    """Helper to run async coroutines from sync CLI."""
    return asyncio.run(coro)


def open_store(db: str) -> WhitelistStore:
    """Create a (not yet connected) store instance."""
    return WhitelistStore(db)


# ─── Main Group ──────────────────────────────────────────────────

@click.group()
@click.version_option(__version__, prog_name="ballotproof")
def cli() -> None:
    """BALLOTPROOF — Merkle whitelist voting."""
    logging.basicConfig(level=config.LOG_LEVEL)


# ─── Register all sub-modules ───────────────────────────────────
from ballotproof.cli import whitelist_cmds  # noqa: E402, F401
from ballotproof.cli import outbox_cmds  # noqa: E402, F401
