"""
BALLOTPROOF — Whitelist Store.

Append-only SQLite persistence for ballot whitelists and the root-push
outbox. Every Merkle tree is derived from these rows; the trees themselves
are never stored.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import aiosqlite

from ballotproof.exceptions import DatabaseTransactionError
from ballotproof.merkle import normalize_identity
from ballotproof.schema import ALL_SCHEMA, get_init_meta

logger = logging.getLogger("ballotproof.store")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class WhitelistEntry:
    ballot_id: int
    identity: str
    added_at: str


@dataclass(frozen=True)
class OutboxRow:
    id: int
    ballot_id: int
    root: str
    status: str
    attempts: int
    last_error: Optional[str]
    created_at: str
    processed_at: Optional[str]


class WhitelistStore:
    """
    Async whitelist repository on a single WAL-mode connection.

    Writes are serialised with an asyncio lock so two coroutines never
    interleave statements inside the same transaction.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    # ─── Lifecycle ────────────────────────────────────────────────

    async def connect(self) -> "WhitelistStore":
        if self._conn is not None:
            return self
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(self.db_path)
        await self._conn.execute("PRAGMA journal_mode=WAL;")
        await self._conn.execute("PRAGMA synchronous=NORMAL;")
        await self._conn.execute("PRAGMA busy_timeout=5000;")
        for stmt in ALL_SCHEMA:
            await self._conn.executescript(stmt)
        await self._conn.executemany(
            "INSERT OR IGNORE INTO ballotproof_meta (key, value) VALUES (?, ?)",
            get_init_meta(),
        )
        await self._conn.commit()
        logger.info("Whitelist store ready at %s", self.db_path)
        return self

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self):
        return await self.connect()

    async def __aexit__(self, *args):
        await self.close()

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Store not connected; call connect() first")
        return self._conn

    # ─── Whitelist ────────────────────────────────────────────────

    async def add(self, ballot_id: int, identities: Iterable) -> List[str]:
        """Append identities to a ballot's whitelist.

        Every identity is validated before anything is written. Identities
        already present are skipped.

        Returns:
            The checksum addresses that were newly added, in input order.

        Raises:
            InvalidIdentity: if any identity is not an address.
            DatabaseTransactionError: if the insert failed and was rolled back.
        """
        normalized: List[str] = []
        for identity in identities:
            addr = normalize_identity(identity)
            if addr not in normalized:
                normalized.append(addr)

        added: List[str] = []
        ts = now_iso()
        async with self._write_lock:
            try:
                for addr in normalized:
                    cursor = await self.conn.execute(
                        "INSERT OR IGNORE INTO whitelist_entries (ballot_id, identity, added_at) "
                        "VALUES (?, ?, ?)",
                        (ballot_id, addr, ts),
                    )
                    if cursor.rowcount:
                        added.append(addr)
                await self.conn.commit()
            except sqlite3.Error as e:
                await self.conn.rollback()
                logger.error("Whitelist insert for ballot %d failed: %s", ballot_id, e)
                raise DatabaseTransactionError("Could not persist whitelist entries") from e

        if added:
            logger.info("Ballot %d whitelist: +%d identities", ballot_id, len(added))
        return added

    async def identities(self, ballot_id: int) -> List[str]:
        async with self.conn.execute(
            "SELECT identity FROM whitelist_entries WHERE ballot_id = ? ORDER BY id",
            (ballot_id,),
        ) as cursor:
            return [row[0] for row in await cursor.fetchall()]

    async def entries(self, ballot_id: int) -> List[WhitelistEntry]:
        async with self.conn.execute(
            "SELECT ballot_id, identity, added_at FROM whitelist_entries "
            "WHERE ballot_id = ? ORDER BY id",
            (ballot_id,),
        ) as cursor:
            return [WhitelistEntry(*row) for row in await cursor.fetchall()]

    async def all_grouped(self) -> Dict[int, List[str]]:
        """Every whitelist, keyed by ballot id."""
        grouped: Dict[int, List[str]] = {}
        async with self.conn.execute(
            "SELECT ballot_id, identity FROM whitelist_entries ORDER BY ballot_id, id"
        ) as cursor:
            for ballot_id, identity in await cursor.fetchall():
                grouped.setdefault(ballot_id, []).append(identity)
        return grouped

    async def count(self, ballot_id: int) -> int:
        async with self.conn.execute(
            "SELECT COUNT(*) FROM whitelist_entries WHERE ballot_id = ?", (ballot_id,)
        ) as cursor:
            return (await cursor.fetchone())[0]

    # ─── Root outbox ──────────────────────────────────────────────

    async def outbox_insert(self, ballot_id: int, root_hex: str) -> int:
        async with self._write_lock:
            cursor = await self.conn.execute(
                "INSERT INTO root_outbox (ballot_id, root, status, created_at) "
                "VALUES (?, ?, 'pending', ?)",
                (ballot_id, root_hex, now_iso()),
            )
            await self.conn.commit()
            return cursor.lastrowid

    async def outbox_update(
        self,
        row_id: int,
        status: str,
        attempts: int,
        last_error: Optional[str] = None,
    ) -> None:
        processed_at = None if status == "pending" else now_iso()
        async with self._write_lock:
            await self.conn.execute(
                "UPDATE root_outbox SET status = ?, attempts = ?, last_error = ?, processed_at = ? "
                "WHERE id = ?",
                (status, attempts, last_error, processed_at, row_id),
            )
            await self.conn.commit()

    async def outbox_rows(
        self, status: Optional[str] = None, ballot_id: Optional[int] = None
    ) -> List[OutboxRow]:
        query = (
            "SELECT id, ballot_id, root, status, attempts, last_error, created_at, processed_at "
            "FROM root_outbox"
        )
        clauses, params = [], []
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if ballot_id is not None:
            clauses.append("ballot_id = ?")
            params.append(ballot_id)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY id"

        async with self.conn.execute(query, params) as cursor:
            return [OutboxRow(*row) for row in await cursor.fetchall()]
