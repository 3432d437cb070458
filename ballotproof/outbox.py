"""
BALLOTPROOF — Root Push Outbox.

A rebuilt whitelist root only becomes usable once the ledger stores it.
The push is a separate, slow and failable call, so it is modelled as an
outbox: rebuilds record a command, one worker applies commands in order,
and every command ends up confirmed, failed or superseded.

- commands are persisted in ``root_outbox`` and re-queued on start
- a command whose ballot has a newer command queued is superseded unpushed
- transient ledger errors are retried with capped exponential backoff
- exhausting the attempts raises a critical metric (operator alarm)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from ballotproof import config
from ballotproof.exceptions import BallotProofError
from ballotproof.ledger import LedgerClient
from ballotproof.merkle import digest_to_hex, hex_to_digest
from ballotproof.metrics import metrics
from ballotproof.store import WhitelistStore

logger = logging.getLogger("ballotproof.outbox")

PENDING = "pending"
CONFIRMED = "confirmed"
FAILED = "failed"
SUPERSEDED = "superseded"

# Errors worth another attempt; anything raised by the registry itself is final.
TRANSIENT_ERRORS = (ConnectionError, OSError, RuntimeError, asyncio.TimeoutError)


@dataclass
class SyncTicket:
    """Handle on one queued root push."""

    row_id: int
    ballot_id: int
    root: bytes
    _future: asyncio.Future = field(repr=False)

    @property
    def status(self) -> str:
        return self._future.result() if self._future.done() else PENDING

    async def wait(self, timeout: Optional[float] = None) -> str:
        """Wait for the push to settle. Returns ``pending`` on timeout."""
        try:
            return await asyncio.wait_for(asyncio.shield(self._future), timeout)
        except asyncio.TimeoutError:
            return PENDING

    def _resolve(self, status: str) -> None:
        if not self._future.done():
            self._future.set_result(status)


class RootOutbox:
    """Single-worker queue of root pushes to the ledger."""

    def __init__(
        self,
        store: WhitelistStore,
        ledger: LedgerClient,
        *,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.max_attempts = max(1, max_attempts if max_attempts is not None else config.PUSH_MAX_ATTEMPTS)
        self.backoff_base = backoff_base if backoff_base is not None else config.PUSH_BACKOFF_BASE
        self.backoff_max = backoff_max if backoff_max is not None else config.PUSH_BACKOFF_MAX

        self._queue: asyncio.Queue[SyncTicket] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._latest: Dict[int, SyncTicket] = {}
        self._confirmed: Dict[int, bytes] = {}
        self._failed: Dict[int, bytes] = {}

    # ─── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> int:
        """Re-queue commands left pending by a previous run and start the worker."""
        requeued = 0
        for row in await self.store.outbox_rows(status=PENDING):
            self._put(self._ticket(row.id, row.ballot_id, hex_to_digest(row.root)))
            requeued += 1
        if requeued:
            logger.info("Re-queued %d pending root pushes", requeued)

        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="ballotproof-root-outbox")
        return requeued

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def drain(self) -> None:
        """Block until every queued command has been processed."""
        await self._queue.join()

    # ─── Commands ─────────────────────────────────────────────────

    async def enqueue(self, ballot_id: int, root: bytes) -> SyncTicket:
        """Persist and queue a push of ``root`` for ``ballot_id``."""
        row_id = await self.store.outbox_insert(ballot_id, digest_to_hex(root))
        ticket = self._ticket(row_id, ballot_id, root)
        self._put(ticket)
        logger.debug("Queued root push #%d for ballot %d", row_id, ballot_id)
        return ticket

    def mark_confirmed(self, ballot_id: int, root: bytes) -> None:
        """Record a root already known to be on the ledger."""
        self._confirmed[ballot_id] = root
        self._failed.pop(ballot_id, None)

    async def retry_failed(self, ballot_id: Optional[int] = None) -> int:
        """Re-queue failed pushes that are still the newest for their ballot.

        Staleness is read from ``root_outbox`` rather than memory, so it holds
        across restarts. A failed row with a later row for the same ballot,
        or whose root the ledger already holds, is marked superseded.
        """
        newest: Dict[int, int] = {}
        for row in await self.store.outbox_rows(ballot_id=ballot_id):
            newest[row.ballot_id] = row.id

        retried = 0
        for row in await self.store.outbox_rows(status=FAILED, ballot_id=ballot_id):
            root = hex_to_digest(row.root)
            latest = self._latest.get(row.ballot_id)
            stale = (
                newest[row.ballot_id] != row.id
                or (latest is not None and latest.row_id > row.id)
                or self._confirmed.get(row.ballot_id) == root
            )
            if stale:
                await self.store.outbox_update(row.id, SUPERSEDED, row.attempts, row.last_error)
                if self._failed.get(row.ballot_id) == root:
                    del self._failed[row.ballot_id]
                logger.info("Failed root push #%d is stale, marked superseded", row.id)
                continue
            await self.store.outbox_update(row.id, PENDING, 0)
            self._failed.pop(row.ballot_id, None)
            self._put(self._ticket(row.id, row.ballot_id, root))
            retried += 1
        if retried:
            logger.info("Retrying %d failed root pushes", retried)
        return retried

    # ─── Status ───────────────────────────────────────────────────

    def confirmed_root(self, ballot_id: int) -> Optional[bytes]:
        return self._confirmed.get(ballot_id)

    def latest(self, ballot_id: int) -> Optional[SyncTicket]:
        return self._latest.get(ballot_id)

    def status(self, ballot_id: int, root: bytes) -> str:
        """Sync state of ``root`` for ``ballot_id``: confirmed, pending or failed."""
        if self._confirmed.get(ballot_id) == root:
            return CONFIRMED
        if self._failed.get(ballot_id) == root:
            return FAILED
        return PENDING

    async def wait_for(self, ballot_id: int, timeout: Optional[float] = None) -> str:
        """Wait for the newest push of a ballot, following supersessions."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            ticket = self._latest.get(ballot_id)
            if ticket is None:
                return CONFIRMED if ballot_id in self._confirmed else PENDING
            remaining = None if deadline is None else max(0.0, deadline - loop.time())
            status = await ticket.wait(remaining)
            if status != SUPERSEDED:
                return status

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    # ─── Worker ───────────────────────────────────────────────────

    def _ticket(self, row_id: int, ballot_id: int, root: bytes) -> SyncTicket:
        future = asyncio.get_running_loop().create_future()
        ticket = SyncTicket(row_id=row_id, ballot_id=ballot_id, root=root, _future=future)
        current = self._latest.get(ballot_id)
        if current is None or current.row_id <= row_id:
            self._latest[ballot_id] = ticket
        return ticket

    def _put(self, ticket: SyncTicket) -> None:
        self._queue.put_nowait(ticket)
        metrics.set_gauge("ballotproof_root_push_pending", self._queue.qsize())

    def _is_superseded(self, ticket: SyncTicket) -> bool:
        latest = self._latest.get(ticket.ballot_id)
        return latest is not None and latest.row_id > ticket.row_id

    async def _run(self) -> None:
        while True:
            ticket = await self._queue.get()
            try:
                await self._process(ticket)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Root push #%d crashed", ticket.row_id)
                try:
                    await self._fail(ticket, 0, f"internal error: {e}")
                except Exception:
                    logger.exception("Could not record failure of root push #%d", ticket.row_id)
                    ticket._resolve(FAILED)
            finally:
                self._queue.task_done()
                metrics.set_gauge("ballotproof_root_push_pending", self._queue.qsize())

    async def _process(self, ticket: SyncTicket) -> None:
        attempts = 0
        last_error: Optional[str] = None

        while attempts < self.max_attempts:
            if self._is_superseded(ticket):
                await self.store.outbox_update(ticket.row_id, SUPERSEDED, attempts)
                ticket._resolve(SUPERSEDED)
                logger.debug("Root push #%d superseded", ticket.row_id)
                return

            attempts += 1
            try:
                await self.ledger.update_merkle_root(ticket.ballot_id, ticket.root)
            except BallotProofError as e:
                # The ledger rejected the call itself; repeating it cannot help.
                last_error = str(e)
                break
            except TRANSIENT_ERRORS as e:
                last_error = str(e) or type(e).__name__
                if attempts < self.max_attempts:
                    wait = min(self.backoff_base * 2 ** (attempts - 1), self.backoff_max)
                    logger.warning(
                        "Root push #%d for ballot %d failed (%s), retry %d/%d in %.2fs",
                        ticket.row_id, ticket.ballot_id, last_error,
                        attempts, self.max_attempts - 1, wait,
                    )
                    await asyncio.sleep(wait)
                continue

            await self.store.outbox_update(ticket.row_id, CONFIRMED, attempts)
            self.mark_confirmed(ticket.ballot_id, ticket.root)
            ticket._resolve(CONFIRMED)
            metrics.inc("ballotproof_root_pushes_confirmed_total")
            logger.info(
                "Ballot %d root %s... confirmed on ledger",
                ticket.ballot_id, ticket.root.hex()[:16],
            )
            return

        await self._fail(ticket, attempts, last_error)

    async def _fail(self, ticket: SyncTicket, attempts: int, error: Optional[str]) -> None:
        await self.store.outbox_update(ticket.row_id, FAILED, attempts, error)
        self._failed[ticket.ballot_id] = ticket.root
        ticket._resolve(FAILED)
        metrics.inc(
            "ballotproof_root_push_failures_total",
            meta={"ballot_id": ticket.ballot_id, "row_id": ticket.row_id, "error": error},
        )
