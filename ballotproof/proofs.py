"""
BALLOTPROOF — Proof Service.

Keeps one live Merkle tree per ballot, derived from the whitelist store,
and hands out inclusion proofs. The trees are a cache: they are rebuilt
wholesale on every whitelist change and on process start.

Concurrency:
- rebuilds of the same ballot are serialised by a per-ballot asyncio lock;
  different ballots rebuild independently
- a rebuild builds the new tree off to the side and swaps it in with one
  dict assignment, so proof lookups see the old or the new tree, never a
  partial one, and never wait on a lock
- the ledger push runs in the outbox worker, outside every rebuild lock

Between a swap and the ledger confirming the new root, proofs for newly
added identities are rejected on-ledger. Lookups report this window as a
non-confirmed ``sync_status`` so callers can say "retry shortly".
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ballotproof.exceptions import NotWhitelisted, UnknownBallot
from ballotproof.merkle import EMPTY_ROOT, MerkleAccumulator, digest_to_hex
from ballotproof.metrics import metrics
from ballotproof.outbox import CONFIRMED, PENDING, RootOutbox, SyncTicket
from ballotproof.store import WhitelistStore

logger = logging.getLogger("ballotproof.proofs")


@dataclass(frozen=True)
class ProofResult:
    proof: List[bytes] = field(default_factory=list)
    root: bytes = EMPTY_ROOT
    is_whitelisted: bool = False
    sync_status: str = PENDING

    @property
    def retryable(self) -> bool:
        """True when the identity is eligible but the ledger lags behind."""
        return self.is_whitelisted and self.sync_status != CONFIRMED

    def to_dict(self) -> dict:
        return {
            "proof": [digest_to_hex(p) for p in self.proof],
            "merkleRoot": digest_to_hex(self.root),
            "isWhitelisted": self.is_whitelisted,
            "syncStatus": self.sync_status,
        }


class ProofService:
    """Per-ballot Merkle trees kept in step with the whitelist store."""

    def __init__(self, store: WhitelistStore, outbox: RootOutbox):
        self.store = store
        self.outbox = outbox
        self._trees: Dict[int, MerkleAccumulator] = {}
        self._locks: Dict[int, asyncio.Lock] = {}

    def _lock_for(self, ballot_id: int) -> asyncio.Lock:
        lock = self._locks.get(ballot_id)
        if lock is None:
            lock = self._locks[ballot_id] = asyncio.Lock()
        return lock

    # ─── Startup ──────────────────────────────────────────────────

    async def start(self) -> int:
        """Replay the whitelist store and reconcile every root with the ledger.

        Returns:
            Number of ballots whose tree was rebuilt.
        """
        await self.outbox.start()

        grouped = await self.store.all_grouped()
        for ballot_id, identities in grouped.items():
            async with self._lock_for(ballot_id):
                self._trees[ballot_id] = await asyncio.to_thread(MerkleAccumulator, identities)

        for ballot_id, tree in list(self._trees.items()):
            await self._reconcile(ballot_id, tree)

        logger.info("Replayed whitelists for %d ballots", len(grouped))
        return len(grouped)

    async def _reconcile(self, ballot_id: int, tree: MerkleAccumulator) -> None:
        try:
            on_ledger = await self.outbox.ledger.get_merkle_root(ballot_id)
        except UnknownBallot:
            logger.warning("Whitelist for ballot %d has no ledger counterpart", ballot_id)
            return

        if on_ledger == tree.root:
            self.outbox.mark_confirmed(ballot_id, tree.root)
            return

        queued = self.outbox.latest(ballot_id)
        if queued is not None and queued.root == tree.root and queued.status == PENDING:
            return
        logger.info("Ballot %d root differs from ledger, queueing push", ballot_id)
        await self.outbox.enqueue(ballot_id, tree.root)

    async def load_ballot(self, ballot_id: int, confirmed_root: Optional[bytes] = None) -> MerkleAccumulator:
        """Build a ballot's tree from the store.

        ``confirmed_root`` is the root the ledger already holds; when it
        matches the rebuilt tree no push is needed.
        """
        async with self._lock_for(ballot_id):
            tree = await self._rebuild_locked(ballot_id)
        if confirmed_root is not None:
            if confirmed_root == tree.root:
                self.outbox.mark_confirmed(ballot_id, tree.root)
            else:
                await self.outbox.enqueue(ballot_id, tree.root)
        return tree

    # ─── Mutations ────────────────────────────────────────────────

    async def _rebuild_locked(self, ballot_id: int) -> MerkleAccumulator:
        identities = await self.store.identities(ballot_id)
        tree = await asyncio.to_thread(MerkleAccumulator, identities)
        self._trees[ballot_id] = tree
        metrics.inc("ballotproof_tree_rebuilds_total")
        logger.info(
            "Ballot %d tree swapped in: %d identities, root %s...",
            ballot_id, len(tree), tree.root.hex()[:16],
        )
        return tree

    async def rebuild(self, ballot_id: int) -> MerkleAccumulator:
        """Rebuild one ballot's tree from the store and swap it in."""
        async with self._lock_for(ballot_id):
            return await self._rebuild_locked(ballot_id)

    async def add_identities(self, ballot_id: int, identities: Iterable) -> Optional[SyncTicket]:
        """Whitelist identities, rebuild the tree and queue the root push.

        Returns:
            The push ticket, or None if every identity was already listed.

        Raises:
            InvalidIdentity: if any identity is not an address (nothing is stored).
        """
        async with self._lock_for(ballot_id):
            added = await self.store.add(ballot_id, identities)
            if not added and ballot_id in self._trees:
                return None
            tree = await self._rebuild_locked(ballot_id)
            # Recorded under the lock so queue order matches swap order.
            ticket = await self.outbox.enqueue(ballot_id, tree.root)
        return ticket

    # ─── Reads (never block, never raise) ─────────────────────────

    def generate_proof(self, ballot_id: int, identity) -> ProofResult:
        tree = self._trees.get(ballot_id)
        if tree is None:
            return ProofResult(sync_status=self.sync_status(ballot_id))

        status = self.outbox.status(ballot_id, tree.root)
        try:
            proof = tree.proof(identity)
        except NotWhitelisted:
            logger.debug("Proof refused for ballot %d: %r not listed", ballot_id, identity)
            return ProofResult(root=tree.root, sync_status=status)

        metrics.inc("ballotproof_proofs_served_total")
        return ProofResult(proof=proof, root=tree.root, is_whitelisted=True, sync_status=status)

    def is_whitelisted(self, ballot_id: int, identity) -> bool:
        tree = self._trees.get(ballot_id)
        return tree is not None and tree.contains(identity)

    def addresses(self, ballot_id: int) -> int:
        """Size of the ballot's current whitelist snapshot."""
        tree = self._trees.get(ballot_id)
        return len(tree) if tree is not None else 0

    def root(self, ballot_id: int) -> Optional[bytes]:
        tree = self._trees.get(ballot_id)
        return tree.root if tree is not None else None

    def sync_status(self, ballot_id: int) -> str:
        tree = self._trees.get(ballot_id)
        if tree is None:
            return PENDING
        return self.outbox.status(ballot_id, tree.root)

    def ballot_ids(self) -> List[int]:
        return sorted(self._trees)
