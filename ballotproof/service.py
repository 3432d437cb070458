"""
BALLOTPROOF — Voting Service.

Operator-facing facade over the whitelist store, the proof service and the
ledger. The HTTP routes and the CLI talk to this class only.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ballotproof import config
from ballotproof.exceptions import (
    DatabaseTransactionError,
    EmptyProposalList,
    OrphanedBallot,
    RootSyncFailed,
    RootSyncPending,
)
from ballotproof.ledger import LedgerClient
from ballotproof.merkle import EMPTY_ROOT, MerkleAccumulator, digest_to_hex, normalize_identity
from ballotproof.metrics import metrics
from ballotproof.outbox import CONFIRMED, FAILED, PENDING, RootOutbox
from ballotproof.proofs import ProofResult, ProofService
from ballotproof.store import WhitelistStore

logger = logging.getLogger("ballotproof.service")


class VotingService:
    """Create ballots, manage whitelists and serve proofs."""

    def __init__(
        self,
        store: WhitelistStore,
        ledger: LedgerClient,
        outbox: Optional[RootOutbox] = None,
        **outbox_options: Any,
    ):
        self.store = store
        self.ledger = ledger
        self.outbox = outbox or RootOutbox(store, ledger, **outbox_options)
        self.proofs = ProofService(store, self.outbox)

    @classmethod
    async def open(cls, db_path: str | Path, ledger: LedgerClient, **outbox_options: Any) -> "VotingService":
        """Connect the store, replay whitelists and start the push worker."""
        store = await WhitelistStore(db_path).connect()
        service = cls(store, ledger, **outbox_options)
        await service.start()
        return service

    async def start(self) -> None:
        await self.proofs.start()

    async def close(self) -> None:
        await self.outbox.stop()
        await self.store.close()

    # ─── Ballots ──────────────────────────────────────────────────

    async def create_ballot(self, proposal_names: Sequence[str], addresses: Sequence) -> Dict[str, Any]:
        """Create a ballot on the ledger with its initial whitelist.

        Raises:
            EmptyProposalList: if no proposals are given.
            InvalidIdentity: if any address is malformed (nothing is created).
            OrphanedBallot: if the ballot was created but its whitelist
                could not be saved.
        """
        if not proposal_names:
            raise EmptyProposalList("A ballot needs at least one proposal")
        identities = [normalize_identity(a) for a in addresses]
        root = MerkleAccumulator(identities).root

        ballot_id = await self.ledger.create_ballot(root, list(proposal_names))
        try:
            await self.store.add(ballot_id, identities)
        except DatabaseTransactionError as e:
            metrics.inc(
                "ballotproof_orphaned_ballots_total",
                meta={"ballot_id": ballot_id, "root": digest_to_hex(root)},
            )
            logger.error("Ballot %d is on the ledger but its whitelist was not saved", ballot_id)
            raise OrphanedBallot(ballot_id) from e
        tree = await self.proofs.load_ballot(ballot_id, confirmed_root=root)

        logger.info("Ballot %d created with %d whitelisted identities", ballot_id, len(tree))
        return {
            "ballotId": ballot_id,
            "merkleRoot": digest_to_hex(root),
            "proposalNames": list(proposal_names),
            "whitelistSize": len(tree),
        }

    async def get_ballot_info(self, ballot_id: int) -> Dict[str, Any]:
        info = await self.ledger.get_ballot(ballot_id)
        if self.proofs.root(ballot_id) is None:
            # Nothing stored off-ledger: only an empty whitelist is in sync.
            sync_status = CONFIRMED if info.merkle_root == EMPTY_ROOT else PENDING
        else:
            sync_status = self.proofs.sync_status(ballot_id)
        return {
            "ballotId": info.id,
            "proposalNames": list(info.proposals),
            "votes": [
                {"proposal": name, "count": count}
                for name, count in zip(info.proposals, info.tally)
            ],
            "totalVotes": sum(info.tally),
            "active": info.active,
            "merkleRoot": digest_to_hex(info.merkle_root),
            "whitelistSize": self.proofs.addresses(ballot_id),
            "syncStatus": sync_status,
        }

    async def get_all_ballots(self) -> List[Dict[str, Any]]:
        count = await self.ledger.ballot_count()
        return [await self.get_ballot_info(i) for i in range(count)]

    async def close_ballot(self, ballot_id: int) -> None:
        await self.ledger.close_ballot(ballot_id)

    # ─── Whitelist & proofs ───────────────────────────────────────

    async def get_proof(self, ballot_id: int, identity) -> ProofResult:
        """Proof lookup for a voter.

        Raises:
            UnknownBallot: if the ballot does not exist on the ledger.
            RootSyncPending: if the voter is listed but the ledger still
                holds an older root.
            RootSyncFailed: if publishing the current root failed.
        """
        await self.ledger.get_ballot(ballot_id)
        result = self.proofs.generate_proof(ballot_id, identity)
        if result.retryable:
            if result.sync_status == FAILED:
                raise RootSyncFailed(ballot_id)
            raise RootSyncPending(ballot_id)
        return result

    async def is_whitelisted(self, ballot_id: int, identity) -> bool:
        await self.ledger.get_ballot(ballot_id)
        return self.proofs.is_whitelisted(ballot_id, identity)

    async def add_to_whitelist(
        self,
        ballot_id: int,
        addresses: Sequence,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Whitelist addresses and wait until the ledger holds the new root.

        Raises:
            UnknownBallot: if the ballot does not exist.
            InvalidIdentity: if any address is malformed.
            RootSyncPending: if the push is still retrying after ``timeout``.
            RootSyncFailed: if every push attempt failed.
        """
        await self.ledger.get_ballot(ballot_id)
        ticket = await self.proofs.add_identities(ballot_id, addresses)

        await self._await_sync(ballot_id, timeout, f"Whitelist for ballot {ballot_id} saved")

        return {
            "ballotId": ballot_id,
            "merkleRoot": digest_to_hex(self.proofs.root(ballot_id)),
            "whitelistSize": self.proofs.addresses(ballot_id),
            "changed": ticket is not None,
        }

    async def retry_failed_pushes(self, ballot_id: Optional[int] = None) -> int:
        return await self.outbox.retry_failed(ballot_id)

    async def retry_root_push(self, ballot_id: int, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Re-queue a ballot's failed root push and wait for the ledger.

        Raises:
            UnknownBallot: if the ballot does not exist.
            RootSyncPending: if the retried push is still running after ``timeout``.
            RootSyncFailed: if the retried push failed again.
        """
        await self.ledger.get_ballot(ballot_id)
        retried = await self.outbox.retry_failed(ballot_id)
        if retried:
            await self._await_sync(ballot_id, timeout, f"Root push for ballot {ballot_id} re-queued")
        return {
            "ballotId": ballot_id,
            "retried": retried,
            "merkleRoot": digest_to_hex(self.proofs.root(ballot_id) or EMPTY_ROOT),
            "syncStatus": self.proofs.sync_status(ballot_id),
        }

    async def _await_sync(self, ballot_id: int, timeout: Optional[float], context: str) -> None:
        wait = config.PUSH_CONFIRM_TIMEOUT if timeout is None else timeout
        status = await self.outbox.wait_for(ballot_id, wait)
        if status == PENDING:
            raise RootSyncPending(ballot_id, f"{context}; root push still pending")
        if status == FAILED:
            raise RootSyncFailed(ballot_id)
