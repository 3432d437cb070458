"""
BALLOTPROOF — Ballot Registry.

The ledger-side state machine. Holds every ballot in an indexed arena
(list position == ballot id), verifies whitelist proofs against the root it
currently stores and keeps a per-proposal tally.

Each public call runs inside one registry-wide critical section, which
stands in for the ledger's serialised transaction model: calls are totally
ordered and a second vote by the same identity always observes the first.
Every operation validates completely before it mutates anything, so a
rejected call leaves the ballot exactly as it was.

Ballot lifecycle: Active -> Closed. There is no reopen.

Note: create_ballot, update_merkle_root and close_ballot accept any caller.
The creator is recorded on the ballot but never checked.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set, Tuple

from ballotproof.events import (
    BallotClosed,
    BallotCreated,
    EventLog,
    MerkleRootUpdated,
    VoteCast,
)
from ballotproof.exceptions import (
    AlreadyVoted,
    BallotNotActive,
    EmptyProposalList,
    InvalidIdentity,
    InvalidProof,
    InvalidProposal,
    MalformedRoot,
    UnknownBallot,
)
from ballotproof.merkle import DIGEST_SIZE, leaf_hash, normalize_identity, verify
from ballotproof.metrics import metrics

logger = logging.getLogger("ballotproof.registry")


@dataclass
class Ballot:
    id: int
    merkle_root: bytes
    proposals: Tuple[str, ...]
    tally: List[int]
    voted: Set[str] = field(default_factory=set)
    active: bool = True
    creator: Optional[str] = None


@dataclass(frozen=True)
class BallotInfo:
    """Read-only snapshot of a ballot."""

    id: int
    merkle_root: bytes
    proposals: Tuple[str, ...]
    tally: Tuple[int, ...]
    voters: int
    active: bool
    creator: Optional[str]


def _is_index(value) -> bool:
    # bool is an int subclass; True must not address ballot or proposal 1
    return isinstance(value, int) and not isinstance(value, bool)


def _check_root(root) -> bytes:
    if not isinstance(root, (bytes, bytearray)) or len(root) != DIGEST_SIZE:
        raise MalformedRoot(f"Merkle root must be {DIGEST_SIZE} bytes")
    return bytes(root)


class BallotRegistry:
    """
    Multi-ballot registry with Merkle whitelist voting.
    """

    def __init__(self, events: Optional[EventLog] = None):
        self._ballots: List[Ballot] = []
        self._lock = threading.RLock()
        self.events = events if events is not None else EventLog()

    # ─── Internal ─────────────────────────────────────────────────

    def _get(self, ballot_id: int) -> Ballot:
        if not _is_index(ballot_id) or ballot_id < 0 or ballot_id >= len(self._ballots):
            raise UnknownBallot(ballot_id)
        return self._ballots[ballot_id]

    @staticmethod
    def _sender(sender) -> Optional[str]:
        if sender is None:
            return None
        try:
            return normalize_identity(sender)
        except InvalidIdentity:
            return str(sender)

    # ─── Mutations ────────────────────────────────────────────────

    def create_ballot(self, merkle_root: bytes, proposal_names: Sequence[str], sender=None) -> int:
        """Register a new ballot and return its id.

        Raises:
            EmptyProposalList: if ``proposal_names`` is empty.
            MalformedRoot: if ``merkle_root`` is not 32 bytes.
        """
        if not proposal_names:
            raise EmptyProposalList("A ballot needs at least one proposal")
        root = _check_root(merkle_root)
        proposals = tuple(str(name) for name in proposal_names)

        with self._lock:
            ballot_id = len(self._ballots)
            self._ballots.append(
                Ballot(
                    id=ballot_id,
                    merkle_root=root,
                    proposals=proposals,
                    tally=[0] * len(proposals),
                    creator=self._sender(sender),
                )
            )
            self.events.append(BallotCreated(ballot_id, proposals))

        logger.info("Ballot %d created with %d proposals", ballot_id, len(proposals))
        return ballot_id

    def vote(self, sender, ballot_id: int, proposal_index: int, proof: Sequence[bytes]) -> None:
        """Cast ``sender``'s single vote for ``proposal_index``.

        Checks run in a fixed order and the first failure wins:
        UnknownBallot, BallotNotActive, InvalidProposal, AlreadyVoted,
        InvalidProof.
        """
        with self._lock:
            ballot = self._get(ballot_id)
            if not ballot.active:
                metrics.inc("ballotproof_votes_rejected_total", {"reason": "closed"})
                raise BallotNotActive(ballot_id)
            if not _is_index(proposal_index) or not 0 <= proposal_index < len(ballot.proposals):
                metrics.inc("ballotproof_votes_rejected_total", {"reason": "proposal"})
                raise InvalidProposal(
                    f"Proposal {proposal_index} out of range for ballot {ballot_id}"
                )

            try:
                identity = normalize_identity(sender)
            except InvalidIdentity as e:
                metrics.inc("ballotproof_votes_rejected_total", {"reason": "proof"})
                raise InvalidProof(f"Sender is not an address: {sender!r}") from e

            if identity in ballot.voted:
                metrics.inc("ballotproof_votes_rejected_total", {"reason": "double_vote"})
                raise AlreadyVoted(ballot_id, identity)

            if not verify(leaf_hash(identity), proof, ballot.merkle_root):
                metrics.inc("ballotproof_votes_rejected_total", {"reason": "proof"})
                raise InvalidProof(f"Proof for {identity} does not match ballot {ballot_id}")

            ballot.voted.add(identity)
            ballot.tally[proposal_index] += 1
            self.events.append(VoteCast(ballot_id, identity, proposal_index))

        metrics.inc("ballotproof_votes_cast_total")
        logger.info(
            "Vote recorded: ballot %d | proposal %d | voter %s...",
            ballot_id, proposal_index, identity[:10],
        )

    def update_merkle_root(self, ballot_id: int, new_root: bytes, sender=None) -> None:
        """Replace the stored root. Proofs built for the old root stop verifying."""
        root = _check_root(new_root)
        with self._lock:
            ballot = self._get(ballot_id)
            ballot.merkle_root = root
            self.events.append(MerkleRootUpdated(ballot_id, root))
        logger.info("Ballot %d root updated to %s...", ballot_id, root.hex()[:16])

    def close_ballot(self, ballot_id: int, sender=None) -> None:
        """Close voting. Closing an already closed ballot does nothing."""
        with self._lock:
            ballot = self._get(ballot_id)
            if not ballot.active:
                return
            ballot.active = False
            self.events.append(BallotClosed(ballot_id))
        logger.info("Ballot %d closed", ballot_id)

    # ─── Reads ────────────────────────────────────────────────────

    @property
    def ballot_count(self) -> int:
        with self._lock:
            return len(self._ballots)

    def get_vote_count(self, ballot_id: int, proposal_index: int) -> int:
        with self._lock:
            ballot = self._get(ballot_id)
            if not _is_index(proposal_index) or not 0 <= proposal_index < len(ballot.tally):
                raise InvalidProposal(
                    f"Proposal {proposal_index} out of range for ballot {ballot_id}"
                )
            return ballot.tally[proposal_index]

    def has_voted(self, ballot_id: int, identity) -> bool:
        with self._lock:
            ballot = self._get(ballot_id)
            try:
                return normalize_identity(identity) in ballot.voted
            except InvalidIdentity:
                return False

    def get_proposal_names(self, ballot_id: int) -> List[str]:
        with self._lock:
            return list(self._get(ballot_id).proposals)

    def get_merkle_root(self, ballot_id: int) -> bytes:
        with self._lock:
            return self._get(ballot_id).merkle_root

    def is_active(self, ballot_id: int) -> bool:
        with self._lock:
            return self._get(ballot_id).active

    def get_results(self, ballot_id: int) -> List[Tuple[str, int]]:
        with self._lock:
            ballot = self._get(ballot_id)
            return list(zip(ballot.proposals, ballot.tally))

    def get_ballot(self, ballot_id: int) -> BallotInfo:
        with self._lock:
            b = self._get(ballot_id)
            return BallotInfo(
                id=b.id,
                merkle_root=b.merkle_root,
                proposals=b.proposals,
                tally=tuple(b.tally),
                voters=len(b.voted),
                active=b.active,
                creator=b.creator,
            )
