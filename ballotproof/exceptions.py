"""
BALLOTPROOF — Custom Exceptions.

Typed error hierarchy shared by the registry, the proof service and the
API boundary. Each ledger failure maps to exactly one class so callers can
tell "retry shortly" apart from "not eligible".
"""


class BallotProofError(Exception):
    """Base exception for all BALLOTPROOF errors."""


# ─── Validation (rejected before any state read) ─────────────────────


class ValidationError(BallotProofError):
    """Malformed input."""


class EmptyProposalList(ValidationError):
    """Raised when a ballot is created without proposals."""


class InvalidProposal(ValidationError):
    """Raised when a proposal index is out of range."""


class MalformedRoot(ValidationError):
    """Raised when a Merkle root is not a 32-byte digest."""


class InvalidIdentity(ValidationError):
    """Raised when a voter identity is not a valid address."""


# ─── State (rejected after a read, nothing mutated) ──────────────────


class StateError(BallotProofError):
    """The ballot is not in a state that allows the operation."""


class UnknownBallot(StateError):
    """Raised when a ballot id was never allocated."""

    def __init__(self, ballot_id):
        super().__init__(f"Ballot {ballot_id} does not exist")
        self.ballot_id = ballot_id


class BallotNotActive(StateError):
    """Raised when voting on a closed ballot."""

    def __init__(self, ballot_id):
        super().__init__(f"Ballot {ballot_id} is closed")
        self.ballot_id = ballot_id


class AlreadyVoted(StateError):
    """Raised when an identity votes twice in the same ballot."""

    def __init__(self, ballot_id, identity):
        super().__init__(f"{identity} already voted in ballot {ballot_id}")
        self.ballot_id = ballot_id
        self.identity = identity


# ─── Proofs ──────────────────────────────────────────────────────────


class ProofError(BallotProofError):
    """A membership proof was rejected."""


class InvalidProof(ProofError):
    """Raised when a proof does not verify against the stored root."""


class NotWhitelisted(BallotProofError):
    """Raised when a proof is requested for an identity outside the tree."""


# ─── Synchronisation (off-ledger tree vs on-ledger root) ─────────────


class SyncError(BallotProofError):
    """The off-ledger tree and the on-ledger root disagree."""


class RootSyncPending(SyncError):
    """The new root has not been confirmed on the ledger yet. Retry shortly."""

    retryable = True

    def __init__(self, ballot_id, message: str | None = None):
        super().__init__(message or f"Whitelist root for ballot {ballot_id} is still syncing")
        self.ballot_id = ballot_id


class RootSyncFailed(SyncError):
    """Every push attempt for the new root failed."""

    retryable = False

    def __init__(self, ballot_id, message: str | None = None):
        super().__init__(message or f"Could not publish whitelist root for ballot {ballot_id}")
        self.ballot_id = ballot_id


# ─── Storage ─────────────────────────────────────────────────────────


class DatabaseTransactionError(BallotProofError):
    """Raised when a database transaction fails and has been rolled back.

    This exception sanitizes internal SQLite error details so they are
    never exposed to external callers or API consumers.
    """


class OrphanedBallot(DatabaseTransactionError):
    """Raised when a ballot exists on the ledger but its whitelist was not saved.

    The ledger root can no longer be rebuilt from the store; an operator
    has to re-add the whitelist for ``ballot_id``.
    """

    def __init__(self, ballot_id):
        super().__init__(f"Ballot {ballot_id} was created but its whitelist could not be saved")
        self.ballot_id = ballot_id
