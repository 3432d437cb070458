"""
BALLOTPROOF — Merkle whitelist voting.

Per-ballot Merkle accumulators, inclusion proofs and a ballot registry
that only accepts votes carrying a proof against its current root.
"""

__version__ = "1.0.0"

from ballotproof.merkle import MerkleAccumulator
from ballotproof.registry import BallotRegistry

__all__ = ["BallotRegistry", "MerkleAccumulator", "__version__"]
