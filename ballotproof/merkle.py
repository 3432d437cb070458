"""
BALLOTPROOF — Merkle Accumulator.

Whitelist membership tree for a single ballot. Leaves are keccak-256 hashes
of 20-byte voter addresses and internal nodes hash their children as a
sorted pair, so the verifier never needs left/right flags and the result
matches EVM-side verifiers that use the same scheme.

Tree shape rules (shared by proof generation and verification):
- identities are normalised to their checksum form and de-duplicated
- leaves are sorted by byte value before pairing, so insertion order never
  changes the root
- an unpaired last node on a level is promoted unchanged to the next level
- an empty whitelist has the all-zero root, which never verifies

Rebuilding is wholesale; there is no incremental insert.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence

from eth_utils import (
    decode_hex,
    encode_hex,
    is_hex_address,
    keccak,
    to_canonical_address,
    to_checksum_address,
)

from ballotproof.exceptions import InvalidIdentity, NotWhitelisted

logger = logging.getLogger("ballotproof.merkle")

DIGEST_SIZE = 32
EMPTY_ROOT = b"\x00" * DIGEST_SIZE


# ─── Identity & hashing primitives ───────────────────────────────────


def normalize_identity(identity) -> str:
    """Return the checksum form of an address given as text or 20 raw bytes.

    Raises:
        InvalidIdentity: if the value is not an address.
    """
    if isinstance(identity, (bytes, bytearray)):
        if len(identity) == 20:
            return to_checksum_address(bytes(identity))
        raise InvalidIdentity(f"Expected 20 address bytes, got {len(identity)}")
    if isinstance(identity, str):
        candidate = identity.strip().lower()
        if is_hex_address(candidate):
            return to_checksum_address(candidate)
    raise InvalidIdentity(f"Not an address: {identity!r}")


def leaf_hash(identity) -> bytes:
    """Hash one voter identity into a leaf."""
    return keccak(to_canonical_address(normalize_identity(identity)))


def hash_pair(a: bytes, b: bytes) -> bytes:
    """Hash two sibling digests in canonical (sorted) order."""
    if a <= b:
        return keccak(a + b)
    return keccak(b + a)


def _is_digest(value) -> bool:
    return isinstance(value, (bytes, bytearray)) and len(value) == DIGEST_SIZE


def digest_to_hex(value: bytes) -> str:
    return encode_hex(value)


def hex_to_digest(value: str) -> bytes:
    """Decode a ``0x``-prefixed 32-byte hex string.

    Raises:
        ValueError: if the string is not hex or not 32 bytes long.
    """
    try:
        raw = decode_hex(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Not a hex digest: {value!r}") from e
    if len(raw) != DIGEST_SIZE:
        raise ValueError(f"Expected {DIGEST_SIZE} bytes, got {len(raw)}")
    return raw


def _build_levels(leaves: List[bytes]) -> List[List[bytes]]:
    levels = [leaves]
    current = leaves
    while len(current) > 1:
        nxt = [hash_pair(current[i], current[i + 1]) for i in range(0, len(current) - 1, 2)]
        if len(current) % 2 == 1:
            # Odd node out is promoted as-is
            nxt.append(current[-1])
        levels.append(nxt)
        current = nxt
    return levels


# ─── Accumulator ─────────────────────────────────────────────────────


class MerkleAccumulator:
    """
    Immutable Merkle tree over one ballot's whitelist.

    Build a new instance for every whitelist change; instances are safe to
    share between readers because nothing mutates them after ``__init__``.
    """

    def __init__(self, identities: Iterable = ()):
        normalized = {normalize_identity(i) for i in identities}
        by_leaf = {leaf_hash(addr): addr for addr in normalized}
        leaves = sorted(by_leaf)

        self._identities = sorted(normalized)
        self._index = {leaf: i for i, leaf in enumerate(leaves)}
        self._levels = _build_levels(leaves) if leaves else [[]]

    @property
    def root(self) -> bytes:
        """Root digest, or ``EMPTY_ROOT`` for an empty whitelist."""
        top = self._levels[-1]
        return top[0] if top else EMPTY_ROOT

    @property
    def identities(self) -> List[str]:
        return list(self._identities)

    def __len__(self) -> int:
        return len(self._identities)

    def __contains__(self, identity) -> bool:
        return self.contains(identity)

    def contains(self, identity) -> bool:
        try:
            return leaf_hash(identity) in self._index
        except InvalidIdentity:
            return False

    def proof(self, identity) -> List[bytes]:
        """
        Sibling digests from the identity's leaf up to the root.

        Raises:
            NotWhitelisted: if the identity has no leaf in this tree.
        """
        try:
            leaf = leaf_hash(identity)
        except InvalidIdentity as e:
            raise NotWhitelisted(str(e)) from e

        index = self._index.get(leaf)
        if index is None:
            raise NotWhitelisted(f"{identity} is not whitelisted")

        proof = []
        for level in self._levels[:-1]:
            sibling = index ^ 1
            if sibling < len(level):
                proof.append(level[sibling])
            index //= 2
        return proof

    @staticmethod
    def verify(leaf, proof: Optional[Sequence[bytes]], root) -> bool:
        """Replay the pairing from ``leaf`` and compare against ``root``.

        Malformed input of any kind verifies as False.
        """
        return verify(leaf, proof, root)


def build(identities: Iterable) -> bytes:
    """Root of the whitelist formed by ``identities``."""
    return MerkleAccumulator(identities).root


def verify(leaf, proof: Optional[Sequence[bytes]], root) -> bool:
    """Check an inclusion proof. Never raises."""
    if not _is_digest(leaf) or not _is_digest(root) or bytes(root) == EMPTY_ROOT:
        return False
    if proof is None or isinstance(proof, (bytes, bytearray, str)):
        return False

    current = bytes(leaf)
    try:
        for sibling in proof:
            if not _is_digest(sibling):
                return False
            current = hash_pair(current, bytes(sibling))
    except TypeError:
        logger.debug("Rejected non-iterable proof of type %s", type(proof).__name__)
        return False
    return current == bytes(root)
